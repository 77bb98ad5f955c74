from typing import Dict, Any, Iterable
from hypescreener.core.logging_config import get_logger

logger = get_logger("drift_detection")


def detect_drift(payload: Dict[str, Any], expected_keys: Iterable[str], source_name: str) -> bool:
    """
    Checks an upstream payload for the keys our parsers depend on.
    Logs a warning and returns True if any of them disappeared.
    """
    if not isinstance(payload, dict):
        logger.warning("potential_schema_drift", source=source_name, message="Payload is not an object", payload_type=type(payload).__name__)
        return True

    missing = sorted(set(expected_keys) - set(payload.keys()))
    if missing:
        logger.warning("potential_schema_drift", source=source_name, missing_keys=missing, incoming_keys=sorted(payload.keys()))
        return True
    return False
