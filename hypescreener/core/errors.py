class HypescreenerError(Exception):
    """Base class for errors raised by sync jobs and their collaborators."""


class UpstreamFetchError(HypescreenerError):
    """A third-party API returned a non-2xx response or could not be reached."""

    def __init__(self, source: str, message: str, status_code: int | None = None):
        super().__init__(f"{source}: {message}")
        self.source = source
        self.status_code = status_code


class AssetNotFoundError(UpstreamFetchError):
    """The upstream response did not contain the requested asset."""


class PersistenceError(HypescreenerError):
    pass


class ConfigurationError(HypescreenerError):
    pass


class JobAlreadyRunningError(HypescreenerError):
    def __init__(self, job_type: str):
        super().__init__(f"Job '{job_type}' is already running")
        self.job_type = job_type


class ApiError(Exception):
    """Rendered by the app's exception handler as {"success": false, "error": ...}."""

    def __init__(self, status_code: int, message: str, **extra):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.extra = extra
