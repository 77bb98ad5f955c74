import time
from fastapi import FastAPI, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession

from hypescreener.core.config import get_settings
from hypescreener.core.database import get_db
from hypescreener.core.errors import ApiError
from hypescreener.core.rate_limit import FixedWindowRateLimiter
from hypescreener.db.init_db import init_db
from hypescreener.db.models import JobRunLog
from hypescreener.services.job_runner import JobGuard
from hypescreener.api.admin import router as admin_router
from hypescreener.api.read import router as read_router
from hypescreener.api.sync import router as sync_router, info_router as sync_info_router

from prometheus_fastapi_instrumentator import Instrumentator
from hypescreener.core.logging_config import setup_logging, get_logger
from hypescreener.utils.time import as_utc

# Setup Structured Logging
setup_logging()
logger = get_logger("main")

settings = get_settings()

app = FastAPI(title=settings.PROJECT_NAME)
app.state.rate_limiter = FixedWindowRateLimiter(settings.SYNC_RATE_LIMIT, settings.SYNC_RATE_WINDOW_SECONDS)
app.state.job_guard = JobGuard()

# Instrument Prometheus
Instrumentator().instrument(app).expose(app)


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    if exc.status_code >= 500:
        logger.error("api_error", path=request.url.path, status=exc.status_code, error=exc.message)
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.message, **exc.extra})


@app.on_event("startup")
async def startup_event():
    logger.info("startup_event", msg="Initializing DB")
    try:
        await init_db()
    except Exception as e:
        logger.error("db_init_failed", error=str(e))


@app.get("/health")
async def health_check(db: AsyncSession = Depends(get_db)):
    start_time = time.time()
    db_status = "unhealthy"
    last_job = None

    try:
        await db.execute(select(1))
        db_status = "connected"

        result = await db.execute(select(JobRunLog).order_by(JobRunLog.completed_at.desc(), JobRunLog.id.desc()).limit(1))
        run = result.scalars().first()
        if run is not None:
            last_job = {
                "job_type": run.job_type,
                "status": run.status,
                "completed_at": as_utc(run.completed_at).isoformat(),
            }
    except Exception as e:
        db_status = f"error: {str(e)}"

    latency = (time.time() - start_time) * 1000

    return {
        "status": "ok",
        "db_connectivity": db_status,
        "last_job": last_job,
        "latency_ms": round(latency, 2)
    }


app.include_router(sync_router)
app.include_router(sync_info_router)
app.include_router(admin_router)
app.include_router(read_router)
