import logging
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from newsroom_admin.config import settings
from newsroom_admin.db import engine, SessionLocal
from newsroom_admin.logging_setup import setup_logging, log_event
from newsroom_admin.models import Base
from newsroom_admin.routes import admin
from newsroom_admin.services.cron_sync import make_backend, sync_all
from newsroom_admin.services.scheduler import start_scheduler, shutdown_scheduler

setup_logging()
logger = logging.getLogger(__name__)

if not settings.admin_password:
    logger.warning("CRITICAL STARTUP WARNING: ADMIN_PASSWORD is not set; /admin will refuse every request")

app = FastAPI(title="Newsroom Admin")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["POST", "GET", "OPTIONS"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    problems = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors())
    return JSONResponse(status_code=400, content={"error": f"Invalid request body: {problems}"})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.url.path}")
    return JSONResponse(status_code=500, content={"error": str(exc)})


@app.get("/health")
def health():
    return {
        "status": "ok",
        "cron_backend": settings.cron_backend,
        "now": datetime.now(timezone.utc).isoformat(),
    }


@app.get("/ready")
def readiness_check():
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1 FROM cron_job_configs LIMIT 1"))
        return {"status": "ready"}
    except Exception:
        return JSONResponse(status_code=503, content={"status": "not_ready", "detail": "Database unreachable or tables missing."})


app.include_router(admin.router)


@app.on_event("startup")
def on_startup():
    Base.metadata.create_all(bind=engine)

    if settings.cron_backend == "apscheduler":
        start_scheduler()

    if settings.cron_sync_on_startup:
        db = SessionLocal()
        try:
            result = sync_all(db, make_backend(db))
            log_event("startup_cron_sync", **result)
        except Exception as e:
            # pg_cron may be missing in fresh databases; the API still serves
            db.rollback()
            logger.error(f"Startup cron sync failed: {e}")
        finally:
            db.close()


@app.on_event("shutdown")
def on_shutdown():
    shutdown_scheduler()
