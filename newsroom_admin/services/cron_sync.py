# Copyright (c) 2026 Mohammed Hassan. All rights reserved.
# Proprietary and confidential. Unauthorized copying, modification, distribution, or use is prohibited.

"""
Keeps cron_job_configs rows mirrored into a live schedule.

Two backends exist: pg_cron (cron.job inside Postgres, calling edge functions
through pg_net) and an in-process APScheduler for local/SQLite deployments.
Both are driven by the same config -> (expression, request) mapping below.
"""

import json
from urllib.parse import urlencode
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Protocol

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from newsroom_admin.config import settings
from newsroom_admin.models import CronJobConfig, CronJobEvent
from newsroom_admin.logging_setup import log_event

BULK_RETELL_PREFIX = "bulk_retell_"

CRON_EXPRESSIONS = {
    15: "*/15 * * * *",
    30: "*/30 * * * *",
    60: "0 * * * *",
    180: "0 */3 * * *",
    360: "0 */6 * * *",
    720: "0 */12 * * *",
    1440: "0 0 * * *",
    10080: "0 0 * * 0",
}


def cron_expression(frequency_minutes: int) -> str:
    """Maps a frequency in minutes to a five-field cron expression."""
    if frequency_minutes in CRON_EXPRESSIONS:
        return CRON_EXPRESSIONS[frequency_minutes]
    if 0 < frequency_minutes < 60 and 60 % frequency_minutes == 0:
        return f"*/{frequency_minutes} * * * *"
    if frequency_minutes > 0 and frequency_minutes % 60 == 0:
        hours = frequency_minutes // 60
        if hours < 24 and 24 % hours == 0:
            return f"0 */{hours} * * *"
    raise ValueError(f"Unsupported frequency_minutes: {frequency_minutes}")


@dataclass
class JobRequest:
    function: str
    url: str
    body: dict[str, Any]
    headers: dict[str, str] = field(default_factory=dict)


def _bulk_retell_body(config: CronJobConfig) -> dict:
    opts = config.processing_options or {}
    country = opts.get("country_code") or (config.countries or [None])[0]
    return {
        "country_code": country,
        "time_range": opts.get("time_range", "all"),
        "llm_model": opts.get("llm_model"),
        "llm_provider": opts.get("llm_provider"),
        "job_name": config.job_name,
    }


# job_type -> (edge function, body builder)
JOB_TYPES: dict[str, tuple[str, Callable[[CronJobConfig], dict]]] = {
    "bulk_retell": ("bulk-retell-news", _bulk_retell_body),
    "fetch_rss": ("fetch-rss", lambda c: {"action": "fetch_all"}),
    "process_pending": ("fetch-rss", lambda c: {"action": "process_pending", "limit": (c.processing_options or {}).get("limit", 20)}),
    "cache_refresh": ("cache-pages", lambda c: {}),
}

# cache-pages reads its action from the query string and wants the admin password
JOB_QUERY_PARAMS: dict[str, dict[str, str]] = {
    "cache_refresh": {"action": "refresh-all"},
}
ADMIN_PASSWORD_JOB_TYPES = {"cache_refresh"}


def function_url(function: str, params: dict[str, str] | None = None) -> str:
    url = f"{settings.functions_base_url.rstrip('/')}/{function}"
    if params:
        url = f"{url}?{urlencode(params)}"
    return url


def build_job_request(config: CronJobConfig) -> JobRequest:
    if config.job_type in JOB_TYPES:
        function, body_builder = JOB_TYPES[config.job_type]
        body = body_builder(config)
    else:
        opts = config.processing_options or {}
        function = opts.get("function")
        if not function:
            raise ValueError(f"Job type {config.job_type!r} needs processing_options.function")
        body = dict(opts.get("body") or {})

    headers = {"Content-Type": "application/json"}
    if settings.service_role_key:
        headers["Authorization"] = f"Bearer {settings.service_role_key}"
    if config.job_type in ADMIN_PASSWORD_JOB_TYPES:
        if not settings.admin_password:
            raise ValueError(f"Job type {config.job_type!r} needs ADMIN_PASSWORD to be set")
        headers["x-admin-password"] = settings.admin_password
    url = function_url(function, JOB_QUERY_PARAMS.get(config.job_type))
    return JobRequest(function=function, url=url, body=body, headers=headers)


def sql_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def build_http_post_sql(request: JobRequest, timeout_ms: int) -> str:
    """SQL that pg_cron runs on each tick; every interpolated value is a quoted literal."""
    return (
        "SELECT net.http_post("
        f"url:={sql_literal(request.url)}, "
        f"headers:={sql_literal(json.dumps(request.headers))}::jsonb, "
        f"body:={sql_literal(json.dumps(request.body))}::jsonb, "
        f"timeout_milliseconds:={int(timeout_ms)}"
        ") AS request_id;"
    )


def describe_job(job_name: str, command: str | None = None) -> str:
    if job_name.startswith(BULK_RETELL_PREFIX):
        return f"Bulk retell for {job_name[len(BULK_RETELL_PREFIX):].upper()}"
    if "fetch-rss" in job_name or (command and "fetch-rss" in command):
        return "RSS fetch"
    if "cache" in job_name:
        return "Page cache refresh"
    return "Scheduled job"


class CronBackend(Protocol):
    name: str

    def schedule(self, job_name: str, expression: str, request: JobRequest) -> None: ...

    def unschedule(self, job_name: str) -> bool: ...

    def list_jobs(self) -> list[dict]: ...


class PgCronBackend:
    """Cron backend on the pg_cron extension, sharing the caller's session/transaction."""
    name = "pg_cron"

    def __init__(self, db: Session, timeout_ms: int = 60000):
        self.db = db
        self.timeout_ms = timeout_ms

    def schedule(self, job_name: str, expression: str, request: JobRequest) -> None:
        self.db.execute(
            text("SELECT cron.schedule(:job_name, :schedule, :command)"),
            {"job_name": job_name, "schedule": expression, "command": build_http_post_sql(request, self.timeout_ms)},
        )

    def unschedule(self, job_name: str) -> bool:
        # Selecting through cron.job makes a missing job a no-op instead of an error
        rows = self.db.execute(
            text("SELECT cron.unschedule(jobid) FROM cron.job WHERE jobname = :job_name"),
            {"job_name": job_name},
        ).all()
        return len(rows) > 0

    def list_jobs(self) -> list[dict]:
        rows = self.db.execute(
            text("SELECT jobid, jobname, schedule, active, command FROM cron.job ORDER BY jobname")
        ).mappings().all()
        return [
            {
                "id": row["jobid"],
                "name": row["jobname"],
                "schedule": row["schedule"],
                "active": row["active"],
                "description": describe_job(row["jobname"], row["command"]),
            }
            for row in rows
        ]


def make_backend(db: Session) -> CronBackend:
    if settings.cron_backend == "apscheduler":
        from newsroom_admin.db import SessionLocal
        from newsroom_admin.services.scheduler import SchedulerBackend, get_scheduler
        return SchedulerBackend(get_scheduler(), SessionLocal, timeout_ms=settings.cron_request_timeout_ms)
    if settings.cron_backend == "pg_cron":
        return PgCronBackend(db, timeout_ms=settings.cron_request_timeout_ms)
    raise ValueError(f"Unknown CRON_BACKEND: {settings.cron_backend}")


def sync_config(backend: CronBackend, config: CronJobConfig) -> dict:
    """
    Re-applies one config to the backend: always unschedule, then schedule if enabled.
    Expression and request are resolved first so a bad config never leaves the job removed.
    """
    expression = None
    request = None
    if config.enabled:
        expression = cron_expression(config.frequency_minutes)
        request = build_job_request(config)

    unscheduled = backend.unschedule(config.job_name)
    if config.enabled:
        backend.schedule(config.job_name, expression, request)

    return {"unscheduled": unscheduled, "scheduled": bool(config.enabled), "schedule": expression}


def sync_all(db: Session, backend: CronBackend) -> dict:
    """Startup pass: mirror every stored config into the backend."""
    synced, failed = 0, 0
    for config in db.query(CronJobConfig).order_by(CronJobConfig.job_name).all():
        try:
            sync_config(backend, config)
            db.commit()
            synced += 1
        except (ValueError, SQLAlchemyError) as e:
            db.rollback()
            failed += 1
            log_event("cron_sync_failed", level="error", job_name=config.job_name, error=str(e))
    log_event("cron_sync_all", backend=backend.name, synced=synced, failed=failed)
    return {"synced": synced, "failed": failed}


def record_cron_event(db: Session, job_name: str, event_type: str, status: str = "success",
                      message: str | None = None, details: dict | None = None) -> None:
    """Best-effort audit trail; a failed write is logged and never reaches the caller."""
    try:
        db.add(CronJobEvent(
            job_name=job_name,
            event_type=event_type,
            status=status,
            message=message,
            details=details,
            created_at=datetime.now(timezone.utc),
        ))
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        log_event("cron_event_write_failed", level="warning", job_name=job_name, event_type=event_type, error=str(e))
