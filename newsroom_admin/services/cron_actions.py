import re
from datetime import datetime, timezone

from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from newsroom_admin.models import CronJobConfig, CronJobEvent
from newsroom_admin.schemas import CronConfigUpdateIn, BulkRetellCronIn, CronJobConfigOut, CronJobEventOut
from newsroom_admin.logging_setup import log_event
from newsroom_admin.services.registry import action, ActionContext, parse_model, require_fields
from newsroom_admin.services.cron_sync import (
    BULK_RETELL_PREFIX, cron_expression, sync_config, record_cron_event,
)

COUNTRY_CODE_RE = re.compile(r"^[a-z]{2}$")
TIME_RANGES = ("last_1h", "last_24h", "all")


def serialize_config(config: CronJobConfig) -> dict:
    return CronJobConfigOut.model_validate(config).model_dump(mode="json")


def _sync_or_rollback(ctx: ActionContext, config: CronJobConfig, changes: dict) -> dict:
    """Resyncs before commit; any failure rolls the row change back with it."""
    job_name = config.job_name
    try:
        return sync_config(ctx.cron, config)
    except ValueError as e:
        ctx.db.rollback()
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        ctx.db.rollback()
        restored = _restore_schedule(ctx, job_name)
        record_cron_event(ctx.db, job_name, "sync_failed", status="error", message=str(e),
                          details={**changes, "restored": restored})
        raise


def _restore_schedule(ctx: ActionContext, job_name: str) -> bool:
    """
    Re-applies the committed row after a failed sync. In-process backends do not
    share the session transaction, so the rollback alone cannot undo an unschedule.
    """
    config = ctx.db.query(CronJobConfig).filter(CronJobConfig.job_name == job_name).first()
    try:
        if config:
            sync_config(ctx.cron, config)
        else:
            ctx.cron.unschedule(job_name)
    except Exception as e:
        ctx.db.rollback()
        log_event("cron_restore_failed", level="error", job_name=job_name, error=str(e))
        return False
    return True


@action("getCronConfigs")
def get_cron_configs(ctx: ActionContext, data):
    query = ctx.db.query(CronJobConfig)
    if isinstance(data, dict) and data.get("job_type"):
        query = query.filter(CronJobConfig.job_type == data["job_type"])
    configs = query.order_by(CronJobConfig.job_name).all()
    return {"success": True, "configs": [serialize_config(c) for c in configs]}


@action("updateCronConfig")
def update_cron_config(ctx: ActionContext, data):
    payload = parse_model(CronConfigUpdateIn, data)
    config = ctx.db.query(CronJobConfig).filter(CronJobConfig.job_name == payload.jobName).first()
    if not config:
        raise HTTPException(status_code=404, detail=f"Cron job {payload.jobName} not found")

    changes = payload.config.model_dump(exclude_unset=True, exclude_none=True)
    if not changes:
        raise HTTPException(status_code=400, detail="No config fields to update")
    if "frequency_minutes" in changes:
        try:
            cron_expression(changes["frequency_minutes"])
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

    for key, value in changes.items():
        setattr(config, key, value)
    config.updated_at = datetime.now(timezone.utc)

    result = _sync_or_rollback(ctx, config, changes)
    ctx.db.commit()
    ctx.db.refresh(config)

    record_cron_event(ctx.db, config.job_name, "updated", details={"changes": changes, **result})
    log_event("cron_config_updated", job_name=config.job_name, enabled=config.enabled,
              schedule=result["schedule"], backend=ctx.cron.name)
    return {"success": True, "config": serialize_config(config), "schedule": result["schedule"]}


@action("createBulkRetellCron")
def create_bulk_retell_cron(ctx: ActionContext, data):
    payload = parse_model(BulkRetellCronIn, data)
    country_code = payload.country_code.strip().lower()
    if not COUNTRY_CODE_RE.match(country_code):
        raise HTTPException(status_code=400, detail="country_code must be a two-letter code")
    if payload.time_range not in TIME_RANGES:
        raise HTTPException(status_code=400, detail=f"time_range must be one of {', '.join(TIME_RANGES)}")
    try:
        cron_expression(payload.frequency_minutes)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    job_name = f"{BULK_RETELL_PREFIX}{country_code}"
    if ctx.db.query(CronJobConfig).filter(CronJobConfig.job_name == job_name).first():
        raise HTTPException(status_code=409, detail=f"Cron job {job_name} already exists")

    config = CronJobConfig(
        job_name=job_name,
        job_type="bulk_retell",
        enabled=True,
        frequency_minutes=payload.frequency_minutes,
        countries=[country_code],
        processing_options={
            "country_code": country_code,
            "time_range": payload.time_range,
            "llm_model": payload.llm_model,
            "llm_provider": payload.llm_provider,
        },
    )
    ctx.db.add(config)
    try:
        ctx.db.flush()
    except IntegrityError:
        ctx.db.rollback()
        raise HTTPException(status_code=409, detail=f"Cron job {job_name} already exists")

    result = _sync_or_rollback(ctx, config, {"created": True})
    ctx.db.commit()
    ctx.db.refresh(config)

    record_cron_event(ctx.db, job_name, "created", details=result)
    log_event("bulk_retell_cron_created", job_name=job_name, schedule=result["schedule"], backend=ctx.cron.name)
    return {"success": True, "config": serialize_config(config), "schedule": result["schedule"]}


@action("deleteBulkRetellCron")
def delete_bulk_retell_cron(ctx: ActionContext, data):
    job_name = require_fields(data, "jobName")["jobName"]
    if not str(job_name).startswith(BULK_RETELL_PREFIX):
        raise HTTPException(status_code=400, detail="Only bulk retell crons can be deleted here")

    config = ctx.db.query(CronJobConfig).filter(CronJobConfig.job_name == job_name).first()
    if not config:
        raise HTTPException(status_code=404, detail=f"Cron job {job_name} not found")

    ctx.db.delete(config)
    ctx.db.commit()

    unscheduled = False
    warning = None
    try:
        unscheduled = ctx.cron.unschedule(job_name)
        ctx.db.commit()
    except Exception as e:
        # The row is already gone; a stale schedule is reported, not fatal
        ctx.db.rollback()
        warning = f"Unschedule failed: {e}"
        log_event("cron_unschedule_failed", level="warning", job_name=job_name, error=str(e))

    record_cron_event(ctx.db, job_name, "deleted", status="warning" if warning else "success",
                      message=warning, details={"unscheduled": unscheduled})
    response = {"success": True, "unscheduled": unscheduled}
    if warning:
        response["warning"] = warning
    return response


@action("listCronJobs")
def list_cron_jobs(ctx: ActionContext, data):
    try:
        jobs = ctx.cron.list_jobs()
    except SQLAlchemyError as e:
        ctx.db.rollback()
        log_event("cron_list_failed", level="warning", error=str(e))
        return {"success": True, "backend": ctx.cron.name, "jobs": [], "error": "Could not query cron jobs"}
    return {"success": True, "backend": ctx.cron.name, "jobs": jobs}


@action("getCronEvents")
def get_cron_events(ctx: ActionContext, data):
    data = data if isinstance(data, dict) else {}
    try:
        limit = min(max(int(data.get("limit", 50)), 1), 200)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="limit must be an integer")

    query = ctx.db.query(CronJobEvent)
    if data.get("job_name"):
        query = query.filter(CronJobEvent.job_name == data["job_name"])
    events = query.order_by(CronJobEvent.created_at.desc(), CronJobEvent.id.desc()).limit(limit).all()
    return {
        "success": True,
        "events": [CronJobEventOut.model_validate(e).model_dump(mode="json") for e in events],
    }
