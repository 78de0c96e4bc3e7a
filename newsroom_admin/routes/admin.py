import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from newsroom_admin.config import settings
from newsroom_admin.db import get_db
from newsroom_admin.logging_setup import log_event
from newsroom_admin.schemas import AdminRequest
from newsroom_admin.security import verify_admin_password
from newsroom_admin.services.cron_sync import make_backend
from newsroom_admin.services.registry import ActionContext, get_handler
# Imported for their @action registrations
from newsroom_admin.services import content, cron_actions, llm_usage, stats  # noqa: F401

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


def get_cron_backend(db: Session = Depends(get_db)):
    return make_backend(db)


def error_response(status_code: int, message) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@router.post("")
def admin_action(
    body: AdminRequest,
    db: Session = Depends(get_db),
    cron=Depends(get_cron_backend),
):
    """Single entry point for the admin panels: {action, password, data}."""
    try:
        verify_admin_password(body.password)
    except HTTPException as e:
        if e.status_code == 401:
            log_event("admin_auth_failed", level="warning", action=body.action)
        else:
            log_event("admin_password_not_configured", level="error")
        return error_response(e.status_code, e.detail)

    handler = get_handler(body.action)
    if not handler:
        return error_response(400, "Unknown action")

    log_event("admin_action", action=body.action)
    ctx = ActionContext(db=db, cron=cron, settings=settings)
    try:
        return handler(ctx, body.data)
    except HTTPException as e:
        db.rollback()
        return error_response(e.status_code, e.detail)
    except Exception as e:
        db.rollback()
        logger.exception(f"Admin action {body.action} failed")
        return error_response(500, str(e))
