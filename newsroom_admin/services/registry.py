from dataclasses import dataclass
from typing import Any, Callable

from fastapi import HTTPException
from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session

from newsroom_admin.config import Settings


@dataclass
class ActionContext:
    """Everything an admin action handler is allowed to touch."""
    db: Session
    cron: Any  # CronBackend
    settings: Settings


ActionHandler = Callable[[ActionContext, Any], dict]

_ACTIONS: dict[str, ActionHandler] = {}


def action(name: str):
    """Registers a handler under the admin action name the panels send."""
    def decorator(fn: ActionHandler) -> ActionHandler:
        if name in _ACTIONS:
            raise RuntimeError(f"Admin action {name!r} registered twice")
        _ACTIONS[name] = fn
        return fn
    return decorator


def get_handler(name: str) -> ActionHandler | None:
    return _ACTIONS.get(name)


def registered_actions() -> list[str]:
    return sorted(_ACTIONS)


def require_fields(data: Any, *fields: str) -> dict:
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail=f"Missing required field(s): {', '.join(fields)}")
    missing = [f for f in fields if data.get(f) in (None, "")]
    if missing:
        raise HTTPException(status_code=400, detail=f"Missing required field(s): {', '.join(missing)}")
    return data


def parse_model(model_cls: type[BaseModel], data: Any) -> BaseModel:
    try:
        return model_cls.model_validate(data or {})
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'data'}: {err['msg']}" for err in e.errors()
        )
        raise HTTPException(status_code=400, detail=f"Invalid data: {problems}")
