"""Settings row and row-level CRUD for the content tables."""

from datetime import datetime, timezone
from typing import Any

from fastapi import HTTPException
from fastapi.encoders import jsonable_encoder
from pydantic import TypeAdapter, ValidationError
from sqlalchemy import DateTime, inspect
from sqlalchemy.exc import IntegrityError

from newsroom_admin.models import (
    Settings, Volume, Chapter, Part, Character, CharacterRelationship, NewsRssItem, WikiEntity,
)
from newsroom_admin.logging_setup import log_event
from newsroom_admin.services.registry import action, ActionContext, require_fields

API_KEY_FIELDS = (
    "openai_api_key",
    "anthropic_api_key",
    "gemini_api_key",
    "gemini_v22_api_key",
    "mistral_api_key",
    "zai_api_key",
)

READ_ONLY_FIELDS = ("id", "created_at", "updated_at")

_datetime_adapter = TypeAdapter(datetime)


def row_to_dict(row) -> dict:
    return jsonable_encoder({attr.key: getattr(row, attr.key) for attr in inspect(row).mapper.column_attrs})


def parse_datetime(value: Any, field: str) -> datetime:
    try:
        return _datetime_adapter.validate_python(value)
    except ValidationError:
        raise HTTPException(status_code=400, detail=f"{field} must be an ISO-8601 datetime")


def clean_fields(model, data: dict, exclude=READ_ONLY_FIELDS) -> dict:
    """Keeps only real columns of `model`, coercing datetime strings."""
    columns = dict(inspect(model).columns.items())
    cleaned = {}
    for key, value in data.items():
        if key in exclude or key not in columns:
            continue
        if isinstance(columns[key].type, DateTime) and isinstance(value, str):
            value = parse_datetime(value, key)
        cleaned[key] = value
    return cleaned


def _get_or_404(ctx: ActionContext, model, row_id):
    row = ctx.db.get(model, row_id)
    if not row:
        raise HTTPException(status_code=404, detail=f"{model.__name__} {row_id} not found")
    return row


def _commit(ctx: ActionContext):
    try:
        ctx.db.commit()
    except IntegrityError as e:
        ctx.db.rollback()
        raise HTTPException(status_code=400, detail=f"Constraint violation: {e.orig}")


def _register_create(label: str, model, key: str):
    @action(f"create{label}")
    def create(ctx: ActionContext, data):
        fields = clean_fields(model, data if isinstance(data, dict) else {})
        if not fields:
            raise HTTPException(status_code=400, detail=f"No {key} fields provided")
        row = model(**fields)
        ctx.db.add(row)
        _commit(ctx)
        ctx.db.refresh(row)
        return {"success": True, key: row_to_dict(row)}
    return create


def _register_update(label: str, model, key: str):
    @action(f"update{label}")
    def update(ctx: ActionContext, data):
        data = require_fields(data, "id")
        row = _get_or_404(ctx, model, data["id"])
        for field, value in clean_fields(model, data).items():
            setattr(row, field, value)
        _commit(ctx)
        ctx.db.refresh(row)
        return {"success": True, key: row_to_dict(row)}
    return update


def _register_delete(label: str, model):
    @action(f"delete{label}")
    def delete(ctx: ActionContext, data):
        data = require_fields(data, "id")
        row = _get_or_404(ctx, model, data["id"])
        ctx.db.delete(row)
        _commit(ctx)
        return {"success": True}
    return delete


# label -> (model, response key, operations)
CRUD_RESOURCES = {
    "Volume": (Volume, "volume", ("create", "update")),
    "Chapter": (Chapter, "chapter", ("create", "update", "delete")),
    "Part": (Part, "part", ("create", "update", "delete")),
    "Character": (Character, "character", ("create", "update", "delete")),
    "Relationship": (CharacterRelationship, "relationship", ("create", "update", "delete")),
    "NewsItem": (NewsRssItem, "news_item", ("update", "delete")),
    "WikiEntity": (WikiEntity, "wiki_entity", ("update", "delete")),
}

for _label, (_model, _key, _ops) in CRUD_RESOURCES.items():
    if "create" in _ops:
        _register_create(_label, _model, _key)
    if "update" in _ops:
        _register_update(_label, _model, _key)
    if "delete" in _ops:
        _register_delete(_label, _model)


@action("publishPart")
def publish_part(ctx: ActionContext, data):
    data = require_fields(data, "id")
    part = _get_or_404(ctx, Part, data["id"])
    part.status = "published"
    part.published_at = datetime.now(timezone.utc)
    _commit(ctx)
    log_event("part_published", part_id=part.id)
    return {"success": True}


@action("schedulePart")
def schedule_part(ctx: ActionContext, data):
    data = require_fields(data, "id", "scheduled_at")
    part = _get_or_404(ctx, Part, data["id"])
    part.status = "scheduled"
    part.scheduled_at = parse_datetime(data["scheduled_at"], "scheduled_at")
    _commit(ctx)
    return {"success": True}


# Settings

def mask_secret(value: str | None) -> str | None:
    if not value:
        return None
    return "****" + value[-4:] if len(value) > 8 else "****"


def get_or_create_settings(ctx: ActionContext) -> Settings:
    row = ctx.db.query(Settings).order_by(Settings.id.asc()).first()
    if not row:
        row = Settings()
        ctx.db.add(row)
        ctx.db.commit()
        ctx.db.refresh(row)
    return row


def settings_defaults() -> dict:
    """Column defaults of a settings row that has not been saved yet."""
    out = {}
    for attr in inspect(Settings).column_attrs:
        default = attr.columns[0].default
        out[attr.key] = default.arg if default is not None and default.is_scalar else None
    return out


def settings_to_dict(row: Settings | None) -> dict:
    out = row_to_dict(row) if row is not None else settings_defaults()
    for field in API_KEY_FIELDS:
        out[f"has_{field}"] = bool(out.get(field))
        out[field] = mask_secret(out.get(field))
    return out


@action("verify")
def verify(ctx: ActionContext, data):
    return {"success": True, "message": "Authorized"}


@action("getSettings")
def get_settings(ctx: ActionContext, data):
    # Read-only: a missing row is reported as defaults and created by the first update
    row = ctx.db.query(Settings).order_by(Settings.id.asc()).first()
    return {"success": True, "settings": settings_to_dict(row)}


@action("updateSettings")
def update_settings(ctx: ActionContext, data):
    # Key columns go through updateApiKeys so masked values never get written back
    fields = clean_fields(Settings, data if isinstance(data, dict) else {}, exclude=READ_ONLY_FIELDS + API_KEY_FIELDS)
    if not fields:
        raise HTTPException(status_code=400, detail="No settings fields provided")

    row = get_or_create_settings(ctx)
    for field, value in fields.items():
        setattr(row, field, value)
    _commit(ctx)
    log_event("settings_updated", fields=sorted(fields))
    return {"success": True}


@action("updateApiKeys")
def update_api_keys(ctx: ActionContext, data):
    data = data if isinstance(data, dict) else {}
    keys = {
        field: data[field].strip()
        for field in API_KEY_FIELDS
        if isinstance(data.get(field), str) and data[field].strip()
    }
    if not keys:
        raise HTTPException(status_code=400, detail="No API keys to update")

    row = get_or_create_settings(ctx)
    for field, value in keys.items():
        setattr(row, field, value)
    _commit(ctx)
    log_event("api_keys_updated", fields=sorted(keys))
    return {"success": True, "updated": sorted(keys)}
