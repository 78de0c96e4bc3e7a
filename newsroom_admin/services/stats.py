# Copyright (c) 2026 Mohammed Hassan. All rights reserved.
# Proprietary and confidential. Unauthorized copying, modification, distribution, or use is prohibited.

"""
Dashboard statistics.

Each action issues a single conditional-aggregate SELECT, so every window in a
response is computed from the same snapshot and nested windows stay monotonic.
"""

from datetime import datetime, timedelta, timezone

from fastapi import HTTPException
from fastapi.encoders import jsonable_encoder
from sqlalchemy import String, and_, case, cast, func, select

from newsroom_admin.models import (
    CronJobConfig, CronJobEvent, Generation, LLMUsageLog, NewsRssItem, Part, Chapter, Volume,
)
from newsroom_admin.services.registry import action, ActionContext, require_fields

WINDOWS = {
    "h1": timedelta(hours=1),
    "h24": timedelta(hours=24),
    "d3": timedelta(days=3),
    "d7": timedelta(days=7),
    "d30": timedelta(days=30),
}

LLM_STATS_RANGES = {"1h": 1, "24h": 24, "3d": 72, "7d": 168}

RETELL_OPERATION = "retell-news"
BULK_RETELL_OPERATION = "bulk-retell"
RETOLD_MIN_LENGTH = 300


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def count_if(*conditions):
    return func.coalesce(func.sum(case((and_(*conditions), 1), else_=0)), 0)


def has_items(column):
    """JSON array column that is neither NULL nor an empty array."""
    return and_(column.is_not(None), cast(column, String) != "[]")


@action("getStats")
def get_stats(ctx: ActionContext, data):
    row = ctx.db.execute(select(
        select(func.count(Volume.id)).scalar_subquery().label("volumes"),
        select(func.count(Chapter.id)).scalar_subquery().label("chapters"),
        select(func.count(Part.id)).scalar_subquery().label("parts"),
        select(func.count(Part.id)).where(Part.status == "published").scalar_subquery().label("publishedParts"),
        select(func.count(Generation.id)).scalar_subquery().label("generations"),
    )).mappings().one()
    return {"success": True, "stats": {k: int(v or 0) for k, v in row.items()}}


@action("getAutoGenStats")
def get_auto_gen_stats(ctx: ActionContext, data):
    now = utcnow()
    metrics = {
        "retold": and_(NewsRssItem.content.is_not(None), func.length(NewsRssItem.content) >= RETOLD_MIN_LENGTH),
        "dialogues": has_items(NewsRssItem.chat_dialogue),
        "tweets": has_items(NewsRssItem.tweets),
    }
    periods = ("h24", "d3", "d7", "d30")

    columns = []
    for period in periods:
        recent = NewsRssItem.created_at >= now - WINDOWS[period]
        for metric, condition in metrics.items():
            columns.append(count_if(recent, condition).label(f"{period}__{metric}"))

    row = ctx.db.execute(select(*columns)).mappings().one()
    stats = {period: {metric: int(row[f"{period}__{metric}"]) for metric in metrics} for period in periods}
    return {"success": True, "stats": stats}


@action("getGlobalNewsStats")
def get_global_news_stats(ctx: ActionContext, data):
    now = utcnow()
    fetching = ctx.db.execute(select(
        count_if(NewsRssItem.fetched_at >= now - WINDOWS["h1"]).label("h1"),
        count_if(NewsRssItem.fetched_at >= now - WINDOWS["h24"]).label("h24"),
    )).mappings().one()
    retelling = ctx.db.execute(select(
        count_if(LLMUsageLog.created_at >= now - WINDOWS["h1"]).label("h1"),
        count_if(LLMUsageLog.created_at >= now - WINDOWS["h24"]).label("h24"),
    ).where(
        LLMUsageLog.operation.in_((RETELL_OPERATION, BULK_RETELL_OPERATION)),
        LLMUsageLog.success.is_(True),
    )).mappings().one()
    return {
        "success": True,
        "stats": {
            "fetching": {k: int(v) for k, v in fetching.items()},
            "retelling": {k: int(v) for k, v in retelling.items()},
        },
    }


@action("getBulkRetellStats")
def get_bulk_retell_stats(ctx: ActionContext, data):
    country_code = str(require_fields(data, "country_code")["country_code"]).strip().lower()
    now = utcnow()
    scope = (
        LLMUsageLog.operation == BULK_RETELL_OPERATION,
        func.lower(LLMUsageLog.metadata_["country_code"].as_string()) == country_code,
    )

    totals = ctx.db.execute(select(
        func.count(LLMUsageLog.id).label("all_time"),
        count_if(LLMUsageLog.created_at >= now - WINDOWS["h24"]).label("h24"),
        count_if(LLMUsageLog.created_at >= now - WINDOWS["h1"]).label("h1"),
        count_if(LLMUsageLog.success.is_(False)).label("failed"),
        func.avg(LLMUsageLog.duration_ms).label("avg_ms"),
    ).where(*scope)).mappings().one()

    # Index 0 is the oldest hour, 23 the current one
    hourly = [{"processed": 0, "success": 0, "failed": 0} for _ in range(24)]
    recent_rows = ctx.db.execute(
        select(LLMUsageLog.created_at, LLMUsageLog.success)
        .where(*scope, LLMUsageLog.created_at >= now - WINDOWS["h24"])
    ).all()
    for created_at, ok in recent_rows:
        age_hours = int((now - as_utc(created_at)).total_seconds() // 3600)
        if 0 <= age_hours < 24:
            bucket = hourly[23 - age_hours]
            bucket["processed"] += 1
            bucket["success" if ok else "failed"] += 1

    h1 = int(totals["h1"])
    return {
        "success": True,
        "stats": {
            "country_code": country_code,
            "all_time": int(totals["all_time"]),
            "h24": int(totals["h24"]),
            "h1": h1,
            "failed": int(totals["failed"]),
            "avg_processing_time_ms": round(float(totals["avg_ms"] or 0)),
            "recent_rate": round(h1 / 60, 2),
            "hourly": hourly,
        },
    }


@action("getProcessingDashboardStats")
def get_processing_dashboard_stats(ctx: ActionContext, data):
    now = utcnow()
    columns = []
    for period, delta in WINDOWS.items():
        recent = LLMUsageLog.created_at >= now - delta
        columns += [
            count_if(recent).label(f"{period}__total"),
            count_if(recent, LLMUsageLog.success.is_(True)).label(f"{period}__success"),
            count_if(recent, LLMUsageLog.success.is_(False)).label(f"{period}__failed"),
            func.avg(case((recent, LLMUsageLog.duration_ms))).label(f"{period}__avg"),
        ]
    row = ctx.db.execute(select(*columns)).mappings().one()
    windows = {
        period: {
            "total": int(row[f"{period}__total"]),
            "success": int(row[f"{period}__success"]),
            "failed": int(row[f"{period}__failed"]),
            "avg_duration_ms": round(float(row[f"{period}__avg"] or 0)),
        }
        for period in WINDOWS
    }

    operations = ctx.db.execute(
        select(LLMUsageLog.operation, func.count(LLMUsageLog.id))
        .where(LLMUsageLog.created_at >= now - WINDOWS["h24"])
        .group_by(LLMUsageLog.operation)
    ).all()

    cron = ctx.db.execute(select(
        func.count(CronJobConfig.id).label("total"),
        count_if(CronJobConfig.enabled.is_(True)).label("enabled"),
        count_if(CronJobConfig.last_run_status == "error").label("failing"),
    )).mappings().one()

    return {
        "success": True,
        "stats": {
            "windows": windows,
            "operations_24h": {op: int(n) for op, n in operations},
            "cron": {k: int(v) for k, v in cron.items()},
        },
    }


def aggregate_llm_logs(logs) -> list[dict]:
    stats: dict[str, dict] = {}
    for log in logs:
        s = stats.setdefault(log.provider, {
            "provider": log.provider,
            "totalCalls": 0,
            "successfulCalls": 0,
            "failedCalls": 0,
            "totalDuration": 0,
            "totalTokens": 0,
            "operations": {},
            "models": {},
            "errors": [],
        })
        s["totalCalls"] += 1
        if log.success:
            s["successfulCalls"] += 1
        else:
            s["failedCalls"] += 1
            if log.error_message and len(s["errors"]) < 5:
                s["errors"].append(log.error_message)
        s["totalDuration"] += log.duration_ms or 0
        s["totalTokens"] += log.tokens_used or 0
        s["operations"][log.operation] = s["operations"].get(log.operation, 0) + 1
        if log.model:
            s["models"][log.model] = s["models"].get(log.model, 0) + 1

    for s in stats.values():
        calls = s["totalCalls"]
        s["avgDuration"] = round(s["totalDuration"] / calls)
        s["successRate"] = round(s["successfulCalls"] / calls * 100)
        s["avgTokens"] = round(s["totalTokens"] / calls)
    return sorted(stats.values(), key=lambda s: s["provider"])


@action("getLlmStats")
def get_llm_stats(ctx: ActionContext, data):
    time_range = data.get("timeRange", "24h") if isinstance(data, dict) else "24h"
    if time_range not in LLM_STATS_RANGES:
        raise HTTPException(status_code=400, detail=f"timeRange must be one of {', '.join(LLM_STATS_RANGES)}")
    since = utcnow() - timedelta(hours=LLM_STATS_RANGES[time_range])
    logs = ctx.db.query(LLMUsageLog).filter(LLMUsageLog.created_at >= since).all()
    return {
        "success": True,
        "timeRange": time_range,
        "stats": aggregate_llm_logs(logs),
        "totalCalls": len(logs),
    }


@action("getDiagnosticLogs")
def get_diagnostic_logs(ctx: ActionContext, data):
    data = data if isinstance(data, dict) else {}
    try:
        limit = min(max(int(data.get("limit", 50)), 1), 500)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="limit must be an integer")

    failed_calls = (
        ctx.db.query(LLMUsageLog)
        .filter(LLMUsageLog.success.is_(False))
        .order_by(LLMUsageLog.created_at.desc(), LLMUsageLog.id.desc())
        .limit(limit)
        .all()
    )
    cron_problems = (
        ctx.db.query(CronJobEvent)
        .filter(CronJobEvent.status != "success")
        .order_by(CronJobEvent.created_at.desc(), CronJobEvent.id.desc())
        .limit(limit)
        .all()
    )
    return {
        "success": True,
        "llm_errors": [
            jsonable_encoder({
                "id": log.id,
                "provider": log.provider,
                "model": log.model,
                "operation": log.operation,
                "error_message": log.error_message,
                "metadata": log.metadata_,
                "created_at": log.created_at,
            })
            for log in failed_calls
        ],
        "cron_events": [
            jsonable_encoder({
                "id": e.id,
                "job_name": e.job_name,
                "event_type": e.event_type,
                "status": e.status,
                "message": e.message,
                "created_at": e.created_at,
            })
            for e in cron_problems
        ],
    }
