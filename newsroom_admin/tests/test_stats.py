from datetime import datetime, timedelta, timezone

import pytest

from newsroom_admin.models import (
    Chapter, CronJobConfig, CronJobEvent, Generation, LLMUsageLog, NewsRssItem, Part, Volume,
)

LONG_TEXT = "x" * 400


def ago(**kwargs):
    return datetime.now(timezone.utc) - timedelta(**kwargs)


def news_item(age, content=None, chat_dialogue=None, tweets=None):
    when = ago(**age)
    return NewsRssItem(title="Item", content=content, chat_dialogue=chat_dialogue, tweets=tweets,
                       created_at=when, fetched_at=when)


def usage(age, operation="bulk-retell", success=True, duration_ms=100, country="us", provider="openai", **extra):
    return LLMUsageLog(provider=provider, model="gpt-4o-mini", operation=operation, success=success,
                       duration_ms=duration_ms, metadata_={"country_code": country} if country else None,
                       created_at=ago(**age), **extra)


@pytest.fixture
def news(db):
    db.add_all([
        news_item({"minutes": 30}, LONG_TEXT, [{"a": "hi"}], ["t1"]),
        news_item({"hours": 1, "minutes": 30}, "short", None, None),
        news_item({"days": 2}, LONG_TEXT, None, []),
        news_item({"days": 5}, "short", [{"a": "hi"}], ["t1"]),
        news_item({"days": 20}, LONG_TEXT, [], ["t1"]),
        news_item({"days": 40}, LONG_TEXT, [{"a": "hi"}], ["t1"]),
    ])
    db.commit()


@pytest.fixture
def bulk_logs(db):
    db.add_all([
        usage({"minutes": 10}, duration_ms=100),
        usage({"minutes": 20}, success=False, duration_ms=300, error_message="rate limited"),
        usage({"hours": 3, "minutes": 10}, duration_ms=200),
        usage({"days": 2}, duration_ms=400),
        usage({"minutes": 5}, country="gb"),
        usage({"minutes": 5}, operation="retell-news"),
    ])
    db.commit()


def test_get_stats_counts(call, db):
    volume = Volume(number=1, title="Vol")
    db.add(volume)
    db.flush()
    chapter = Chapter(volume_id=volume.id, number=1, title="Ch")
    db.add(chapter)
    db.flush()
    db.add_all([
        Part(chapter_id=chapter.id, number=1, title="P1", status="published"),
        Part(chapter_id=chapter.id, number=2, title="P2"),
        Generation(generation_type="part"),
    ])
    db.commit()

    stats = call("getStats").json()["stats"]

    assert stats == {"volumes": 1, "chapters": 1, "parts": 2, "publishedParts": 1, "generations": 1}


def test_auto_gen_stats_windows(call, news):
    stats = call("getAutoGenStats").json()["stats"]

    assert stats["h24"] == {"retold": 1, "dialogues": 1, "tweets": 1}
    assert stats["d3"] == {"retold": 2, "dialogues": 1, "tweets": 1}
    assert stats["d7"] == {"retold": 2, "dialogues": 2, "tweets": 2}
    assert stats["d30"] == {"retold": 3, "dialogues": 2, "tweets": 3}


def test_auto_gen_stats_are_monotonic(call, news):
    stats = call("getAutoGenStats").json()["stats"]
    for metric in ("retold", "dialogues", "tweets"):
        values = [stats[p][metric] for p in ("h24", "d3", "d7", "d30")]
        assert values == sorted(values)


def test_auto_gen_stats_empty(call):
    stats = call("getAutoGenStats").json()["stats"]
    assert stats["d30"] == {"retold": 0, "dialogues": 0, "tweets": 0}


def test_global_news_stats(call, news, bulk_logs):
    stats = call("getGlobalNewsStats").json()["stats"]

    assert stats["fetching"] == {"h1": 1, "h24": 2}
    # gb row and retell-news row count too; the failed run does not
    assert stats["retelling"] == {"h1": 3, "h24": 4}


def test_bulk_retell_stats(call, bulk_logs):
    stats = call("getBulkRetellStats", {"country_code": "US"}).json()["stats"]

    assert stats["country_code"] == "us"
    assert stats["all_time"] == 4
    assert stats["h24"] == 3
    assert stats["h1"] == 2
    assert stats["failed"] == 1
    assert stats["avg_processing_time_ms"] == 250
    assert stats["recent_rate"] == 0.03
    assert len(stats["hourly"]) == 24
    assert stats["hourly"][23] == {"processed": 2, "success": 1, "failed": 1}
    assert stats["hourly"][20]["processed"] == 1
    assert sum(h["processed"] for h in stats["hourly"]) == stats["h24"]


def test_bulk_retell_stats_requires_country(call):
    assert call("getBulkRetellStats", {}).status_code == 400


def test_processing_dashboard_stats(call, db, bulk_logs):
    db.add_all([
        CronJobConfig(job_name="bulk_retell_us", job_type="bulk_retell", enabled=True, last_run_status="error"),
        CronJobConfig(job_name="bulk_retell_gb", job_type="bulk_retell", enabled=False),
    ])
    db.commit()

    stats = call("getProcessingDashboardStats").json()["stats"]

    assert stats["windows"]["h1"] == {"total": 4, "success": 3, "failed": 1, "avg_duration_ms": 150}
    assert stats["windows"]["d30"]["total"] == 6
    assert stats["operations_24h"] == {"bulk-retell": 4, "retell-news": 1}
    assert stats["cron"] == {"total": 2, "enabled": 1, "failing": 1}


def test_llm_stats(call, db):
    db.add_all([
        usage({"minutes": 5}, operation="retell-news", tokens_used=100, duration_ms=200),
        usage({"minutes": 6}, operation="retell-news", success=False, tokens_used=0, duration_ms=100,
              error_message="boom"),
        usage({"minutes": 7}, operation="tweets", provider="anthropic", duration_ms=50, tokens_used=20),
        usage({"days": 2}, operation="retell-news"),
    ])
    db.commit()

    body = call("getLlmStats", {"timeRange": "24h"}).json()

    assert body["totalCalls"] == 3
    by_provider = {s["provider"]: s for s in body["stats"]}
    openai = by_provider["openai"]
    assert (openai["totalCalls"], openai["successfulCalls"], openai["failedCalls"]) == (2, 1, 1)
    assert openai["successRate"] == 50
    assert openai["avgDuration"] == 150
    assert openai["avgTokens"] == 50
    assert openai["errors"] == ["boom"]
    assert by_provider["anthropic"]["operations"] == {"tweets": 1}

    assert call("getLlmStats", {"timeRange": "7d"}).json()["totalCalls"] == 4


def test_llm_stats_rejects_unknown_range(call):
    r = call("getLlmStats", {"timeRange": "1y"})
    assert r.status_code == 400


def test_diagnostic_logs(call, db, bulk_logs):
    db.add_all([
        CronJobEvent(job_name="bulk_retell_us", event_type="sync_failed", status="error", message="no pg_cron"),
        CronJobEvent(job_name="bulk_retell_us", event_type="created", status="success"),
    ])
    db.commit()

    body = call("getDiagnosticLogs").json()

    assert [e["error_message"] for e in body["llm_errors"]] == ["rate limited"]
    assert body["llm_errors"][0]["metadata"] == {"country_code": "us"}
    assert [e["event_type"] for e in body["cron_events"]] == ["sync_failed"]
