import json
import pytest
from unittest.mock import MagicMock, patch

import requests
from sqlalchemy.exc import OperationalError
from apscheduler.schedulers.background import BackgroundScheduler

from newsroom_admin.config import settings
from newsroom_admin.models import CronJobConfig, CronJobEvent
from newsroom_admin.services.cron_sync import (
    JobRequest, PgCronBackend, build_http_post_sql, build_job_request, cron_expression,
    describe_job, record_cron_event, sync_all, sync_config,
)
from newsroom_admin.services.scheduler import SchedulerBackend, run_scheduled_request


def bulk_config(**overrides):
    fields = dict(
        job_name="bulk_retell_us",
        job_type="bulk_retell",
        enabled=True,
        frequency_minutes=60,
        countries=["us"],
        processing_options={"country_code": "us", "time_range": "last_24h",
                            "llm_model": "gpt-4o-mini", "llm_provider": "openai"},
    )
    fields.update(overrides)
    return CronJobConfig(**fields)


@pytest.mark.parametrize("minutes, expected", [
    (15, "*/15 * * * *"),
    (30, "*/30 * * * *"),
    (60, "0 * * * *"),
    (180, "0 */3 * * *"),
    (360, "0 */6 * * *"),
    (720, "0 */12 * * *"),
    (1440, "0 0 * * *"),
    (10080, "0 0 * * 0"),
    (5, "*/5 * * * *"),
    (120, "0 */2 * * *"),
])
def test_cron_expression(minutes, expected):
    assert cron_expression(minutes) == expected


@pytest.mark.parametrize("minutes", [0, -15, 7, 45, 90, 300, 2880])
def test_cron_expression_rejects_unsupported(minutes):
    with pytest.raises(ValueError):
        cron_expression(minutes)


def test_bulk_retell_request(monkeypatch):
    monkeypatch.setattr(settings, "functions_base_url", "https://proj.example.co/functions/v1/")
    monkeypatch.setattr(settings, "service_role_key", "service-key")

    req = build_job_request(bulk_config())

    assert req.function == "bulk-retell-news"
    assert req.url == "https://proj.example.co/functions/v1/bulk-retell-news"
    assert req.body == {
        "country_code": "us",
        "time_range": "last_24h",
        "llm_model": "gpt-4o-mini",
        "llm_provider": "openai",
        "job_name": "bulk_retell_us",
    }
    assert req.headers["Authorization"] == "Bearer service-key"


def test_custom_job_type_needs_function():
    with pytest.raises(ValueError):
        build_job_request(bulk_config(job_type="custom", processing_options={}))

    req = build_job_request(bulk_config(job_type="custom", processing_options={"function": "wiki-refresh", "body": {"n": 3}}))
    assert req.function == "wiki-refresh"
    assert req.body == {"n": 3}


def test_http_post_sql_quotes_values():
    req = JobRequest(function="f", url="https://x.example/f", body={"note": "it's"}, headers={})
    sql = build_http_post_sql(req, 5000)

    assert "url:='https://x.example/f'" in sql
    assert "it''s" in sql
    assert "it's" not in sql
    assert "timeout_milliseconds:=5000" in sql


def test_pg_cron_backend_binds_parameters():
    session = MagicMock()
    backend = PgCronBackend(session, timeout_ms=1000)
    req = JobRequest(function="f", url="https://x.example/f", body={"a": 1}, headers={"h": "v"})

    backend.schedule("bulk_retell_us'; DROP TABLE x; --", "0 * * * *", req)

    stmt, params = session.execute.call_args.args
    assert "cron.schedule(:job_name, :schedule, :command)" in str(stmt)
    assert params["job_name"] == "bulk_retell_us'; DROP TABLE x; --"
    assert params["schedule"] == "0 * * * *"
    assert json.dumps({"a": 1}) in params["command"]


def test_pg_cron_unschedule_missing_job_is_noop():
    session = MagicMock()
    session.execute.return_value.all.return_value = []
    backend = PgCronBackend(session)

    assert backend.unschedule("bulk_retell_zz") is False
    stmt, params = session.execute.call_args.args
    assert "FROM cron.job WHERE jobname = :job_name" in str(stmt)
    assert params == {"job_name": "bulk_retell_zz"}


def test_sync_config_unschedules_before_scheduling(cron_backend):
    result = sync_config(cron_backend, bulk_config())

    assert cron_backend.calls == [
        ("unschedule", "bulk_retell_us"),
        ("schedule", "bulk_retell_us", "0 * * * *"),
    ]
    assert result == {"unscheduled": False, "scheduled": True, "schedule": "0 * * * *"}


def test_sync_config_disabled_only_unschedules(cron_backend):
    sync_config(cron_backend, bulk_config())
    result = sync_config(cron_backend, bulk_config(enabled=False))

    assert cron_backend.calls[-1] == ("unschedule", "bulk_retell_us")
    assert result["unscheduled"] is True
    assert result["scheduled"] is False
    assert "bulk_retell_us" not in cron_backend.jobs


def test_sync_config_bad_frequency_leaves_backend_untouched(cron_backend):
    with pytest.raises(ValueError):
        sync_config(cron_backend, bulk_config(frequency_minutes=7))
    assert cron_backend.calls == []


def test_sync_all_counts_failures(db, cron_backend):
    db.add(bulk_config())
    db.add(bulk_config(job_name="bulk_retell_gb", frequency_minutes=45))
    db.add(bulk_config(job_name="bulk_retell_fr", enabled=False))
    db.commit()

    assert sync_all(db, cron_backend) == {"synced": 2, "failed": 1}
    assert set(cron_backend.jobs) == {"bulk_retell_us"}


def test_record_cron_event(db):
    record_cron_event(db, "bulk_retell_us", "created", details={"schedule": "0 * * * *"})
    event = db.query(CronJobEvent).one()
    assert (event.job_name, event.event_type, event.status) == ("bulk_retell_us", "created", "success")
    assert event.details == {"schedule": "0 * * * *"}


def test_describe_job():
    assert describe_job("bulk_retell_us") == "Bulk retell for US"
    assert describe_job("nightly", "SELECT net.http_post(url:='https://x/fetch-rss')") == "RSS fetch"


def test_scheduler_backend_round_trip(session_factory):
    sched = BackgroundScheduler(timezone="UTC")
    backend = SchedulerBackend(sched, session_factory, timeout_ms=2000)
    req = JobRequest(function="f", url="https://x.example/f", body={}, headers={})

    assert backend.unschedule("bulk_retell_us") is False
    backend.schedule("bulk_retell_us", "*/30 * * * *", req)

    jobs = backend.list_jobs()
    assert [j["name"] for j in jobs] == ["bulk_retell_us"]
    assert jobs[0]["id"] == "cron_bulk_retell_us"

    assert backend.unschedule("bulk_retell_us") is True
    assert backend.list_jobs() == []


def test_scheduled_request_failure_marks_config(session_factory):
    db = session_factory()
    db.add(bulk_config())
    db.commit()
    db.close()

    with patch("newsroom_admin.services.scheduler.requests.post",
               side_effect=requests.ConnectionError("connection refused")):
        run_scheduled_request(session_factory, "bulk_retell_us", "https://x.example/f", {}, {}, 1.0)

    db = session_factory()
    config = db.query(CronJobConfig).one()
    assert config.last_run_status == "error"
    assert "connection refused" in config.last_run_details["error"]
    db.close()


def test_scheduled_request_success_leaves_config(session_factory):
    db = session_factory()
    db.add(bulk_config())
    db.commit()
    db.close()

    ok = MagicMock(status_code=200)
    with patch("newsroom_admin.services.scheduler.requests.post", return_value=ok) as post:
        run_scheduled_request(session_factory, "bulk_retell_us", "https://x.example/f", {"a": 1}, {}, 1.0)

    post.assert_called_once_with("https://x.example/f", json={"a": 1}, headers={}, timeout=1.0)
    db = session_factory()
    assert db.query(CronJobConfig).one().last_run_status is None
    db.close()


def test_cache_refresh_request_authenticates_with_admin_password(monkeypatch):
    monkeypatch.setattr(settings, "functions_base_url", "https://proj.example.co/functions/v1")
    monkeypatch.setattr(settings, "admin_password", "panel-secret")

    req = build_job_request(bulk_config(job_name="cache_refresh_nightly", job_type="cache_refresh",
                                        countries=[], processing_options={}))

    assert req.function == "cache-pages"
    assert req.url == "https://proj.example.co/functions/v1/cache-pages?action=refresh-all"
    assert req.headers["x-admin-password"] == "panel-secret"
    assert "x-admin-password" in build_http_post_sql(req, 1000)


def test_cache_refresh_needs_admin_password(monkeypatch):
    monkeypatch.setattr(settings, "admin_password", None)
    with pytest.raises(ValueError):
        build_job_request(bulk_config(job_type="cache_refresh", processing_options={}))


def test_other_job_types_do_not_send_admin_password(monkeypatch):
    monkeypatch.setattr(settings, "admin_password", "panel-secret")
    req = build_job_request(bulk_config(job_type="fetch_rss"))
    assert "x-admin-password" not in req.headers
    assert "?" not in req.url


def test_record_cron_event_swallows_database_errors(db):
    error = OperationalError("INSERT INTO cron_job_events", {}, Exception("disk I/O error"))
    with patch.object(db, "commit", side_effect=error), \
         patch.object(db, "rollback", wraps=db.rollback) as rollback:
        record_cron_event(db, "bulk_retell_us", "created")

    rollback.assert_called_once()
    assert db.query(CronJobEvent).count() == 0
