from datetime import datetime, timezone
from typing import Callable
import time

import requests
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import Session

from newsroom_admin.models import CronJobConfig
from newsroom_admin.logging_setup import log_event

JOB_ID_PREFIX = "cron_"


def run_scheduled_request(db_factory: Callable[[], Session], job_name: str, url: str, body: dict,
                          headers: dict, timeout_s: float):
    """Execution wrapper for in-process cron jobs: POST to the job's edge function."""
    t0 = time.time()
    status = "success"
    details: dict = {}
    try:
        r = requests.post(url, json=body, headers=headers, timeout=timeout_s)
        details = {"http_status": r.status_code}
        if r.status_code >= 400:
            status = "error"
            details["response"] = r.text[:500]
    except requests.RequestException as e:
        status = "error"
        details = {"error": str(e)}

    duration_ms = int((time.time() - t0) * 1000)
    log_event("cron_job_run", level="info" if status == "success" else "warning",
              job_name=job_name, status=status, duration_ms=duration_ms)

    # Successful runs report their own summary into last_run_details
    if status == "success":
        return

    db = db_factory()
    try:
        config = db.query(CronJobConfig).filter(CronJobConfig.job_name == job_name).first()
        if config:
            config.last_run_at = datetime.now(timezone.utc)
            config.last_run_status = "error"
            config.last_run_details = details
            db.commit()
    finally:
        db.close()


class SchedulerBackend:
    """Cron backend that runs jobs in an APScheduler BackgroundScheduler."""
    name = "apscheduler"

    def __init__(self, sched: BackgroundScheduler, db_factory: Callable[[], Session], timeout_ms: int = 60000):
        self.sched = sched
        self.db_factory = db_factory
        self.timeout_ms = timeout_ms

    def schedule(self, job_name: str, expression: str, request) -> None:
        self.sched.add_job(
            run_scheduled_request,
            trigger=CronTrigger.from_crontab(expression, timezone="UTC"),
            args=[self.db_factory, job_name, request.url, request.body, request.headers, self.timeout_ms / 1000],
            id=f"{JOB_ID_PREFIX}{job_name}",
            name=job_name,
            replace_existing=True,
            max_instances=1,
        )

    def unschedule(self, job_name: str) -> bool:
        job_id = f"{JOB_ID_PREFIX}{job_name}"
        if not self.sched.get_job(job_id):
            return False
        self.sched.remove_job(job_id)
        return True

    def list_jobs(self) -> list[dict]:
        jobs = []
        for job in self.sched.get_jobs():
            if not job.id.startswith(JOB_ID_PREFIX):
                continue
            next_run = getattr(job, "next_run_time", None)
            jobs.append({
                "id": job.id,
                "name": job.name,
                "schedule": str(job.trigger),
                "active": next_run is not None or not self.sched.running,
                "next_run_at": next_run.isoformat() if next_run else None,
            })
        return sorted(jobs, key=lambda j: j["name"])


# Global reference to scheduler so request handlers share one instance
_global_scheduler = None


def get_scheduler() -> BackgroundScheduler:
    global _global_scheduler
    if _global_scheduler is None:
        _global_scheduler = BackgroundScheduler(timezone="UTC")
    return _global_scheduler


def start_scheduler() -> BackgroundScheduler:
    sched = get_scheduler()
    if not sched.running:
        sched.start()
    return sched


def shutdown_scheduler():
    global _global_scheduler
    if _global_scheduler is not None and _global_scheduler.running:
        _global_scheduler.shutdown(wait=False)
    _global_scheduler = None
