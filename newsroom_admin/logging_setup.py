# Copyright (c) 2026 Mohammed Hassan. All rights reserved.
# Proprietary and confidential. Unauthorized copying, modification, distribution, or use is prohibited.

import logging
import sys
import contextvars
import threading
import queue
import requests
import json
from datetime import datetime, timezone
from pythonjsonlogger import jsonlogger
from newsroom_admin.config import settings

SERVICE_NAME = "newsroom-admin"

request_id_var = contextvars.ContextVar("request_id", default=None)

# Secrets to redact
SECRETS = ["token", "secret", "password", "key", "authorization", "cookie"]


def is_secret_key(key) -> bool:
    return isinstance(key, str) and any(s in key.lower() for s in SECRETS)


def redact(key, value):
    """Masks secret-named strings, including inside nested action payloads and headers."""
    if isinstance(value, dict):
        return {k: redact(k, v) for k, v in value.items()}
    if isinstance(value, list):
        return [redact(key, v) for v in value]
    if isinstance(value, str) and is_secret_key(key):
        return "***REDACTED***"
    return value


class RedactingJsonFormatter(jsonlogger.JsonFormatter):
    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        if not log_record.get("timestamp"):
            log_record["timestamp"] = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")

        if log_record.get("level"):
            log_record["level"] = log_record["level"].upper()
        else:
            log_record["level"] = record.levelname

        req_id = request_id_var.get()
        if req_id:
            log_record["request_id"] = req_id

        log_record["environment"] = "local" if not settings.axiom_token else "production"
        log_record["service_name"] = SERVICE_NAME

        for key, value in list(log_record.items()):
            log_record[key] = redact(key, value)


class AxiomHandler(logging.Handler):
    """Ships logs to Axiom via HTTP in the background."""
    def __init__(self):
        super().__init__()
        self.queue = queue.Queue(maxsize=10000)
        self.worker = threading.Thread(target=self._ship_logs, daemon=True)
        self.worker.start()

    def _ship_logs(self):
        batch = []
        while True:
            try:
                batch.append(self.queue.get(timeout=3.0))
            except queue.Empty:
                pass

            if batch and (len(batch) >= 50 or self.queue.empty()):
                self._send_to_axiom(batch)
                batch = []

    def _send_to_axiom(self, batch):
        if not settings.axiom_token or not settings.axiom_dataset:
            return

        url = f"{settings.axiom_url.rstrip('/')}/v1/datasets/{settings.axiom_dataset}/ingest"
        headers = {
            "Authorization": f"Bearer {settings.axiom_token}",
            "Content-Type": "application/json",
        }
        if settings.axiom_org_id:
            headers["X-Axiom-Org-Id"] = settings.axiom_org_id

        try:
            requests.post(url, headers=headers, json=batch, timeout=5.0)
        except requests.RequestException:
            pass  # log shipping must never take the worker down

    def emit(self, record):
        if not settings.axiom_token:
            return
        try:
            self.queue.put_nowait(json.loads(self.format(record)))
        except Exception:
            self.handleError(record)


def setup_logging():
    logger = logging.getLogger()
    logger.setLevel(settings.log_level.upper())

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    formatter = RedactingJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if settings.axiom_token:
        axiom_handler = AxiomHandler()
        axiom_handler.setFormatter(formatter)
        logger.addHandler(axiom_handler)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


def log_event(event: str, level: str = "info", **fields):
    """Helper method to log structured JSON events cleanly."""
    logger = logging.getLogger(SERVICE_NAME)
    fields["event"] = event

    msg_fields = {k: v for k, v in fields.items() if v is not None}

    if level.lower() == "debug":
        logger.debug(event, extra=msg_fields)
    elif level.lower() == "warning":
        logger.warning(event, extra=msg_fields)
    elif level.lower() == "error":
        logger.error(event, extra=msg_fields)
    else:
        logger.info(event, extra=msg_fields)
