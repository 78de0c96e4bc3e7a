import time
from datetime import datetime, timezone
from typing import Any

import requests
from fastapi import HTTPException
from openai import OpenAI, OpenAIError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from newsroom_admin.models import LLMUsageLog
from newsroom_admin.schemas import ProviderTestIn
from newsroom_admin.logging_setup import log_event
from newsroom_admin.services.registry import action, ActionContext, parse_model

PROVIDER_TEST_OPERATION = "provider-test"
PROVIDER_TIMEOUT = 20

# provider -> model used when logging the connectivity check
PROVIDER_TEST_MODELS = {
    "openai": "models.list",
    "anthropic": "models.list",
    "gemini": "models.list",
    "geminiV22": "models.list",
    "mistral": "models.list",
    "zai": "glm-4.5-flash",
}


def log_llm_usage(db: Session, *, provider: str, model: str | None, operation: str, duration_ms: float,
                  success: bool, tokens_used: int | None = None, error_message: str | None = None,
                  metadata: dict[str, Any] | None = None) -> None:
    """Appends one llm_usage_logs row; failures are logged, never raised."""
    try:
        db.add(LLMUsageLog(
            provider=provider,
            model=model,
            operation=operation,
            tokens_used=tokens_used,
            duration_ms=int(round(duration_ms)),
            success=success,
            error_message=error_message[:1000] if error_message else None,
            metadata_=metadata,
            created_at=datetime.now(timezone.utc),
        ))
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        log_event("llm_usage_log_failed", level="warning", provider=provider, operation=operation, error=str(e))


def _check_openai(api_key: str) -> tuple[bool, str]:
    try:
        models = OpenAI(api_key=api_key, timeout=PROVIDER_TIMEOUT).models.list()
        count = len(models.data)
    except OpenAIError as e:
        return False, f"OpenAI error: {e}"
    return True, f"OpenAI key is valid ({count} models available)"


def _http_check(label: str, method: str, url: str, **kwargs) -> tuple[bool, str]:
    try:
        r = requests.request(method, url, timeout=PROVIDER_TIMEOUT, **kwargs)
    except requests.RequestException as e:
        return False, f"{label} request failed: {e}"
    if r.status_code == 200:
        return True, f"{label} key is valid"
    return False, f"{label} returned HTTP {r.status_code}: {r.text[:200]}"


def _check_anthropic(api_key: str):
    return _http_check("Anthropic", "GET", "https://api.anthropic.com/v1/models",
                       headers={"x-api-key": api_key, "anthropic-version": "2023-06-01"})


def _check_gemini(api_key: str):
    return _http_check("Gemini", "GET", "https://generativelanguage.googleapis.com/v1beta/models",
                       params={"key": api_key})


def _check_mistral(api_key: str):
    return _http_check("Mistral", "GET", "https://api.mistral.ai/v1/models",
                       headers={"Authorization": f"Bearer {api_key}"})


def _check_zai(api_key: str):
    # Z.AI has no public model listing; a one-token completion proves the key
    return _http_check("Z.AI", "POST", "https://api.z.ai/api/paas/v4/chat/completions",
                       headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
                       json={"model": PROVIDER_TEST_MODELS["zai"],
                             "messages": [{"role": "user", "content": "ping"}],
                             "max_tokens": 1})


PROVIDER_CHECKS = {
    "openai": _check_openai,
    "anthropic": _check_anthropic,
    "gemini": _check_gemini,
    "geminiV22": _check_gemini,
    "mistral": _check_mistral,
    "zai": _check_zai,
}


@action("testProvider")
def run_provider_test(ctx: ActionContext, data):
    payload = parse_model(ProviderTestIn, data)
    check = PROVIDER_CHECKS.get(payload.provider)
    if not check:
        raise HTTPException(status_code=400, detail=f"Unknown provider: {payload.provider}")

    t0 = time.time()
    ok, message = check(payload.apiKey)
    duration_ms = (time.time() - t0) * 1000

    log_llm_usage(
        ctx.db,
        provider=payload.provider,
        model=PROVIDER_TEST_MODELS.get(payload.provider),
        operation=PROVIDER_TEST_OPERATION,
        duration_ms=duration_ms,
        success=ok,
        error_message=None if ok else message,
    )
    log_event("provider_tested", provider=payload.provider, ok=ok, duration_ms=int(duration_ms))
    return {"success": ok, "message": message}
