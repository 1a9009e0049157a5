"""
Structured-output calls to OpenAI chat completions.

`call_json` is the only entry point services use. It returns a validated
pydantic model, degrading through response formats and models before giving
up, and can hand back a caller-supplied heuristic result instead of failing.
"""

from __future__ import annotations

import json
import random
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from openai import OpenAI
from pydantic import BaseModel, ValidationError

from ..observability.logging import get_logger
from ..settings import DEFAULT_OPENAI_MODEL, settings
from .purposes import defaults_for

log = get_logger("ai")

ModelT = TypeVar("ModelT", bound=BaseModel)

_RETRYABLE_STATUS = frozenset({408, 409, 425, 429, 500, 502, 503, 504})
_RETRYABLE_PHRASES = ("timeout", "timed out", "temporarily unavailable", "rate limit")


class AiError(RuntimeError):
    pass


class AiNotConfigured(AiError):
    pass


class AiUpstreamError(AiError):
    pass


class AiParseError(AiError):
    pass


@dataclass(frozen=True)
class AiMeta:
    purpose: str
    model: str
    attempts: int
    used_response_format: str | None


def _http_status(exc: Exception) -> int | None:
    for value in (getattr(exc, "status_code", None), getattr(exc, "status", None)):
        if isinstance(value, int):
            return value
    value = getattr(getattr(exc, "response", None), "status_code", None)
    return value if isinstance(value, int) else None


def _is_transient(exc: Exception) -> bool:
    if _http_status(exc) in _RETRYABLE_STATUS:
        return True
    text = str(exc).lower()
    return any(p in text for p in _RETRYABLE_PHRASES)


class _CircuitBreaker:
    """Opens for `cooldown_s` after `threshold` transient failures that are less than `window_s` apart."""

    def __init__(self, *, threshold: int = 5, window_s: float = 60.0, cooldown_s: float = 15.0):
        self.threshold = threshold
        self.window_s = window_s
        self.cooldown_s = cooldown_s
        self.failures = 0
        self.last_failure_at = 0.0
        self.open_until = 0.0

    def is_open(self) -> bool:
        return self.open_until > time.time()

    def success(self) -> None:
        self.failures = 0
        self.last_failure_at = 0.0
        self.open_until = 0.0

    def failure(self, exc: Exception) -> None:
        if not _is_transient(exc):
            return
        now = time.time()
        if self.last_failure_at and now - self.last_failure_at > self.window_s:
            self.failures = 0
        self.failures += 1
        self.last_failure_at = now
        if self.failures >= self.threshold:
            self.open_until = now + self.cooldown_s
            log.warning("ai_circuit_opened", failures=self.failures, cooldown_s=self.cooldown_s)


_breaker = _CircuitBreaker()


def is_configured() -> bool:
    return bool(str(settings.openai_api_key or "").strip())


def _client(*, timeout_s: int = 60) -> Any:
    if not is_configured():
        raise AiNotConfigured("OPENAI_API_KEY not configured")
    headers = {
        name: str(value).strip()
        for name, value in (
            ("OpenAI-Project", settings.openai_project_id),
            ("OpenAI-Organization", settings.openai_organization_id),
        )
        if str(value or "").strip()
    }
    # max_retries=0: call_json owns retries and backoff.
    return OpenAI(
        api_key=settings.openai_api_key,
        max_retries=0,
        timeout=max(5, int(timeout_s or 60)),
        default_headers=headers or None,
    )


def _models_to_try(purpose: str) -> list[str]:
    """Purpose override, then OPENAI_MODEL, then the built-in default; deduplicated."""
    ordered: list[str] = []
    for candidate in (settings.openai_model_for(purpose), settings.openai_model, DEFAULT_OPENAI_MODEL):
        name = str(candidate or "").strip()
        if name and name not in ordered:
            ordered.append(name)
    return ordered


def _model_inaccessible(exc: Exception, model: str) -> bool:
    text = str(exc).lower()
    if "model_not_found" in text or "does not have access to model" in text:
        return True
    return bool(model) and model.lower() in text and "access" in text


def strict_json_schema(schema: Any) -> Any:
    """
    Copy of `schema` in the shape strict structured outputs accept: every
    object lists all of its properties as required and forbids extras.
    """
    if isinstance(schema, list):
        return [strict_json_schema(v) for v in schema]
    if not isinstance(schema, dict):
        return schema
    out = {k: strict_json_schema(v) for k, v in schema.items()}
    if out.get("type") == "object":
        props = out.get("properties")
        if isinstance(props, dict) and props:
            out["required"] = list(props)
        out["additionalProperties"] = False
    return out


def _bounded_messages(messages: list[dict[str, str]], max_chars: int) -> list[dict[str, str]]:
    return [
        {"role": str(m.get("role") or "user"), "content": str(m.get("content") or "")[:max_chars]}
        for m in messages or []
    ]


def _output_modes(response_model: type[BaseModel], temperature: float) -> list[tuple[str, dict[str, Any] | None, float]]:
    schema = strict_json_schema(response_model.model_json_schema())
    return [
        (
            "json_schema",
            {"type": "json_schema", "json_schema": {"name": response_model.__name__, "schema": schema, "strict": True}},
            0.0,
        ),
        ("json_object", {"type": "json_object"}, 0.0),
        ("none", None, temperature),
    ]


def _complete(client: Any, *, model: str, messages: list[dict[str, str]], response_format, temperature: float, max_tokens: int) -> str:
    request: dict[str, Any] = {"model": model, "messages": messages, "temperature": temperature}
    if response_format is not None:
        request["response_format"] = response_format
    try:
        completion = client.chat.completions.create(**request, max_completion_tokens=max_tokens)
    except Exception as e:
        # Older models reject max_completion_tokens.
        text = str(e).lower()
        if "max_completion_tokens" not in text or "unsupported parameter" not in text:
            raise
        completion = client.chat.completions.create(**request, max_tokens=max_tokens)
    return (completion.choices[0].message.content or "").strip()


def _parse(content: str, response_model: type[ModelT], *, free_text: bool) -> ModelT:
    if not content:
        raise AiParseError("empty_model_response")
    raw = content
    if free_text:
        match = re.search(r"\{[\s\S]*\}", content)
        raw = match.group(0) if match else content
    try:
        return response_model.model_validate(json.loads(raw))
    except ValueError as e:
        kind = "schema_validation_error" if isinstance(e, ValidationError) else "json_decode_error"
        raise AiParseError(f"{kind}: {e}") from e


def _repair_hint(err: Exception) -> dict[str, str]:
    return {
        "role": "user",
        "content": (
            "The previous reply was not a JSON object matching the required schema "
            f"({str(err)[:500]}). Reply with exactly one JSON object and nothing else."
        ),
    }


def call_json(
    *,
    purpose: str,
    response_model: type[ModelT],
    messages: list[dict[str, str]],
    max_tokens: int | None = None,
    temperature: float = 0.2,
    retries: int = 2,
    fallback: Callable[[], ModelT] | None = None,
    timeout_s: int | None = None,
    max_prompt_chars: int = 200_000,
) -> tuple[ModelT, AiMeta]:
    """Ask for `response_model` as JSON; returns (parsed, meta).

    Per attempt the response formats are tried in order json_schema,
    json_object, then free text with the first {...} block extracted. A model
    the project cannot use is skipped for the next in `_models_to_try`.
    Parse failures add a repair hint to the next attempt's messages.

    With `fallback`, every failure path (no API key, open circuit, exhausted
    attempts) returns `fallback()` instead of raising.
    """
    def _use_fallback(reason: str, model: str = "none", attempts: int = 0):
        log.warning("ai_fallback_used", purpose=purpose, reason=reason)
        return fallback(), AiMeta(purpose=purpose, model=model, attempts=attempts, used_response_format=None)

    if not is_configured():
        if fallback is None:
            raise AiNotConfigured("OPENAI_API_KEY not configured")
        return _use_fallback("not_configured")
    if _breaker.is_open():
        if fallback is None:
            raise AiUpstreamError("ai_temporarily_unavailable")
        return _use_fallback("circuit_open")

    defaults = defaults_for(purpose)
    budget = int(max_tokens or defaults.max_tokens_default)
    cap = int(settings.openai_max_output_tokens_cap or 0)
    if cap > 0:
        budget = min(budget, cap)
    attempts = max(1, int(retries))
    client = _client(timeout_s=int(timeout_s or defaults.timeout_s))
    base_messages = _bounded_messages(messages, max_prompt_chars)
    modes = _output_modes(response_model, temperature)

    last_err: Exception | None = None
    for model in _models_to_try(purpose):
        skip_model = False
        for attempt in range(1, attempts + 1):
            attempt_messages = list(base_messages)
            if isinstance(last_err, AiParseError):
                attempt_messages.append(_repair_hint(last_err))

            for label, response_format, temp in modes:
                content = ""
                try:
                    content = _complete(
                        client,
                        model=model,
                        messages=attempt_messages,
                        response_format=response_format,
                        temperature=temp,
                        max_tokens=budget,
                    )
                    parsed = _parse(content, response_model, free_text=response_format is None)
                except Exception as e:
                    last_err = e
                    _breaker.failure(e)
                    if _model_inaccessible(e, model):
                        log.warning("ai_model_unavailable", purpose=purpose, model=model, error=str(e))
                        skip_model = True
                        break
                    log.warning(
                        "ai_attempt_failed",
                        purpose=purpose,
                        model=model,
                        attempt=attempt,
                        response_format=label,
                        status_code=_http_status(e),
                        error=str(e),
                        content_preview=content[:240],
                    )
                    continue

                _breaker.success()
                used = f"chat_{label}"
                log.info("ai_call_ok", purpose=purpose, model=model, attempts=attempt, response_format=used)
                return parsed, AiMeta(purpose=purpose, model=model, attempts=attempt, used_response_format=used)

            if skip_model:
                break
            if attempt < attempts:
                time.sleep(min(3.0, 0.4 * 2 ** (attempt - 1) + random.random() * 0.2))

    if fallback is not None:
        return _use_fallback(str(last_err or "ai_json_failed"), model=_models_to_try(purpose)[0], attempts=attempts)
    if last_err is not None and _model_inaccessible(last_err, settings.openai_model_for(purpose)):
        raise AiNotConfigured(
            f"No configured OpenAI model is available for purpose '{purpose}'; "
            "check OPENAI_MODEL and the OPENAI_MODEL_* overrides."
        )
    raise AiUpstreamError(str(last_err) if last_err else "ai_json_failed")
