from __future__ import annotations

from dataclasses import dataclass, replace
import json
import logging
import os
import threading
import time
from typing import Any
from urllib import request as urlrequest
from urllib.error import HTTPError, URLError

logger = logging.getLogger(__name__)

_METRIC_FIELDS = ("calls", "success", "errors", "retries", "latency_ms_total", "prompt_tokens_total", "completion_tokens_total")


@dataclass(frozen=True)
class TaskRoute:
    provider: str
    model: str
    base_url: str
    api_key: str
    timeout_s: int
    retries: int
    breaker_threshold: int
    breaker_cooldown_s: int
    max_tokens: int

    @property
    def metrics_key(self) -> str:
        return f"{self.provider}|{self.model}"


@dataclass(frozen=True)
class LLMError(Exception):
    code: str
    message: str
    provider: str
    task_type: str
    retryable: bool = False

    def __str__(self) -> str:
        return f"{self.code}({self.provider}/{self.task_type}): {self.message}"


def _load_route(task_type: str) -> TaskRoute:
    """Builds the OpenAI-compatible route for ``task_type`` from ``LLM_ROUTE_<TASK>_*``."""
    prefix = f"LLM_ROUTE_{task_type.upper()}_"

    def setting(name: str, default: str) -> str:
        return os.getenv(prefix + name, default).strip()

    key_env = setting("API_KEY_ENV", "OPENAI_API_KEY")
    api_key = os.getenv(key_env, "").strip()
    if not api_key:
        raise RuntimeError(f"Missing API key for task '{task_type}' (env: {key_env})")
    return TaskRoute(
        provider=setting("PROVIDER", "openai").lower(),
        model=setting("MODEL", os.getenv("OPENAI_MODEL", "gpt-4o-mini")),
        base_url=setting("BASE_URL", os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")).rstrip("/"),
        api_key=api_key,
        timeout_s=int(setting("TIMEOUT_S", "60")),
        retries=int(setting("RETRIES", "2")),
        breaker_threshold=int(setting("BREAKER_THRESHOLD", "5")),
        breaker_cooldown_s=int(setting("BREAKER_COOLDOWN_S", "60")),
        max_tokens=int(setting("MAX_TOKENS", "2000")),
    )


def _redact(message: str) -> str:
    text = (message or "").replace("\n", " ").replace("Bearer ", "Bearer [redacted]")
    return text[:300]


class LLMMediator:
    """Sends strict JSON-schema chat completions for a task type.

    Retryable failures (429, 5xx, network) are retried with a short backoff.
    Consecutive failures per task open a breaker for the route's cooldown.
    Counters are in-process only.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._failures: dict[str, int] = {}
        self._open_until: dict[str, float] = {}
        self._metrics: dict[str, dict[str, float]] = {}

    def get_metrics_snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {"routes": {key: dict(value) for key, value in self._metrics.items()}}

    def generate_json(
        self,
        *,
        task_type: str,
        system_prompt: str,
        user_prompt: str,
        json_schema: dict[str, Any],
        max_tokens: int = 1200,
        temperature: float = 0.2,
        model: str | None = None,
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        route = _load_route(task_type)
        if model:
            route = replace(route, model=model)
        if self._open_until.get(task_type, 0.0) > time.time():
            raise LLMError("circuit_open", "Too many recent failures on this route", route.provider, task_type, True)

        payload = {
            "model": route.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": temperature,
            "max_tokens": max(1, min(max_tokens, route.max_tokens)),
            "response_format": {
                "type": "json_schema",
                "json_schema": {"name": task_type, "schema": json_schema, "strict": True},
            },
        }
        started = time.perf_counter()
        try:
            response = self._call_with_retries(task_type, route, payload)
            parsed = json.loads(response["choices"][0]["message"]["content"])
        except LLMError:
            self._failed(task_type, route)
            raise
        except (KeyError, IndexError, TypeError, json.JSONDecodeError) as exc:
            self._failed(task_type, route)
            raise LLMError("invalid_json", f"Failed to parse LLM JSON response: {exc}", route.provider, task_type) from exc

        usage = response.get("usage") or {}
        with self._lock:
            self._failures[task_type] = 0
            bucket = self._bucket(task_type, route)
            bucket["calls"] += 1
            bucket["success"] += 1
            bucket["latency_ms_total"] += (time.perf_counter() - started) * 1000.0
            bucket["prompt_tokens_total"] += float(usage.get("prompt_tokens") or 0)
            bucket["completion_tokens_total"] += float(usage.get("completion_tokens") or 0)
        return parsed, {"provider": route.provider, "model": route.model, "id": response.get("id")}

    def _bucket(self, task_type: str, route: TaskRoute) -> dict[str, float]:
        return self._metrics.setdefault(
            f"{task_type}|{route.metrics_key}", {name: 0.0 for name in _METRIC_FIELDS}
        )

    def _failed(self, task_type: str, route: TaskRoute) -> None:
        with self._lock:
            bucket = self._bucket(task_type, route)
            bucket["calls"] += 1
            bucket["errors"] += 1
            failures = self._failures.get(task_type, 0) + 1
            self._failures[task_type] = failures
            if failures >= route.breaker_threshold:
                self._open_until[task_type] = time.time() + route.breaker_cooldown_s
                logger.warning("llm circuit opened task=%s failures=%s", task_type, failures)

    def _call_with_retries(self, task_type: str, route: TaskRoute, payload: dict[str, Any]) -> dict[str, Any]:
        attempt = 0
        while True:
            try:
                return self._call_chat_completion(task_type, route, payload)
            except LLMError as exc:
                if not exc.retryable or attempt >= route.retries:
                    raise
                attempt += 1
                with self._lock:
                    self._bucket(task_type, route)["retries"] += 1
                logger.info("llm retry task=%s attempt=%s code=%s", task_type, attempt, exc.code)
                time.sleep(min(2**attempt, 3))

    def _call_chat_completion(self, task_type: str, route: TaskRoute, payload: dict[str, Any]) -> dict[str, Any]:
        req = urlrequest.Request(
            url=f"{route.base_url}/chat/completions",
            data=json.dumps(payload).encode("utf-8"),
            method="POST",
            headers={"Content-Type": "application/json", "Authorization": f"Bearer {route.api_key}"},
        )
        try:
            with urlrequest.urlopen(req, timeout=max(5, route.timeout_s)) as resp:
                return json.loads(resp.read().decode("utf-8"))
        except HTTPError as exc:
            raise LLMError(
                f"http_{exc.code}",
                _redact(exc.read().decode("utf-8", errors="replace")),
                route.provider,
                task_type,
                retryable=exc.code == 429 or exc.code >= 500,
            ) from exc
        except URLError as exc:
            raise LLMError("network_error", _redact(str(exc)), route.provider, task_type, retryable=True) from exc


_MEDIATOR = LLMMediator()


def get_mediator() -> LLMMediator:
    return _MEDIATOR
