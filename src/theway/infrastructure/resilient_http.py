import logging
import os
import time
from dataclasses import dataclass
from typing import Any

import httpx


_RETRYABLE_STATUS_CODES = {408, 425, 429, 500, 502, 503, 504}

_logger = logging.getLogger(__name__)


class CircuitOpenError(RuntimeError):
    def __init__(self, key: str, opened_until_epoch: float) -> None:
        self.key = key
        self.opened_until_epoch = opened_until_epoch
        super().__init__(f"HTTP circuit open for {key} until {int(opened_until_epoch)}")


def _is_truthy(value: str | None, *, default: str) -> bool:
    normalized = str(value if value is not None else default).strip().lower()
    return normalized in {"1", "true", "yes"}


@dataclass
class _Circuit:
    """Failure counter for one base URL; opens for a cool-down once the threshold is hit."""

    key: str
    failures: int = 0
    opened_until_epoch: float = 0.0

    def guard(self, now: float) -> None:
        if self.opened_until_epoch > now:
            raise CircuitOpenError(self.key, self.opened_until_epoch)
        if self.opened_until_epoch > 0:
            # half-open: one attempt goes through on a clean count
            self.failures = 0
            self.opened_until_epoch = 0.0

    def trip(self, now: float, *, threshold: int, reset_seconds: float) -> None:
        self.failures += 1
        if self.failures >= threshold and self.opened_until_epoch <= 0:
            self.opened_until_epoch = now + reset_seconds
            _logger.warning("HTTP circuit opened", extra={"circuit": self.key, "failures": self.failures})


_CIRCUITS: dict[str, _Circuit] = {}


def _breaker_settings() -> tuple[bool, int, float]:
    enabled = _is_truthy(os.getenv("THEWAY_HTTP_CIRCUIT_BREAKER_ENABLED"), default="1")
    threshold = max(1, int(os.getenv("THEWAY_HTTP_CIRCUIT_FAILURE_THRESHOLD", "3")))
    reset_seconds = max(0.0, float(os.getenv("THEWAY_HTTP_CIRCUIT_RESET_SECONDS", "60")))
    return enabled, threshold, reset_seconds


def _circuit_for(client: httpx.Client) -> _Circuit:
    key = str(getattr(client, "base_url", "unknown") or "unknown")
    circuit = _CIRCUITS.get(key)
    if circuit is None:
        circuit = _CIRCUITS[key] = _Circuit(key=key)
    return circuit


def reset_circuit_breakers() -> None:
    _CIRCUITS.clear()


def _is_retryable_exception(exc: Exception) -> bool:
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in _RETRYABLE_STATUS_CODES
    return False


def post_json_with_retry(
    client: httpx.Client,
    path: str,
    *,
    payload: dict[str, Any],
    headers: dict[str, str] | None = None,
    retries: int = 0,
    backoff_seconds: float = 0.2,
) -> dict[str, Any]:
    """POST a JSON body and decode a JSON object, retrying transient failures with backoff."""

    enabled, threshold, reset_seconds = _breaker_settings()
    circuit = _circuit_for(client) if enabled else None
    attempts = max(0, int(retries)) + 1

    for attempt_index in range(attempts):
        try:
            if circuit is not None:
                circuit.guard(time.time())
            response = client.post(path, json=payload, headers=headers)
            if response.status_code in _RETRYABLE_STATUS_CODES:
                raise httpx.HTTPStatusError(
                    f"Retryable HTTP status: {response.status_code}",
                    request=response.request,
                    response=response,
                )
            response.raise_for_status()
            body = response.json()
            if circuit is not None:
                _CIRCUITS.pop(circuit.key, None)
            return body if isinstance(body, dict) else {"results": body}
        except CircuitOpenError:
            raise
        except Exception as exc:
            should_retry = _is_retryable_exception(exc)
            if should_retry and circuit is not None:
                circuit.trip(time.time(), threshold=threshold, reset_seconds=reset_seconds)
            if not should_retry or attempt_index >= attempts - 1:
                raise
            delay = max(0.0, backoff_seconds) * (2 ** attempt_index)
            _logger.info(
                "Retrying HTTP request",
                extra={"path": path, "attempt": attempt_index + 1, "delay_s": delay},
            )
            if delay > 0:
                time.sleep(delay)

    return {}
