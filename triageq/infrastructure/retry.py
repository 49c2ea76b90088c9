"""
Retry helpers for remote provider calls: backoff with jitter plus a circuit breaker.

Used by the Gmail and Sheets adapters. Retries stay inside one provider call;
once a call gives up, the owning watcher records the error and the next
scheduled poll is the retry.
"""

from __future__ import annotations

import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

from triageq.observability.telemetry import counter, log_event

T = TypeVar("T")


class AdapterError(RuntimeError):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class CircuitOpenError(AdapterError):
    """Raised instead of calling a provider whose breaker is open."""


@dataclass
class RetryPolicy:
    stage: str
    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 5.0
    jitter: float = 0.1
    sleep_fn: Callable[[float], None] | None = time.sleep

    def execute(self, func: Callable[..., T], *args, **kwargs) -> T:
        """Call func, retrying 429/5xx AdapterErrors and unclassified failures.

        Side Effects:
            - Sleeps between attempts via sleep_fn
            - Emits stage_error / retry_scheduled telemetry events
        """
        attempt = 0
        last_error: Exception | None = None

        while attempt < self.max_attempts:
            attempt += 1
            try:
                return func(*args, **kwargs)
            except AdapterError as exc:
                if not self._should_retry(exc):
                    log_event(
                        "stage_error",
                        stage=self.stage,
                        error=str(exc),
                        status=exc.status_code,
                        attempt=attempt,
                    )
                    raise
                last_error = exc
            except Exception as exc:
                last_error = exc
                log_event("stage_error", stage=self.stage, error=str(exc), attempt=attempt)

            if attempt >= self.max_attempts:
                break

            self._backoff(attempt)

        assert last_error is not None
        raise last_error

    def _should_retry(self, exc: AdapterError) -> bool:
        if isinstance(exc, CircuitOpenError):
            return False
        status = exc.status_code
        if status is None:
            return True
        return bool(status == 429 or 500 <= status < 600)

    def _backoff(self, attempt: int) -> None:
        counter("retry_count")
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        delay += random.uniform(0, self.jitter)
        log_event("retry_scheduled", stage=self.stage, attempt=attempt, delay=round(delay, 3))
        if self.sleep_fn is not None:
            self.sleep_fn(delay)


@dataclass
class CircuitBreaker:
    stage: str
    fail_max: int = 5
    reset_timeout: float = 60.0
    clock: Callable[[], float] = time.time
    _failures: int = field(default=0, init=False)
    _state: str = field(default="closed", init=False)
    _opened_at: float = field(default=0.0, init=False)

    @property
    def state(self) -> str:
        return self._state

    def allow_request(self) -> bool:
        if self._state == "open":
            if self.clock() - self._opened_at >= self.reset_timeout:
                self._state = "half_open"
                self._failures = 0
                return True
            counter("circuit_open_rate")
            log_event("circuit.open", stage=self.stage)
            return False
        return True

    def record_success(self) -> None:
        self._failures = 0
        self._state = "closed"

    def record_failure(self) -> None:
        self._failures += 1
        if self._failures >= self.fail_max:
            self._state = "open"
            self._opened_at = self.clock()
            counter("circuit_open_rate")
            log_event("circuit.opened", stage=self.stage, failures=self._failures)

    def call(self, func: Callable[..., T], *args, **kwargs) -> T:
        """Run func through the breaker, recording the outcome.

        Only 429/5xx and transport failures count against the breaker; a 4xx
        means the request itself was wrong, not that the provider is down.
        """
        if not self.allow_request():
            raise CircuitOpenError(f"{self.stage} circuit is open; skipping call")
        try:
            result = func(*args, **kwargs)
        except AdapterError as exc:
            if exc.status_code is None or exc.status_code == 429 or exc.status_code >= 500:
                self.record_failure()
            raise
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result
