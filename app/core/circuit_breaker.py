"""
Circuit breaker for payment gateway calls.

State lives in Django's cache backend (Redis in production) so every web
worker and Celery worker sees the same view of a failing gateway.

States:
    - CLOSED: Normal operation, all calls pass through
    - OPEN: Gateway is failing, calls fail fast without reaching it
    - HALF_OPEN: Testing recovery, limited calls allowed through

Only exceptions listed in ``failure_exceptions`` trip the breaker. A card
decline or a signature mismatch is the gateway answering correctly and
must not open the circuit; a timeout or a 5xx should.

Usage:
    from core.circuit_breaker import CircuitBreaker

    breaker = CircuitBreaker(
        name="gateway:card",
        failure_threshold=5,
        recovery_timeout=60,
        failure_exceptions=(GatewayUnavailableError,),
    )

    with breaker.call():
        result = StripeAdapter.create_payment_intent(params)
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from django.core.cache import cache

from core.exceptions import ExternalServiceError

if TYPE_CHECKING:
    from collections.abc import Generator

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    """Configuration for a circuit breaker instance."""

    failure_threshold: int = 5
    """Number of consecutive failures before opening circuit."""

    recovery_timeout: int = 60
    """Seconds to wait before attempting recovery (half-open state)."""

    half_open_max_calls: int = 1
    """Number of test calls allowed in half-open state."""

    cache_ttl: int = 3600
    """TTL for cache keys in seconds (should exceed recovery_timeout)."""


class CircuitOpenError(ExternalServiceError):
    """
    Raised when attempting to call through an open circuit.

    Signals that the gateway is considered unavailable, not that a call
    actually failed. Gateways translate it into GatewayUnavailableError.
    """

    status_code: int = 503
    default_error_code: str = "CIRCUIT_OPEN"
    is_retryable: bool = True


class CircuitBreaker:
    """
    Distributed circuit breaker using Django cache backend.

    Attributes:
        name: Unique identifier for this circuit breaker
        config: Circuit breaker configuration
        failure_exceptions: Exception types counted as failures
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
        half_open_max_calls: int = 1,
        failure_exceptions: tuple[type[BaseException], ...] = (Exception,),
    ):
        self.name = name
        self.config = CircuitBreakerConfig(
            failure_threshold=failure_threshold,
            recovery_timeout=recovery_timeout,
            half_open_max_calls=half_open_max_calls,
        )
        self.failure_exceptions = failure_exceptions

        self._state_key = f"circuit:{name}:state"
        self._failures_key = f"circuit:{name}:failures"
        self._opened_at_key = f"circuit:{name}:opened_at"
        self._half_open_calls_key = f"circuit:{name}:half_open_calls"

    def is_available(self) -> bool:
        """
        Check if the circuit allows calls through.

        Returns:
            True if calls are allowed (closed or half-open with budget left),
            False if the circuit is open and the recovery timeout has not
            elapsed. Cache errors fail open.
        """
        try:
            state = self._get_state()

            if state == CircuitState.CLOSED:
                return True

            if state == CircuitState.OPEN:
                opened_at = self._get_opened_at()
                if (
                    opened_at
                    and (time.time() - opened_at) >= self.config.recovery_timeout
                ):
                    self._set_state(CircuitState.HALF_OPEN)
                    self._reset_half_open_calls()
                    logger.info(
                        "Circuit breaker transitioning to half-open",
                        extra={"circuit": self.name},
                    )
                    self._increment_half_open_calls()
                    return True
                return False

            if state == CircuitState.HALF_OPEN:
                if self._get_half_open_calls() < self.config.half_open_max_calls:
                    self._increment_half_open_calls()
                    return True
                return False

            return True

        except Exception as e:
            logger.warning(
                f"Circuit breaker cache error, failing open: {e}",
                extra={"circuit": self.name},
            )
            return True

    def record_success(self) -> None:
        """Record a successful call. Closes a half-open circuit."""
        try:
            if self._get_state() == CircuitState.HALF_OPEN:
                self._set_state(CircuitState.CLOSED)
                logger.info(
                    "Circuit breaker closed after successful recovery",
                    extra={"circuit": self.name},
                )
            self._reset_failures()

        except Exception as e:
            logger.warning(
                f"Circuit breaker failed to record success: {e}",
                extra={"circuit": self.name},
            )

    def record_failure(self) -> None:
        """
        Record a failed call.

        Opens the circuit once the threshold is reached. A failure while
        half-open reopens it immediately.
        """
        try:
            if self._get_state() == CircuitState.HALF_OPEN:
                self._open_circuit()
                logger.warning(
                    "Circuit breaker reopened after failed recovery attempt",
                    extra={"circuit": self.name},
                )
                return

            failures = self._increment_failures()
            if failures >= self.config.failure_threshold:
                self._open_circuit()
                logger.warning(
                    f"Circuit breaker opened after {failures} failures",
                    extra={
                        "circuit": self.name,
                        "failure_count": failures,
                        "threshold": self.config.failure_threshold,
                    },
                )

        except Exception as e:
            logger.warning(
                f"Circuit breaker failed to record failure: {e}",
                extra={"circuit": self.name},
            )

    @contextmanager
    def call(self) -> Generator[None, None, None]:
        """
        Context manager for automatic success/failure recording.

        Raises:
            CircuitOpenError: If the circuit is open

        Exceptions outside ``failure_exceptions`` propagate without
        touching the failure count.
        """
        if not self.is_available():
            raise CircuitOpenError(
                f"Circuit '{self.name}' is open",
                details={"circuit": self.name},
            )

        try:
            yield
        except CircuitOpenError:
            raise
        except self.failure_exceptions:
            self.record_failure()
            raise
        else:
            self.record_success()

    def reset(self) -> None:
        """Manually reset the circuit breaker to closed state."""
        self._set_state(CircuitState.CLOSED)
        self._reset_failures()
        self._reset_half_open_calls()
        logger.info("Circuit breaker manually reset", extra={"circuit": self.name})

    def get_status(self) -> dict:
        """Current state, failure count and timing, for the admin summary."""
        state = self._get_state()
        opened_at = self._get_opened_at()
        status = {
            "name": self.name,
            "state": state.value,
            "failure_count": self._get_failures(),
            "failure_threshold": self.config.failure_threshold,
        }
        if state != CircuitState.CLOSED and opened_at:
            elapsed = time.time() - opened_at
            status["opened_seconds_ago"] = int(elapsed)
            status["recovery_in_seconds"] = max(
                0, int(self.config.recovery_timeout - elapsed)
            )
        return status

    # =========================================================================
    # Private cache operations
    # =========================================================================

    def _get_state(self) -> CircuitState:
        state_str = cache.get(self._state_key, CircuitState.CLOSED.value)
        try:
            return CircuitState(state_str)
        except ValueError:
            return CircuitState.CLOSED

    def _set_state(self, state: CircuitState) -> None:
        cache.set(self._state_key, state.value, timeout=self.config.cache_ttl)

    def _get_failures(self) -> int:
        return cache.get(self._failures_key, 0)

    def _increment_failures(self) -> int:
        try:
            return cache.incr(self._failures_key)
        except ValueError:
            cache.set(self._failures_key, 1, timeout=self.config.cache_ttl)
            return 1

    def _reset_failures(self) -> None:
        cache.set(self._failures_key, 0, timeout=self.config.cache_ttl)

    def _get_opened_at(self) -> float | None:
        return cache.get(self._opened_at_key)

    def _open_circuit(self) -> None:
        self._set_state(CircuitState.OPEN)
        cache.set(self._opened_at_key, time.time(), timeout=self.config.cache_ttl)

    def _get_half_open_calls(self) -> int:
        return cache.get(self._half_open_calls_key, 0)

    def _increment_half_open_calls(self) -> int:
        try:
            return cache.incr(self._half_open_calls_key)
        except ValueError:
            cache.set(self._half_open_calls_key, 1, timeout=self.config.cache_ttl)
            return 1

    def _reset_half_open_calls(self) -> None:
        cache.set(self._half_open_calls_key, 0, timeout=self.config.cache_ttl)

    def __repr__(self) -> str:
        return f"CircuitBreaker(name={self.name!r}, state={self._get_state().value})"
