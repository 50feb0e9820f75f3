"""Circuit Breaker keyed per backend operation.

Implements the circuit breaker pattern per service id ("openai:chat", ...):
  - CLOSED: normal operation, calls pass through
  - OPEN: too many failures, calls are rejected (or served by a fallback)
  - HALF_OPEN: testing recovery with a bounded number of probe calls

Transitions:
  CLOSED -> OPEN        failure_count >= failure_threshold
  OPEN -> HALF_OPEN     timeout seconds elapsed since opened_at
  HALF_OPEN -> CLOSED   success_count >= success_threshold
  HALF_OPEN -> OPEN     probe budget exhausted, or failures reach threshold

State lives in an injected KeyValueStore so every worker sees the same
circuits. Updates are last-write-wins.
"""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from aigateway.core.config import settings
from aigateway.core.exceptions import CALLER_ERRORS, BackendUnavailable
from aigateway.core.metrics import CIRCUIT_TRANSITIONS
from aigateway.gateway.store import KeyValueStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Rejecting requests
    HALF_OPEN = "half_open"  # Testing recovery


_KEY_PREFIX = "circuit_breaker"


def _key(field: str, service_id: str) -> str:
    return f"{_KEY_PREFIX}.{field}.{service_id}"


class CircuitBreaker:
    """Store-backed circuit breaker.

    Usage:
        breaker = CircuitBreaker(store)
        result = await breaker.execute(lambda: adapter.chat(messages, opts), "openai:chat")
    """

    def __init__(
        self,
        store: KeyValueStore,
        failure_threshold: int | None = None,
        success_threshold: int | None = None,
        timeout: float | None = None,
        half_open_max_calls: int | None = None,
        state_ttl: int | None = None,
        counter_ttl: int | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.failure_threshold = failure_threshold or settings.circuit_failure_threshold
        self.success_threshold = success_threshold or settings.circuit_success_threshold
        self.timeout = timeout if timeout is not None else settings.circuit_timeout
        self.half_open_max_calls = half_open_max_calls or settings.circuit_half_open_max_calls
        self.state_ttl = state_ttl or settings.circuit_state_ttl
        self.counter_ttl = counter_ttl or settings.circuit_counter_ttl
        self._clock = clock
        self._known: set[str] = set()

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        service_id: str,
        fallback: Callable[[], Awaitable[T]] | None = None,
    ) -> T:
        """Run `operation` unless the circuit for `service_id` is open.

        The operation's own exception is always re-raised unchanged;
        BackendUnavailable is raised only when the call is short-circuited.
        """
        self._known.add(service_id)
        state = await self.get_state(service_id)

        if state == CircuitState.OPEN:
            opened_at = await self.store.get(_key("open_ts", service_id), 0.0)
            elapsed = self._clock() - opened_at
            if elapsed >= self.timeout:
                await self._transition(service_id, CircuitState.HALF_OPEN)
                state = CircuitState.HALF_OPEN
            else:
                if fallback is not None:
                    logger.info("Circuit %s OPEN, serving fallback", service_id)
                    return await fallback()
                raise BackendUnavailable(
                    f"Service {service_id} is temporarily unavailable",
                    provider=_provider_of(service_id),
                    retry_after=self.timeout - elapsed,
                )

        if state == CircuitState.HALF_OPEN:
            attempts = await self.store.get(_key("half_open_attempts", service_id), 0)
            if attempts >= self.half_open_max_calls:
                await self._transition(service_id, CircuitState.OPEN)
                raise BackendUnavailable(
                    f"Service {service_id} exhausted its recovery probes",
                    provider=_provider_of(service_id),
                    retry_after=self.timeout,
                )
            await self.store.set(_key("half_open_attempts", service_id), attempts + 1, self.counter_ttl)

        try:
            result = await operation()
        except CALLER_ERRORS:
            raise
        except Exception:
            await self._on_failure(service_id)
            raise

        await self._on_success(service_id, state)
        return result

    async def get_state(self, service_id: str) -> CircuitState:
        raw = await self.store.get(_key("state", service_id), CircuitState.CLOSED.value)
        return CircuitState(raw)

    async def _on_success(self, service_id: str, state: CircuitState) -> None:
        if state == CircuitState.HALF_OPEN:
            successes = await self.store.get(_key("successes", service_id), 0) + 1
            await self.store.set(_key("successes", service_id), successes, self.counter_ttl)
            if successes >= self.success_threshold:
                await self._transition(service_id, CircuitState.CLOSED)
        else:
            await self.store.set(_key("failures", service_id), 0, self.counter_ttl)

    async def _on_failure(self, service_id: str) -> None:
        failures = await self.store.get(_key("failures", service_id), 0) + 1
        await self.store.set(_key("failures", service_id), failures, self.counter_ttl)
        if failures >= self.failure_threshold:
            await self._transition(service_id, CircuitState.OPEN)
            logger.warning("Circuit %s OPENED after %d consecutive failures", service_id, failures)

    async def _transition(self, service_id: str, state: CircuitState) -> None:
        await self.store.set(_key("state", service_id), state.value, self.state_ttl)

        if state == CircuitState.OPEN:
            await self.store.set(_key("open_ts", service_id), self._clock(), self.state_ttl)
            await self.store.delete(_key("successes", service_id), _key("half_open_attempts", service_id))
        elif state == CircuitState.HALF_OPEN:
            await self.store.set(_key("half_open_attempts", service_id), 0, self.counter_ttl)
            await self.store.set(_key("successes", service_id), 0, self.counter_ttl)
            logger.info("Circuit %s transitioning to HALF_OPEN", service_id)
        else:
            await self.store.delete(
                _key("failures", service_id),
                _key("successes", service_id),
                _key("half_open_attempts", service_id),
                _key("open_ts", service_id),
            )
            logger.info("Circuit %s CLOSED (recovered)", service_id)

        CIRCUIT_TRANSITIONS.labels(service_id=service_id, state=state.value).inc()

    async def get_status(self, service_id: str) -> dict[str, Any]:
        """Get the current state of a service's circuit."""
        return {
            "service_id": service_id,
            "state": (await self.get_state(service_id)).value,
            "failure_count": await self.store.get(_key("failures", service_id), 0),
            "success_count": await self.store.get(_key("successes", service_id), 0),
            "half_open_attempts": await self.store.get(_key("half_open_attempts", service_id), 0),
            "opened_at": await self.store.get(_key("open_ts", service_id)),
        }

    async def get_all_states(self) -> list[dict[str, Any]]:
        """Circuit states for every service this breaker has seen."""
        return [await self.get_status(s) for s in sorted(self._known)]

    async def reset(self, service_id: str) -> None:
        """Manually reset a service's circuit to CLOSED."""
        await self.store.delete(
            _key("state", service_id),
            _key("failures", service_id),
            _key("successes", service_id),
            _key("half_open_attempts", service_id),
            _key("open_ts", service_id),
        )
        logger.info("Circuit %s manually RESET", service_id)


def _provider_of(service_id: str) -> str:
    return service_id.split(":", 1)[0]
