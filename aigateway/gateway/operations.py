"""Driver for long-running backend operations (submit -> poll -> fetch).

Adapters expose `submit_*` returning an OperationHandle and `poll_*`
returning an OperationOutcome. The driver owns the waiting: it sleeps a
fixed interval between polls, bounds the attempt count and wraps the whole
loop in one asyncio.wait_for budget so callers can cancel it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from aigateway.core.exceptions import BackendError, BackendTimeout
from aigateway.gateway.types import MediaAsset, OperationHandle, OperationOutcome, OperationState

logger = logging.getLogger(__name__)

PollFn = Callable[[OperationHandle], Awaitable[OperationOutcome]]


async def wait_for_operation(
    handle: OperationHandle,
    poll: PollFn,
    interval: float,
    max_attempts: int,
    timeout: float,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> MediaAsset:
    """Poll until the operation is ready.

    Raises BackendError when the backend reports failure and BackendTimeout
    when either the attempt budget or the overall timeout runs out.
    """

    async def _loop() -> MediaAsset:
        for attempt in range(1, max_attempts + 1):
            await sleep(interval)
            outcome = await poll(handle)

            if outcome.state == OperationState.READY and outcome.result is not None:
                logger.info(
                    "Operation %s (%s) ready after %d polls", handle.operation_id, handle.provider, attempt
                )
                return outcome.result
            if outcome.state == OperationState.FAILED:
                raise BackendError(
                    f"Operation {handle.operation_id} failed: {outcome.error}",
                    provider=handle.provider,
                    error_code="operation_failed",
                )

            logger.debug("Operation %s pending (attempt %d/%d)", handle.operation_id, attempt, max_attempts)

        raise BackendTimeout(
            f"Operation {handle.operation_id} not complete after {max_attempts} polls",
            provider=handle.provider,
            timeout=interval * max_attempts,
        )

    try:
        return await asyncio.wait_for(_loop(), timeout=timeout)
    except asyncio.TimeoutError as e:
        raise BackendTimeout(
            f"Operation {handle.operation_id} exceeded {timeout:.0f}s budget",
            provider=handle.provider,
            timeout=timeout,
        ) from e
