"""Service for executing remote calls under per-action rate limits.

Every outbound call passes through ThrottledDispatcher.dispatch, which waits
for local bucket capacity, invokes the remote operation once capacity is
granted, and applies bounded exponential backoff when the remote side itself
reports throttling.
"""

import asyncio
import inspect
import logging
import math
import time
from typing import Any, Awaitable, Callable, Optional, Union

from quotagate.domain.errors import (
    ConfigurationError, DeadlineExceeded, DispatchError, RemoteCallFailed, ThrottleExhausted,
)
from quotagate.domain.events.throttle_events import (
    AdmissionDeferred, CallInitiated, CallSucceeded, DispatchFailed,
    DomainEvent, RetryScheduled, ThrottleRejected,
)
from quotagate.domain.interfaces.invoker import RemoteOperationInvoker
from quotagate.domain.models.common import ActionName
from quotagate.domain.models.outcome import RemoteError, RemoteSuccess, RemoteThrottleRejection
from quotagate.domain.models.policy import BackoffPolicy
from quotagate.infrastructure.resilience.policy_registry import RatePolicyRegistry
from quotagate.infrastructure.resilience.token_bucket import TokenBucket

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 5
# Floor for admission sleeps so float rounding in the refill math cannot stall the loop
MIN_ADMISSION_WAIT = 0.001

Invoke = Callable[[], Union[Any, Awaitable[Any]]]


def _log_event(event: DomainEvent) -> None:
    logger.debug(f"EVENT: {event}")


class ThrottledDispatcher:
    """Handles remote call execution with admission control and reactive backoff."""

    def __init__(
        self,
        registry: RatePolicyRegistry,
        invoker: Optional[RemoteOperationInvoker] = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff: Optional[BackoffPolicy] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        event_sink: Optional[Callable[[DomainEvent], None]] = None,
    ):
        """Initializes the ThrottledDispatcher.

        Args:
            registry: Policy registry owning the token buckets.
            invoker: Optional default invoker used by `send`.
            max_retries: Retries allowed after remote throttling rejections.
            backoff: Delay schedule between those retries.
            clock: Monotonic time source; must match the registry's clock.
            sleep: Coroutine used for admission waits and backoff delays.
            event_sink: Receives domain events; defaults to debug logging.
        """
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.registry = registry
        self.invoker = invoker
        self.max_retries = max_retries
        self.backoff = backoff or BackoffPolicy()
        self._clock = clock
        self._sleep = sleep
        self._emit = event_sink or _log_event

        logger.info(
            f"ThrottledDispatcher initialized: max_retries={max_retries}, "
            f"backoff base={self.backoff.base_delay}s factor={self.backoff.factor} "
            f"cap={self.backoff.max_delay}s"
        )

    async def dispatch(
        self,
        action: str,
        invoke: Invoke,
        *,
        timeout: Optional[float] = None,
        deadline: Optional[float] = None,
    ) -> Any:
        """Runs `invoke` once the action's bucket grants capacity.

        Args:
            action: The logical action name; selects the rate policy.
            invoke: Zero-argument callable performing the remote call. It may
                return an awaitable. Its result is a RemoteSuccess,
                RemoteThrottleRejection, RemoteError, or a bare response.
            timeout: Overall wait budget in seconds from now.
            deadline: Absolute instant on the dispatcher's clock. When both
                are given the earlier one applies.

        Returns:
            The response produced by the invoker.

        Raises:
            ConfigurationError: Unknown action, or a bucket that can never grant a unit.
            DeadlineExceeded: The wait budget ran out (or the deadline had already
                passed); the call was not issued.
            ThrottleExhausted: Remote rejections outlasted max_retries.
            RemoteCallFailed: The invoker returned a RemoteError.
        """
        started = self._clock()
        deadline = self._effective_deadline(started, timeout, deadline)

        try:
            # Config errors are programming errors: surface them before any waiting.
            bucket = self.registry.resolve_bucket(action)
            if deadline is not None and started > deadline:
                raise DeadlineExceeded(action, waited=0.0)
            return await self._run(ActionName(action), bucket, invoke, started, deadline)
        except DispatchError as e:
            self._emit(DispatchFailed(action=action, error_type=type(e).__name__, error_message=str(e)))
            raise

    async def send(self, action: str, payload: Any, *, timeout: Optional[float] = None) -> Any:
        """Dispatches `payload` through the invoker given at construction."""
        if self.invoker is None:
            raise ConfigurationError("ThrottledDispatcher.send requires an invoker")
        invoker = self.invoker
        return await self.dispatch(action, lambda: invoker.invoke(ActionName(action), payload), timeout=timeout)

    def _effective_deadline(
        self, now: float, timeout: Optional[float], deadline: Optional[float]
    ) -> Optional[float]:
        if timeout is not None:
            if timeout < 0:
                raise ValueError("timeout must be >= 0")
            by_timeout = now + timeout
            deadline = by_timeout if deadline is None else min(deadline, by_timeout)
        return deadline

    async def _run(
        self,
        action: ActionName,
        bucket: TokenBucket,
        invoke: Invoke,
        started: float,
        deadline: Optional[float],
    ) -> Any:
        attempt = 0
        while True:
            await self._acquire(action, bucket, started, deadline)

            self._emit(CallInitiated(action=action, attempt_number=attempt + 1))
            call_start = time.perf_counter()
            outcome = invoke()
            if inspect.isawaitable(outcome):
                outcome = await outcome
            latency_ms = (time.perf_counter() - call_start) * 1000

            if isinstance(outcome, RemoteThrottleRejection):
                self._emit(ThrottleRejected(
                    action=action, attempt_number=attempt + 1,
                    detail=None if outcome.detail is None else str(outcome.detail),
                ))
                if attempt >= self.max_retries:
                    logger.error(f"Max retries ({self.max_retries}) reached for '{action}' after remote throttling.")
                    raise ThrottleExhausted(action, attempts=attempt + 1, last_rejection=outcome)

                delay = self.backoff.delay_for(attempt)
                now = self._clock()
                if deadline is not None and now + delay > deadline:
                    raise DeadlineExceeded(action, waited=now - started)

                logger.warning(
                    f"Remote throttled '{action}' on attempt {attempt + 1}/{self.max_retries + 1}. "
                    f"Waiting {delay:.2f}s..."
                )
                self._emit(RetryScheduled(action=action, attempt_number=attempt + 1, delay_seconds=delay))
                await self._sleep(delay)
                attempt += 1
                continue

            if isinstance(outcome, RemoteError):
                logger.error(f"Remote error calling '{action}' on attempt {attempt + 1}: {outcome.error}")
                raise RemoteCallFailed(action, outcome.error)

            self._emit(CallSucceeded(action=action, attempt_number=attempt + 1, latency_ms=latency_ms))
            if isinstance(outcome, RemoteSuccess):
                return outcome.response
            return outcome

    async def _acquire(
        self,
        action: ActionName,
        bucket: TokenBucket,
        started: float,
        deadline: Optional[float],
    ) -> None:
        """Waits until the bucket grants one unit, or raises before consuming anything."""
        while True:
            now = self._clock()
            if bucket.try_consume(now):
                return

            wait_time = bucket.time_until_available(now)
            if math.isinf(wait_time):
                raise ConfigurationError(
                    f"bucket '{bucket.owner}' can never grant a unit (burst={bucket.burst_capacity:g}, "
                    f"restore_rate={bucket.restore_rate:g}/s); "
                    f"'{action}' can never be admitted"
                )
            wait_time = max(wait_time, MIN_ADMISSION_WAIT)
            if deadline is not None and now + wait_time > deadline:
                raise DeadlineExceeded(action, waited=now - started)

            logger.debug(f"Rate limit reached for '{action}'. Waiting for {wait_time:.2f} seconds.")
            self._emit(AdmissionDeferred(action=action, bucket_owner=bucket.owner, wait_time_seconds=wait_time))
            await self._sleep(wait_time)
