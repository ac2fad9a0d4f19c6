import asyncio
from unittest.mock import MagicMock

import pytest

from quotagate.domain.errors import (
    ConfigurationError, DeadlineExceeded, RemoteCallFailed, ThrottleExhausted,
)
from quotagate.domain.events.throttle_events import (
    AdmissionDeferred, CallInitiated, CallSucceeded, DispatchFailed, RetryScheduled, ThrottleRejected,
)
from quotagate.domain.interfaces.invoker import RemoteOperationInvoker
from quotagate.domain.models.outcome import RemoteError, RemoteSuccess, RemoteThrottleRejection
from quotagate.domain.models.policy import BackoffPolicy
from quotagate.infrastructure.config.defaults import ORDER_SERVICE_POLICIES
from quotagate.infrastructure.resilience.policy_registry import RatePolicyRegistry
from quotagate.infrastructure.resilience.throttled_dispatcher import ThrottledDispatcher


def make_dispatcher(clock, entries, **kwargs):
    registry = RatePolicyRegistry(entries, clock=clock)
    return ThrottledDispatcher(registry, clock=clock, sleep=clock.sleep, **kwargs)


class ScriptedInvoke:
    """Returns the scripted outcomes in order, repeating the last one."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    async def __call__(self):
        outcome = self.outcomes[min(self.calls, len(self.outcomes) - 1)]
        self.calls += 1
        return outcome


@pytest.mark.asyncio
async def test_success_returns_response_and_consumes_one_unit(clock):
    dispatcher = make_dispatcher(clock, [("getOrder", (6, 0.015))])
    invoke = ScriptedInvoke(RemoteSuccess({"order": 1}))

    result = await dispatcher.dispatch("getOrder", invoke)

    assert result == {"order": 1}
    assert invoke.calls == 1
    assert dispatcher.registry.resolve_bucket("getOrder").snapshot() == 5
    assert clock.sleeps == []


@pytest.mark.asyncio
async def test_plain_sync_return_value_is_treated_as_success(clock):
    dispatcher = make_dispatcher(clock, [("a", (1, 1))])
    assert await dispatcher.dispatch("a", lambda: "raw-response") == "raw-response"


@pytest.mark.asyncio
async def test_waits_for_refill_before_invoking(clock):
    dispatcher = make_dispatcher(clock, ORDER_SERVICE_POLICIES)
    invoke = ScriptedInvoke(RemoteSuccess("ok"))

    for _ in range(7):
        await dispatcher.dispatch("getOrder", invoke)

    assert invoke.calls == 7
    assert sum(clock.sleeps) == pytest.approx(1 / 0.015, abs=0.01)


@pytest.mark.asyncio
async def test_alias_consumes_from_target_bucket(clock):
    dispatcher = make_dispatcher(clock, [("list", (2, 0.5)), ("listNext", (None, None, None, "list"))])
    invoke = ScriptedInvoke(RemoteSuccess("page"))

    await dispatcher.dispatch("list", invoke)
    await dispatcher.dispatch("listNext", invoke)
    assert clock.sleeps == []

    await dispatcher.dispatch("listNext", invoke)
    assert clock.sleeps == [pytest.approx(2.0)]


@pytest.mark.asyncio
async def test_deadline_shorter_than_admission_wait(clock):
    dispatcher = make_dispatcher(clock, [("a", (1, 0.5))])
    await dispatcher.dispatch("a", ScriptedInvoke(RemoteSuccess(1)))
    bucket = dispatcher.registry.resolve_bucket("a")
    capacity_before = bucket.snapshot()

    invoke = ScriptedInvoke(RemoteSuccess(2))
    with pytest.raises(DeadlineExceeded):
        await dispatcher.dispatch("a", invoke, timeout=1.0)

    assert invoke.calls == 0
    assert bucket.snapshot() == capacity_before


@pytest.mark.asyncio
async def test_absolute_deadline_is_honoured(clock):
    dispatcher = make_dispatcher(clock, [("a", (1, 0.5))])
    await dispatcher.dispatch("a", ScriptedInvoke(RemoteSuccess(1)))
    with pytest.raises(DeadlineExceeded):
        await dispatcher.dispatch("a", ScriptedInvoke(RemoteSuccess(2)), deadline=clock() + 1.0)
    result = await dispatcher.dispatch("a", ScriptedInvoke(RemoteSuccess(3)), deadline=clock() + 5.0)
    assert result == 3


@pytest.mark.asyncio
async def test_backoff_delays_are_non_decreasing_up_to_cap(clock):
    dispatcher = make_dispatcher(
        clock, [("a", (100, 1))],
        max_retries=6, backoff=BackoffPolicy(base_delay=1.0, factor=2.0, max_delay=5.0),
    )
    rejection = RemoteThrottleRejection("503 RequestThrottled")
    invoke = ScriptedInvoke(*([rejection] * 5 + [RemoteSuccess("done")]))

    result = await dispatcher.dispatch("a", invoke)

    assert result == "done"
    assert invoke.calls == 6
    assert clock.sleeps == [1.0, 2.0, 4.0, 5.0, 5.0]
    assert clock.sleeps == sorted(clock.sleeps)


@pytest.mark.asyncio
async def test_retry_budget_exhausted_without_extra_call(clock):
    dispatcher = make_dispatcher(clock, [("a", (100, 1))], max_retries=2)
    invoke = ScriptedInvoke(RemoteThrottleRejection())

    with pytest.raises(ThrottleExhausted) as excinfo:
        await dispatcher.dispatch("a", invoke)

    assert invoke.calls == 3
    assert excinfo.value.attempts == 3
    assert isinstance(excinfo.value.last_rejection, RemoteThrottleRejection)
    assert len(clock.sleeps) == 2


@pytest.mark.asyncio
async def test_retries_go_back_through_the_bucket(clock):
    dispatcher = make_dispatcher(
        clock, [("a", (1, 0.1))],
        max_retries=1, backoff=BackoffPolicy(base_delay=1.0),
    )
    invoke = ScriptedInvoke(RemoteThrottleRejection(), RemoteSuccess("ok"))

    assert await dispatcher.dispatch("a", invoke) == "ok"
    # 1s backoff, then the remaining 9s of admission wait for the second unit
    assert clock.sleeps[0] == 1.0
    assert sum(clock.sleeps) == pytest.approx(10.0, abs=0.01)


@pytest.mark.asyncio
async def test_backoff_past_deadline_raises_deadline_exceeded(clock):
    dispatcher = make_dispatcher(clock, [("a", (10, 1))], backoff=BackoffPolicy(base_delay=5.0))
    invoke = ScriptedInvoke(RemoteThrottleRejection())
    with pytest.raises(DeadlineExceeded):
        await dispatcher.dispatch("a", invoke, timeout=2.0)
    assert invoke.calls == 1


@pytest.mark.asyncio
async def test_remote_error_is_not_retried(clock):
    dispatcher = make_dispatcher(clock, [("a", (10, 1))])
    cause = {"code": "InvalidParameterValue"}
    invoke = ScriptedInvoke(RemoteError(cause))

    with pytest.raises(RemoteCallFailed) as excinfo:
        await dispatcher.dispatch("a", invoke)

    assert excinfo.value.remote_error is cause
    assert invoke.calls == 1
    assert clock.sleeps == []


@pytest.mark.asyncio
async def test_raised_exceptions_propagate_unchanged(clock):
    dispatcher = make_dispatcher(clock, [("a", (10, 1))])

    async def broken():
        raise ConnectionResetError("peer went away")

    with pytest.raises(ConnectionResetError):
        await dispatcher.dispatch("a", broken)


@pytest.mark.asyncio
async def test_unknown_action_fails_fast(clock):
    dispatcher = make_dispatcher(clock, ORDER_SERVICE_POLICIES)
    invoke = ScriptedInvoke(RemoteSuccess("x"))
    with pytest.raises(ConfigurationError):
        await dispatcher.dispatch("listOrdersItems", invoke)
    assert invoke.calls == 0


@pytest.mark.asyncio
async def test_exhausted_bucket_without_restore_rate_is_configuration_error(clock):
    dispatcher = make_dispatcher(clock, [("a", (1, 0))])
    await dispatcher.dispatch("a", ScriptedInvoke(RemoteSuccess(1)))
    with pytest.raises(ConfigurationError, match="can never grant"):
        await dispatcher.dispatch("a", ScriptedInvoke(RemoteSuccess(2)))


@pytest.mark.asyncio
@pytest.mark.parametrize("burst", [0, 0.5])
async def test_burst_below_one_unit_is_configuration_error(burst, clock):
    dispatcher = make_dispatcher(clock, [("a", (burst, 1.0))])
    invoke = ScriptedInvoke(RemoteSuccess("never"))

    with pytest.raises(ConfigurationError, match="can never grant"):
        await asyncio.wait_for(dispatcher.dispatch("a", invoke), timeout=5.0)

    assert invoke.calls == 0
    assert clock.sleeps == []


@pytest.mark.asyncio
async def test_unknown_action_emits_dispatch_failed(clock):
    sink = MagicMock()
    dispatcher = make_dispatcher(clock, ORDER_SERVICE_POLICIES, event_sink=sink)

    with pytest.raises(ConfigurationError):
        await dispatcher.dispatch("listOrdersItems", ScriptedInvoke(RemoteSuccess("x")))

    events = [c.args[0] for c in sink.call_args_list]
    assert len(events) == 1
    assert isinstance(events[0], DispatchFailed)
    assert events[0].error_type == "ConfigurationError"


@pytest.mark.asyncio
async def test_expired_deadline_rejects_even_with_capacity(clock):
    dispatcher = make_dispatcher(clock, [("a", (5, 1))])
    bucket = dispatcher.registry.resolve_bucket("a")
    invoke = ScriptedInvoke(RemoteSuccess("late"))

    with pytest.raises(DeadlineExceeded):
        await dispatcher.dispatch("a", invoke, deadline=clock() - 1.0)

    assert invoke.calls == 0
    assert bucket.snapshot() == 5


@pytest.mark.asyncio
async def test_concurrent_callers_get_exactly_available_capacity(clock):
    dispatcher = make_dispatcher(clock, [("a", (3, 1))])
    in_flight = 0
    peak = 0
    granted = 0

    async def invoke():
        nonlocal in_flight, peak, granted
        in_flight += 1
        granted += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0)
        in_flight -= 1
        return RemoteSuccess("ok")

    results = await asyncio.gather(
        *(dispatcher.dispatch("a", invoke, timeout=0.5) for _ in range(10)),
        return_exceptions=True,
    )

    assert granted == 3
    assert peak <= 3
    assert sum(isinstance(r, DeadlineExceeded) for r in results) == 7


@pytest.mark.asyncio
async def test_send_uses_configured_invoker(clock):
    class OrderInvoker(RemoteOperationInvoker):
        def __init__(self):
            self.seen = []

        async def invoke(self, action, payload):
            self.seen.append((action, payload))
            return RemoteSuccess({"echo": payload})

    invoker = OrderInvoker()
    registry = RatePolicyRegistry(ORDER_SERVICE_POLICIES, clock=clock)
    dispatcher = ThrottledDispatcher(registry, invoker=invoker, clock=clock, sleep=clock.sleep)

    result = await dispatcher.send("getOrder", {"AmazonOrderId": ["123"]})

    assert result == {"echo": {"AmazonOrderId": ["123"]}}
    assert invoker.seen == [("getOrder", {"AmazonOrderId": ["123"]})]


@pytest.mark.asyncio
async def test_send_without_invoker_is_configuration_error(clock):
    dispatcher = make_dispatcher(clock, [("a", (1, 1))])
    with pytest.raises(ConfigurationError):
        await dispatcher.send("a", {})


@pytest.mark.asyncio
async def test_events_are_emitted(clock):
    sink = MagicMock()
    dispatcher = make_dispatcher(clock, [("a", (1, 1))], event_sink=sink, max_retries=0)

    await dispatcher.dispatch("a", ScriptedInvoke(RemoteSuccess(1)))
    with pytest.raises(ThrottleExhausted):
        await dispatcher.dispatch("a", ScriptedInvoke(RemoteThrottleRejection()))

    kinds = [type(c.args[0]) for c in sink.call_args_list]
    assert kinds == [
        CallInitiated, CallSucceeded,
        AdmissionDeferred, CallInitiated, ThrottleRejected, DispatchFailed,
    ]


@pytest.mark.asyncio
async def test_retry_scheduled_event_carries_delay(clock):
    sink = MagicMock()
    dispatcher = make_dispatcher(clock, [("a", (5, 1))], event_sink=sink, backoff=BackoffPolicy(base_delay=0.25))

    await dispatcher.dispatch("a", ScriptedInvoke(RemoteThrottleRejection(), RemoteSuccess(1)))

    retries = [c.args[0] for c in sink.call_args_list if isinstance(c.args[0], RetryScheduled)]
    assert len(retries) == 1
    assert retries[0].delay_seconds == 0.25


def test_negative_retry_budget_rejected(clock):
    registry = RatePolicyRegistry([("a", (1, 1))], clock=clock)
    with pytest.raises(ValueError):
        ThrottledDispatcher(registry, max_retries=-1)
