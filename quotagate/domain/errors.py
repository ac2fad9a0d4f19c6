"""Dispatch error taxonomy.

Everything the dispatcher raises derives from DispatchError so callers can
catch the whole family in one place.
"""

from typing import Any, Optional


class DispatchError(Exception):
    """Base class for errors surfaced by the throttled dispatcher."""


class ConfigurationError(DispatchError):
    """Unknown action, dangling or chained alias, or a policy that can never refill.

    Indicates a deployment defect and is never retried.
    """


class ThrottleExhausted(DispatchError):
    """The remote side kept rejecting the call past the retry budget."""

    def __init__(self, action: str, attempts: int, last_rejection: Optional[Any] = None):
        self.action = action
        self.attempts = attempts
        self.last_rejection = last_rejection
        super().__init__(
            f"Remote throttling for '{action}' persisted after {attempts} attempts"
        )


class DeadlineExceeded(DispatchError):
    """The caller's overall wait budget elapsed before admission or success."""

    def __init__(self, action: str, waited: float):
        self.action = action
        self.waited = waited
        super().__init__(f"Deadline exceeded for '{action}' after {waited:.3f}s")


class RemoteCallFailed(DispatchError):
    """Wraps a non-throttling RemoteError returned by the invoker."""

    def __init__(self, action: str, remote_error: Any):
        self.action = action
        self.remote_error = remote_error
        super().__init__(f"Remote call '{action}' failed: {remote_error}")
