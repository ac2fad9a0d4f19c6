"""Outcome variants returned by a Remote Operation Invoker.

The dispatcher pattern-matches these: throttling rejections trigger backoff,
errors are handed back to the caller untouched.
"""

from dataclasses import dataclass
from typing import Any, Optional, Union


@dataclass(frozen=True)
class RemoteSuccess:
    response: Any


@dataclass(frozen=True)
class RemoteThrottleRejection:
    """The remote side reported 'too many requests'."""
    detail: Optional[Any] = None


@dataclass(frozen=True)
class RemoteError:
    """Any non-throttling failure reported by the remote side."""
    error: Any


RemoteOutcome = Union[RemoteSuccess, RemoteThrottleRejection, RemoteError]
