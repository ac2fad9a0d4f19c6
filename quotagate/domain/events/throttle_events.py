"""Domain Events emitted by the throttled dispatcher."""

from dataclasses import dataclass, field
import time
from typing import Optional


@dataclass
class DomainEvent:
    """Base class for domain events."""
    pass


@dataclass
class AdmissionDeferred(DomainEvent):
    """The local bucket had no capacity; the call waits before being issued."""
    action: str
    bucket_owner: str
    wait_time_seconds: float
    timestamp: float = field(default_factory=time.time)


@dataclass
class CallInitiated(DomainEvent):
    """Capacity was granted and the remote call is about to be made."""
    action: str
    attempt_number: int
    timestamp: float = field(default_factory=time.time)


@dataclass
class CallSucceeded(DomainEvent):
    action: str
    attempt_number: int
    latency_ms: float
    timestamp: float = field(default_factory=time.time)


@dataclass
class ThrottleRejected(DomainEvent):
    """The remote side rejected the call for rate reasons."""
    action: str
    attempt_number: int
    detail: Optional[str] = None
    timestamp: float = field(default_factory=time.time)


@dataclass
class RetryScheduled(DomainEvent):
    action: str
    attempt_number: int
    delay_seconds: float
    timestamp: float = field(default_factory=time.time)


@dataclass
class DispatchFailed(DomainEvent):
    """Dispatch ended with a DispatchError."""
    action: str
    error_type: str
    error_message: str
    timestamp: float = field(default_factory=time.time)
