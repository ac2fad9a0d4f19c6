"""API Resilience Implementations.

Contains the token buckets, the per-action policy registry and the throttled
dispatcher that wraps every outbound call with admission waits and
exponential backoff.
Bounded Context: API Resilience
"""

from quotagate.infrastructure.resilience.token_bucket import TokenBucket
from quotagate.infrastructure.resilience.policy_registry import RatePolicyRegistry
from quotagate.infrastructure.resilience.throttled_dispatcher import ThrottledDispatcher

__all__ = ["TokenBucket", "RatePolicyRegistry", "ThrottledDispatcher"]
