"""Rate-limit policy value objects.

A RatePolicy is either a DirectPolicy, which owns a token bucket, or an
AliasPolicy, which borrows the bucket of another action (used by paginated
continuation calls that share quota with the call they continue).
"""

import numbers
from dataclasses import dataclass
from typing import Any, Mapping, Union

from quotagate.domain.errors import ConfigurationError
from quotagate.domain.models.common import ActionName


def _non_negative(name: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise ConfigurationError(f"{name} must be a number, got {value!r}")
    if value < 0:
        raise ConfigurationError(f"{name} must be >= 0, got {value!r}")
    return float(value)


@dataclass(frozen=True)
class DirectPolicy:
    """Owns a bucket that starts full and refills linearly up to its burst."""
    burst_capacity: float
    restore_rate: float  # units per second

    def __post_init__(self):
        object.__setattr__(self, "burst_capacity", _non_negative("burst_capacity", self.burst_capacity))
        object.__setattr__(self, "restore_rate", _non_negative("restore_rate", self.restore_rate))

    @property
    def seconds_per_unit(self) -> float:
        """Time for one unit of capacity to accrue (inf when it never refills)."""
        if self.restore_rate == 0:
            return float("inf")
        return 1.0 / self.restore_rate


@dataclass(frozen=True)
class AliasPolicy:
    """Has no capacity of its own; consumes from the bucket of `alias_of`."""
    alias_of: ActionName

    def __post_init__(self):
        if not isinstance(self.alias_of, str) or not self.alias_of:
            raise ConfigurationError(f"alias target must be a non-empty action name, got {self.alias_of!r}")


RatePolicy = Union[DirectPolicy, AliasPolicy]


def coerce_policy(raw: Any) -> RatePolicy:
    """Converts a configuration value into a RatePolicy.

    Accepted shapes:
        DirectPolicy / AliasPolicy        passed through
        (burst, rate)                     DirectPolicy
        (None, None, None, target)        AliasPolicy (legacy alias marker)
        {'burst': b, 'restore_rate': r}   DirectPolicy
        {'alias_of': target}              AliasPolicy

    Raises:
        ConfigurationError: For any other shape.
    """
    if isinstance(raw, (DirectPolicy, AliasPolicy)):
        return raw

    if isinstance(raw, Mapping):
        if "alias_of" in raw:
            extra = set(raw) - {"alias_of"}
            if extra:
                raise ConfigurationError(f"alias policy cannot also set {sorted(extra)}")
            return AliasPolicy(ActionName(raw["alias_of"]))
        if "burst" in raw and "restore_rate" in raw:
            return DirectPolicy(raw["burst"], raw["restore_rate"])
        raise ConfigurationError(f"unrecognised policy mapping: {dict(raw)!r}")

    if isinstance(raw, (list, tuple)):
        if len(raw) == 2:
            return DirectPolicy(raw[0], raw[1])
        if len(raw) == 4 and raw[0] is None and raw[1] is None and raw[2] is None:
            return AliasPolicy(ActionName(raw[3]))

    raise ConfigurationError(f"unrecognised policy shape: {raw!r}")


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff applied after a remote throttling rejection."""
    base_delay: float = 1.0
    factor: float = 2.0
    max_delay: float = 60.0

    def __post_init__(self):
        _non_negative("base_delay", self.base_delay)
        _non_negative("max_delay", self.max_delay)
        if self.factor < 1:
            raise ConfigurationError(f"backoff factor must be >= 1, got {self.factor!r}")

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number `attempt` (0-based), capped at max_delay."""
        if attempt < 0:
            raise ValueError("attempt must be >= 0")
        try:
            delay = self.base_delay * (self.factor ** attempt)
        except OverflowError:
            return self.max_delay
        return min(delay, self.max_delay)
