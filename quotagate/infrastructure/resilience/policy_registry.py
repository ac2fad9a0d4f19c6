"""Registry of per-action rate-limit policies and the buckets they own.

Built once from an ordered list of (action, policy) entries and immutable
afterwards. Later entries for the same action replace earlier ones.
"""

import time
import logging
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Tuple, Union

from quotagate.domain.errors import ConfigurationError
from quotagate.domain.models.common import ActionName
from quotagate.domain.models.policy import AliasPolicy, DirectPolicy, RatePolicy, coerce_policy
from quotagate.infrastructure.resilience.token_bucket import TokenBucket

logger = logging.getLogger(__name__)

PolicyEntries = Union[Iterable[Tuple[str, Any]], Mapping[str, Any]]


class RatePolicyRegistry:
    """Maps action names to policies and resolves each action to its bucket."""

    def __init__(
        self,
        entries: PolicyEntries,
        clock: Callable[[], float] = time.monotonic,
        strict_duplicates: bool = False,
    ):
        """Builds and validates the registry.

        Args:
            entries: Ordered (action, policy) pairs, or a mapping. Each policy
                is anything `coerce_policy` accepts.
            clock: Monotonic time source handed to every bucket.
            strict_duplicates: Reject an action registered twice with an
                identical policy instead of logging it.

        Raises:
            ConfigurationError: On a malformed policy, a dangling alias, or an
                alias whose target is itself an alias.
        """
        if isinstance(entries, Mapping):
            entries = list(entries.items())

        policies: Dict[str, RatePolicy] = {}
        for action, raw in entries:
            if not isinstance(action, str) or not action:
                raise ConfigurationError(f"action name must be a non-empty string, got {action!r}")
            try:
                policy = coerce_policy(raw)
            except ConfigurationError as e:
                raise ConfigurationError(f"invalid policy for '{action}': {e}") from e

            if action in policies:
                previous = policies[action]
                if previous == policy:
                    if strict_duplicates:
                        raise ConfigurationError(f"duplicate registration for '{action}': {policy}")
                    logger.warning(f"Duplicate registration for '{action}' with identical policy {policy}")
                else:
                    logger.warning(f"Policy for '{action}' overridden: {previous} -> {policy}")
            policies[action] = policy

        self._validate_aliases(policies)

        self._policies: Mapping[str, RatePolicy] = MappingProxyType(policies)
        self._buckets: Mapping[str, TokenBucket] = MappingProxyType({
            action: TokenBucket(action, policy.burst_capacity, policy.restore_rate, clock=clock)
            for action, policy in policies.items()
            if isinstance(policy, DirectPolicy)
        })
        logger.info(
            f"RatePolicyRegistry initialized: {len(self._policies)} actions, "
            f"{len(self._buckets)} buckets"
        )

    @staticmethod
    def _validate_aliases(policies: Mapping[str, RatePolicy]) -> None:
        for action, policy in policies.items():
            if not isinstance(policy, AliasPolicy):
                continue
            target = policy.alias_of
            if target == action:
                raise ConfigurationError(f"'{action}' is an alias of itself")
            if target not in policies:
                raise ConfigurationError(f"'{action}' aliases unknown action '{target}'")
            if isinstance(policies[target], AliasPolicy):
                raise ConfigurationError(
                    f"'{action}' aliases '{target}', which is itself an alias; "
                    "alias chains deeper than one level are not allowed"
                )

    @property
    def policies(self) -> Mapping[str, RatePolicy]:
        return self._policies

    @property
    def buckets(self) -> Mapping[str, TokenBucket]:
        return self._buckets

    def policy_for(self, action: str) -> RatePolicy:
        try:
            return self._policies[action]
        except KeyError:
            raise ConfigurationError(f"no rate policy registered for action '{action}'") from None

    def bucket_owner(self, action: str) -> ActionName:
        """Returns the Direct-Policy action whose bucket serves `action`."""
        policy = self.policy_for(action)
        if isinstance(policy, AliasPolicy):
            return policy.alias_of
        return ActionName(action)

    def resolve_bucket(self, action: str) -> TokenBucket:
        """Returns the bucket for `action`, following at most one alias hop.

        Raises:
            ConfigurationError: If the action is unknown.
        """
        return self._buckets[self.bucket_owner(action)]

    def actions(self) -> List[str]:
        return list(self._policies)

    def __contains__(self, action: object) -> bool:
        return action in self._policies

    def __len__(self) -> int:
        return len(self._policies)

    def __iter__(self) -> Iterator[str]:
        return iter(self._policies)
