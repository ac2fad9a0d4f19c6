"""Interface for the Remote Operation Invoker.

The invoker builds nothing and interprets nothing: it takes a logical action
name and a ready-made payload, performs the remote call and reports the
outcome as one of the RemoteOutcome variants.
"""

import abc
from typing import Any

from ..models.common import ActionName
from ..models.outcome import RemoteOutcome


class RemoteOperationInvoker(abc.ABC):
    """Abstract Base Class for whatever actually talks to the remote service."""

    @abc.abstractmethod
    async def invoke(self, action: ActionName, payload: Any) -> RemoteOutcome:
        """Performs one remote call.

        Args:
            action: The logical operation name (e.g. 'listOrders').
            payload: Opaque request parameters; never inspected by the dispatcher.

        Returns:
            RemoteSuccess, RemoteThrottleRejection or RemoteError.
        """
        pass
