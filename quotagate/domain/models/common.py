"""Common value objects shared across the throttling context."""

from typing import NewType

ActionName = NewType("ActionName", str)  # Logical remote operation, e.g. 'getOrder'
