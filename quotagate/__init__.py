"""quotagate: throttled call admission for rate-limited remote services."""

__version__ = "0.1.0"
