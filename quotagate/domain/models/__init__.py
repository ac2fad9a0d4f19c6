"""Domain models: policies, backoff settings and remote call outcomes."""
