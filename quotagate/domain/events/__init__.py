"""Domain Event definitions.

Represents significant occurrences during throttled dispatch that other parts
of the system (metrics, audit logs) might react to.
"""
