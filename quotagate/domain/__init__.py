"""Domain layer: value objects, events, ports and the error taxonomy."""
