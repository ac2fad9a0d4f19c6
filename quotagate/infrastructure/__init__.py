"""Infrastructure Layer: adapters for resilience, configuration, monitoring and the CLI."""
