"""Configuration loading: layered settings and YAML policy tables."""
