"""Core utilities: configuration, security, errors and metrics."""
