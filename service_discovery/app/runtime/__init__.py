"""Service-local runtime helpers."""
