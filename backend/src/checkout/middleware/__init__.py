"""ASGI middleware for logging and metrics."""
