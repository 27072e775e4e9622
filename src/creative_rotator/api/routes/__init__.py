"""API route modules."""

from creative_rotator.api.routes import health, sessions, stats

__all__ = ["health", "sessions", "stats"]
