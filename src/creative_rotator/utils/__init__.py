"""Shared utilities."""

from creative_rotator.utils.async_utils import run_async
from creative_rotator.utils.time_utils import as_utc, utcnow, utctoday

__all__ = ["as_utc", "run_async", "utcnow", "utctoday"]
