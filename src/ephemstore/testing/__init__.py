"""ephemstore testing utilities."""

from ephemstore.testing.clock import START_TIME, FixedClock

__all__ = ["START_TIME", "FixedClock"]
