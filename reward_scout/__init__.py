"""reward-scout: cached reward-seat availability across many routes."""

__version__ = "0.3.0"
