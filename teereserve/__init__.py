"""TeeReserve green fee pricing and tee sheet service."""

__version__ = "1.0.0"
