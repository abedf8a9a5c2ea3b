"""Marina booking backend: reservations, holds and provider sync."""

__version__ = "1.0.0"
