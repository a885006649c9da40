"""RouterWatch - RouterOS fleet monitoring."""

__version__ = "1.0.0"
