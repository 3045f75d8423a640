"""Live monitor for metered EV charging sessions."""

__version__ = "0.1.0"
