"""Assistant dispatch core for the memory dashboard."""

__version__ = "0.3.0"
