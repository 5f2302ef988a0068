"""KnitCount counter engine: linked knitting counters with history and live sync."""

__version__ = "0.1.0"
