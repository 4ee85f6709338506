"""ORION — real-time conversational agent backend."""

__version__ = "1.0.0"
