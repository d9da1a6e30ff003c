"""Chat history cache-and-sync layer for the AI assistant's conversations."""

__version__ = "1.0.0"
