"""Streaming conversational client for the XMeng personal assistant."""

__version__ = "0.1.0"
