"""Streaming chat backend and client for a local inference server"""

__version__ = "0.1.0"
