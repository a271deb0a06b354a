"""SolHub: real-time chat with presence, channels and an admin HTTP API."""

__version__ = "1.0.0"
