"""One-directional catalog synchronizer for a remote product API."""

__version__ = "1.0.0"
