"""Multi-device sync coordination service."""

__version__ = "0.1.0"
