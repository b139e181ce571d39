"""WSUS privileged command gateway."""

__version__ = "0.3.0"
