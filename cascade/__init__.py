"""Cascade merge service: forward-propagates merges across release branches."""

__version__ = "0.1.0"
