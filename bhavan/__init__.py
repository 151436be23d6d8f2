"""Bhavan.ai paid-services backend."""

__version__ = "1.0.0"
