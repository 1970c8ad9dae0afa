"""Batch image generation against a rate-limited remote service."""

__version__ = "0.1.0"
