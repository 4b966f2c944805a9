"""Batch crop images to a common aspect ratio, with smart framing detection."""

__version__ = "1.0.0"
