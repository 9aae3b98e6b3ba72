"""E-waste blockchain verification service."""

__version__ = "1.0.0"
