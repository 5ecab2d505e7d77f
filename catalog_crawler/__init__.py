"""Catalog category crawler."""

__version__ = "0.3.0"
