"""Selective synchronization from a staging environment to production."""

__version__ = "0.1.0"
