# utils/__init__.py
"""General utility helpers for the automation core."""

from .logging import setup_logging

__all__ = ["setup_logging"]
