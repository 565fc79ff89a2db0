"""
Command-line interface components.

This package contains the zone-change command line entry point.
"""

from .main import main

__all__ = ["main"]
