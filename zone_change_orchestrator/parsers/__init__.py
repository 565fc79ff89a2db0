"""
Input parsers for desired zone records.
"""

from .csv import CSVParser

__all__ = ["CSVParser"]
