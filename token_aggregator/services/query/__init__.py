"""
Query module exports.
"""

from .engine import QueryEngine

__all__ = [
    "QueryEngine",
]
