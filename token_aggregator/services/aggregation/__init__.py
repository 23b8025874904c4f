"""
Aggregation module exports.
"""

from .aggregator import TokenAggregator
from .merge import merge_all, merge_records

__all__ = [
    "TokenAggregator",
    "merge_all",
    "merge_records",
]
