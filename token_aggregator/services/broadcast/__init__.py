"""
Broadcast module exports.
"""

from .broadcaster import Broadcaster, Publisher
from .detector import ChangeDetector, ChangeSet, ChangeThresholds, DetectorState

__all__ = [
    "Broadcaster",
    "Publisher",
    "ChangeDetector",
    "ChangeSet",
    "ChangeThresholds",
    "DetectorState",
]
