"""
Utility modules for EnrollSync.
"""

from .conflict_resolution import (
    ConflictResolver,
    ConflictResolution,
    ConflictAction,
    TiePolicy,
    parse_timestamp
)

__all__ = [
    "ConflictResolver",
    "ConflictResolution",
    "ConflictAction",
    "TiePolicy",
    "parse_timestamp"
]
