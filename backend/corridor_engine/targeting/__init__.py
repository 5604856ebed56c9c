"""
Targeting Package

Buffer-region targeting, target set diffing and the civilian vehicle index.
"""

from .engine import TargetingEngine, BufferTargetingEngine
from .diff import diff_target_sets, clearances_for
from .civilian_index import CivilianVehicleIndex

__all__ = [
    "TargetingEngine",
    "BufferTargetingEngine",
    "diff_target_sets",
    "clearances_for",
    "CivilianVehicleIndex",
]
