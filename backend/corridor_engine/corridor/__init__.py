"""
Corridor Package

Per-vehicle corridor lifecycle.
"""

from .state_machine import (
    VALID_TRANSITIONS,
    Corridor,
    CorridorStateMachine,
    new_corridor_id,
)

__all__ = [
    "VALID_TRANSITIONS",
    "Corridor",
    "CorridorStateMachine",
    "new_corridor_id",
]
