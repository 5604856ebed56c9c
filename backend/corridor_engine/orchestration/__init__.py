"""
Orchestration Package

Registry of live corridors and its per-key synchronization.
"""

from .locks import KeyedLocks
from .registry import (
    CORRIDOR_FROZEN,
    CorridorRegistry,
    build_registry,
    get_registry,
    init_registry,
    set_registry,
)

__all__ = [
    "KeyedLocks",
    "CORRIDOR_FROZEN",
    "CorridorRegistry",
    "build_registry",
    "get_registry",
    "init_registry",
    "set_registry",
]
