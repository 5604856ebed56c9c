"""
Emergency Corridor Orchestration Engine
Backend Application Package

Validates emergency-vehicle telemetry, predicts the route ahead, runs one
corridor lifecycle per active vehicle, and targets civilian vehicles inside
the corridor's moving relevance buffer.
"""

__version__ = "1.0.0"
