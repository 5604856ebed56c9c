"""
Corridor Engine Errors

Typed errors returned to callers of the orchestration surface.
Each lifecycle error carries a stable ``ErrorCode`` used by the API layer.
"""

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    """Operational error codes"""
    VEHICLE_NOT_AUTHENTICATED = "VEHICLE_NOT_AUTHENTICATED"
    NO_ROUTE_FOUND = "NO_ROUTE_FOUND"
    ALREADY_ACTIVE = "ALREADY_ACTIVE"
    CORRIDOR_NOT_FOUND = "CORRIDOR_NOT_FOUND"
    INVALID_TRANSITION = "INVALID_TRANSITION"


class CorridorError(Exception):
    """Base class for lifecycle errors surfaced to the caller"""
    code: ErrorCode = ErrorCode.INVALID_TRANSITION

    def __init__(self, reason: str, code: Optional[ErrorCode] = None):
        super().__init__(reason)
        self.reason = reason
        if code is not None:
            self.code = code

    def to_dict(self) -> dict:
        return {'code': self.code.value, 'reason': self.reason}


class VehicleNotAuthenticated(CorridorError):
    code = ErrorCode.VEHICLE_NOT_AUTHENTICATED


class NoRouteFound(CorridorError):
    code = ErrorCode.NO_ROUTE_FOUND


class AlreadyActive(CorridorError):
    code = ErrorCode.ALREADY_ACTIVE


class CorridorNotFound(CorridorError):
    code = ErrorCode.CORRIDOR_NOT_FOUND


class InvalidTransition(CorridorError):
    code = ErrorCode.INVALID_TRANSITION


class TrafficProviderError(Exception):
    """Traffic/road-network provider failed to answer"""


class AuthenticationUnavailable(Exception):
    """Credential registry could not be reached"""
