"""
HTTP mapping of corridor errors
"""

from fastapi import HTTPException

from corridor_engine.errors import CorridorError, ErrorCode

ERROR_STATUS = {
    ErrorCode.VEHICLE_NOT_AUTHENTICATED: 403,
    ErrorCode.NO_ROUTE_FOUND: 422,
    ErrorCode.ALREADY_ACTIVE: 409,
    ErrorCode.CORRIDOR_NOT_FOUND: 404,
    ErrorCode.INVALID_TRANSITION: 409,
}


def http_error(error: CorridorError) -> HTTPException:
    """HTTPException carrying ``{"code", "reason"}`` as detail"""
    return HTTPException(status_code=ERROR_STATUS.get(error.code, 400), detail=error.to_dict())
