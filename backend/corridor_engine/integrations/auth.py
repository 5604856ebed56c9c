"""
Vehicle Authentication

Credential checks for emergency vehicles requesting a corridor. The real
registry is an external service; ``StaticAuthenticator`` serves
allow-listed ids and prefixes from configuration.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Iterable, Optional, Set

from corridor_engine.errors import AuthenticationUnavailable
from corridor_engine.models import AuthenticationResult

logger = logging.getLogger(__name__)


class Authenticator(ABC):
    """Credential registry interface"""

    @abstractmethod
    async def authenticate(self, vehicle_id: str) -> AuthenticationResult:
        """
        Verify a vehicle's credentials

        Raises:
            AuthenticationUnavailable: registry could not be reached
        """


class StaticAuthenticator(Authenticator):
    """
    Allow-list authenticator

    A vehicle is authenticated when its id is listed or starts with one of
    the allowed prefixes.
    """

    def __init__(
        self,
        allowed_ids: Optional[Iterable[str]] = None,
        allowed_prefixes: Optional[Iterable[str]] = None,
        latency_seconds: float = 0.0
    ):
        self.allowed_ids: Set[str] = set(allowed_ids or ())
        self.allowed_prefixes = tuple(allowed_prefixes or ())
        self.revoked: Set[str] = set()
        self.latency_seconds = latency_seconds
        self.available = True

    def grant(self, vehicle_id: str):
        self.revoked.discard(vehicle_id)
        self.allowed_ids.add(vehicle_id)

    def revoke(self, vehicle_id: str):
        self.revoked.add(vehicle_id)

    async def authenticate(self, vehicle_id: str) -> AuthenticationResult:
        if self.latency_seconds > 0:
            await asyncio.sleep(self.latency_seconds)
        if not self.available:
            raise AuthenticationUnavailable("Credential registry unavailable")

        if vehicle_id in self.revoked:
            return AuthenticationResult(vehicle_id=vehicle_id, success=False, reason="credentials revoked")

        if vehicle_id in self.allowed_ids or (self.allowed_prefixes and vehicle_id.startswith(self.allowed_prefixes)):
            return AuthenticationResult(vehicle_id=vehicle_id, success=True)

        logger.info("[AUTH] %s not in allow-list", vehicle_id)
        return AuthenticationResult(vehicle_id=vehicle_id, success=False, reason="unknown vehicle")
