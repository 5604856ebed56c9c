"""
Integrations Package

Interfaces to the engine's external collaborators (credential registry,
alert delivery, archival, operator notifications) and their adapters.
"""

from .auth import Authenticator, StaticAuthenticator
from .dispatch import AlertDispatcher, RecordingAlertDispatcher, SocketIOAlertDispatcher
from .archival import ArchivalSink, InMemoryArchivalSink, SqlArchivalSink
from .notifications import CorridorNotificationService

__all__ = [
    "Authenticator",
    "StaticAuthenticator",
    "AlertDispatcher",
    "RecordingAlertDispatcher",
    "SocketIOAlertDispatcher",
    "ArchivalSink",
    "InMemoryArchivalSink",
    "SqlArchivalSink",
    "CorridorNotificationService",
]
