"""
Alert Dispatch

Hands ALERT / UPDATE / CLEARANCE messages to the delivery layer.
Delivery guarantees (retry, batching) belong to the transport, not here.
"""

import logging
from abc import ABC, abstractmethod
from collections import Counter
from typing import Dict, List, Sequence

from corridor_engine.models import AlertMessage

logger = logging.getLogger(__name__)


class AlertDispatcher(ABC):
    """Alert delivery interface"""

    @abstractmethod
    async def dispatch(self, messages: Sequence[AlertMessage]):
        """Deliver one diff worth of messages"""


class RecordingAlertDispatcher(AlertDispatcher):
    """Keeps every message in memory (dry runs, simulation)"""

    def __init__(self):
        self.messages: List[AlertMessage] = []

    async def dispatch(self, messages: Sequence[AlertMessage]):
        self.messages.extend(messages)

    def for_corridor(self, corridor_id: str) -> List[AlertMessage]:
        return [m for m in self.messages if m.corridor_id == corridor_id]

    def counts(self) -> Dict[str, int]:
        return dict(Counter(m.kind.value for m in self.messages))

    def clear(self):
        self.messages.clear()


class SocketIOAlertDispatcher(AlertDispatcher):
    """
    Emit alerts over Socket.IO

    Each civilian vehicle listens in its own room ``civilian:<id>``;
    a copy of every message goes to the corridor room for dashboards.
    """

    def __init__(self, socketio):
        self.sio = socketio
        self.sent = 0

    async def dispatch(self, messages: Sequence[AlertMessage]):
        for message in messages:
            payload = message.to_dict()
            await self.sio.emit('corridor:alert', payload, room=f"civilian:{message.civilian_vehicle_id}")
            await self.sio.emit('corridor:alert', payload, room=f"corridor:{message.corridor_id}")
            self.sent += 1
