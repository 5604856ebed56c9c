"""
Corridor Event Notifications

Operator-visible corridor events over Socket.IO:
- corridor:state_changed
- corridor:spoofing
- corridor:paused_escalated
- corridor:activation_failed

Every event is also kept in a bounded in-process history so that nothing
is silent when no Socket.IO server is attached.
"""

import logging
import time
from collections import deque
from typing import Any, Deque, Dict, List, Optional

from corridor_engine.models import SpoofingEvent

logger = logging.getLogger(__name__)


class CorridorNotificationService:
    """
    Emit real-time corridor notifications via WebSocket

    Also acts as the spoofing reporter: ``report_spoofing`` is the hook
    through which suspected spoofing reaches the authorities' dashboard.
    """

    def __init__(self, socketio=None, history_size: int = 500):
        """
        Initialize notification service

        Args:
            socketio: Socket.IO server instance (optional)
            history_size: Events kept in memory
        """
        self.sio = socketio
        self.history: Deque[Dict[str, Any]] = deque(maxlen=history_size)
        self.emit_errors = 0

    async def _emit(self, event: str, payload: Dict[str, Any], level: Optional[str] = None, message: str = ""):
        payload = {**payload, 'timestamp': time.time()}
        self.history.append({'event': event, **payload})

        if not self.sio:
            return

        try:
            await self.sio.emit(event, payload)
            if level:
                await self.sio.emit('alert', {
                    'level': level,
                    'message': message,
                    'timestamp': payload['timestamp']
                })
        except Exception as e:
            self.emit_errors += 1
            logger.warning("[NOTIFICATION] Error emitting %s: %s", event, e)

    async def emit_state_changed(self, corridor_id: str, vehicle_id: str, old_state: str, new_state: str, reason: str):
        await self._emit('corridor:state_changed', {
            'corridorId': corridor_id,
            'vehicleId': vehicle_id,
            'oldState': old_state,
            'newState': new_state,
            'reason': reason,
        })

    async def report_spoofing(self, corridor_id: Optional[str], event: SpoofingEvent):
        await self._emit(
            'corridor:spoofing',
            {
                'corridorId': corridor_id,
                'vehicleId': event.vehicle_id,
                'eventId': event.event_id,
                'reason': event.reason,
                'flags': [f.type.value for f in event.flags],
            },
            level='CRITICAL',
            message=f'Spoofing suspected for {event.vehicle_id}; corridor frozen',
        )

    async def emit_paused_escalated(self, corridor_id: str, vehicle_id: str, paused_seconds: float):
        await self._emit(
            'corridor:paused_escalated',
            {
                'corridorId': corridor_id,
                'vehicleId': vehicle_id,
                'pausedSeconds': round(paused_seconds, 1),
            },
            level='WARNING',
            message=f'Corridor {corridor_id} completed after {paused_seconds:.0f}s paused',
        )

    async def emit_activation_failed(self, vehicle_id: str, code: str, reason: str):
        await self._emit('corridor:activation_failed', {
            'vehicleId': vehicle_id,
            'code': code,
            'reason': reason,
        })

    def events(self, event: Optional[str] = None) -> List[Dict[str, Any]]:
        return [e for e in self.history if event is None or e['event'] == event]
