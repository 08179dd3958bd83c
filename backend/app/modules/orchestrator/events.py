"""
Pipeline progress events

A ProgressChannel is handed to one pipeline run. The pipeline pushes events
without ever waiting on the consumer; the HTTP layer drains the channel and
relays it as Server-Sent Events. Exactly one terminal event (complete or
error) is delivered per run.
"""

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Any, AsyncIterator, Optional

from app.core.logging_config import logger


class EventType(str, Enum):
    PROGRESS = "progress"
    COMPLETE = "complete"
    ERROR = "error"


TERMINAL_EVENTS = {EventType.COMPLETE, EventType.ERROR}


@dataclass
class PipelineEvent:
    type: EventType
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENTS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "timestamp": self.timestamp.isoformat(),
            **self.data,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    def to_sse(self) -> str:
        """Format for Server-Sent Events"""
        return f"event: {self.type.value}\ndata: {self.to_json()}\n\n"


class ProgressChannel:
    """Unbounded queue of events for one run"""

    def __init__(self, build_id: str, session_id: str, total_steps: int):
        self.build_id = build_id
        self.session_id = session_id
        self.total_steps = total_steps
        self._queue: asyncio.Queue = asyncio.Queue()
        self._terminal_sent = False

    @property
    def finished(self) -> bool:
        return self._terminal_sent

    def _put(self, event: PipelineEvent) -> bool:
        if self._terminal_sent:
            logger.warning(f"Dropping {event.type.value} event after terminal event for build {self.build_id}")
            return False
        if event.is_terminal:
            self._terminal_sent = True
        self._queue.put_nowait(event)
        return True

    def progress(self, step: int, message: str, **extra) -> bool:
        return self._put(PipelineEvent(EventType.PROGRESS, {
            "step": step,
            "total": self.total_steps,
            "message": message,
            "build_id": self.build_id,
            "session_id": self.session_id,
            **extra,
        }))

    def complete(self, data: Dict[str, Any]) -> bool:
        return self._put(PipelineEvent(EventType.COMPLETE, {
            "build_id": self.build_id,
            "session_id": self.session_id,
            **data,
        }))

    def error(self, message: str, code: str = "INTERNAL_ERROR", details: Optional[Dict[str, Any]] = None) -> bool:
        return self._put(PipelineEvent(EventType.ERROR, {
            "build_id": self.build_id,
            "session_id": self.session_id,
            "error": message,
            "code": code,
            "details": details or {},
        }))

    async def events(self) -> AsyncIterator[PipelineEvent]:
        """Yield events until the terminal one has been delivered"""
        while True:
            event = await self._queue.get()
            yield event
            if event.is_terminal:
                return
