"""
Event broker: structured JSON log lines plus SSE fan-out to connected clients.

Every component reports through one injected broker; there is no other log.
"""

import asyncio
import json
from collections import deque
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Deque, Dict, List, Optional
from dataclasses import dataclass, field, asdict
from enum import Enum


class EventType(str, Enum):
    STEP = "step"
    WARNING = "warning"
    ERROR = "error"
    STATE_CHANGE = "state_change"
    ACTION_REQUIRED = "action_required"
    PAGE_DETECTED = "page_detected"
    UPLOAD = "upload"
    SCREENSHOT = "screenshot"


class ListerState(str, Enum):
    IDLE = "idle"
    SOURCE_CAPTURE = "source_capture"
    PRELIST_AUTOMATION = "prelist_automation"
    DRAFT_AUTOMATION = "draft_automation"
    ERROR = "error"


@dataclass
class Event:
    ts: str
    type: EventType
    step: str
    url: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def message(self) -> str:
        return str(self.details.get("message", ""))

    def to_json(self) -> str:
        data = asdict(self)
        data["type"] = self.type.value
        return json.dumps(data, default=str)

    def to_log_line(self) -> str:
        """One JSON line; empty url/details are left out to keep stdout readable."""
        data: Dict[str, Any] = {"ts": self.ts, "type": self.type.value, "step": self.step}
        if self.url:
            data["url"] = self.url
        if self.details:
            data.update(self.details)
        return json.dumps(data, default=str)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ts": self.ts,
            "type": self.type.value,
            "step": self.step,
            "url": self.url,
            "details": self.details
        }


class EventBroker:
    """Publishes events to stdout, a bounded history, and SSE subscribers."""

    def __init__(self, max_history: int = 200, echo: bool = True, queue_size: int = 100):
        self._subscribers: List[asyncio.Queue] = []
        self._history: Deque[Event] = deque(maxlen=max_history)
        self._echo = echo
        self._queue_size = queue_size
        self._lock = asyncio.Lock()

        self._current_state: ListerState = ListerState.IDLE
        self._last_action: Dict[str, Any] = {}
        self._start_time: datetime = datetime.now(timezone.utc)

    @property
    def current_state(self) -> ListerState:
        return self._current_state

    @property
    def last_action(self) -> Dict[str, Any]:
        return self._last_action

    @last_action.setter
    def last_action(self, value: Dict[str, Any]):
        self._last_action = value

    @property
    def uptime_seconds(self) -> float:
        return (datetime.now(timezone.utc) - self._start_time).total_seconds()

    def create_event(
        self,
        event_type: EventType,
        step: str,
        url: str = "",
        details: Dict[str, Any] = None
    ) -> Event:
        return Event(
            ts=datetime.now(timezone.utc).isoformat(),
            type=event_type,
            step=step,
            url=url,
            details=details or {}
        )

    async def publish(self, event: Event) -> None:
        """Record an event, print it, and hand it to every subscriber."""
        if self._echo:
            print(event.to_log_line(), flush=True)

        async with self._lock:
            self._history.append(event)

            # A subscriber that stopped reading is dropped rather than blocking the flows
            stalled = []
            for queue in self._subscribers:
                try:
                    queue.put_nowait(event)
                except asyncio.QueueFull:
                    stalled.append(queue)
            for queue in stalled:
                self._subscribers.remove(queue)

    async def emit(
        self,
        event_type: EventType,
        step: str,
        message: str = "",
        url: str = "",
        **details: Any
    ) -> None:
        """Shorthand for publish(create_event(...)) with a message field."""
        if message:
            details = {"message": message, **details}
        await self.publish(self.create_event(event_type, step, url=url, details=details))

    async def set_state(self, state: ListerState, url: str = "") -> None:
        """Move to `state`, announcing the transition. Re-entering the same state is silent."""
        previous = self._current_state
        if state == previous:
            return
        self._current_state = state
        await self.emit(EventType.STATE_CHANGE, f"state_{state.value}", url=url,
                        previous=previous.value, state=state.value)

    async def subscribe(self) -> AsyncGenerator[Event, None]:
        """Subscribe to events. Returns an async generator."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)

        async with self._lock:
            self._subscribers.append(queue)

        try:
            while True:
                event = await queue.get()
                yield event
        finally:
            async with self._lock:
                if queue in self._subscribers:
                    self._subscribers.remove(queue)

    async def get_history(self, limit: int = 50, event_type: Optional[EventType] = None) -> List[Event]:
        """Most recent events, oldest first, optionally of one type."""
        async with self._lock:
            events = [e for e in self._history if event_type is None or e.type == event_type]
        return events[-limit:] if limit > 0 else []

    def steps(self, event_type: EventType = None) -> List[str]:
        """Step names in history order, optionally filtered by type."""
        return [e.step for e in self._history if event_type is None or e.type == event_type]

    def get_status(self) -> Dict[str, Any]:
        """Get current status for /status endpoint."""
        return {
            "state": self._current_state.value,
            "last_action": self._last_action,
            "uptime_seconds": self.uptime_seconds,
            "subscriber_count": len(self._subscribers)
        }
