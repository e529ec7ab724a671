"""
ARCANE events.py
Progress notifications from a running turn to whoever draws the screen.

The channel is bounded and publishing never blocks: if the UI falls behind,
events are dropped rather than stalling tool execution.
"""
from __future__ import annotations

import logging
import queue
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Optional, Union

logger = logging.getLogger(__name__)


@dataclass
class ToolStarted:
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolFinished:
    name: str
    result: str
    summary: str


@dataclass
class TurnFinished:
    result: Any   # core.TurnResult


Event = Union[ToolStarted, ToolFinished, TurnFinished]


class EventChannel:
    def __init__(self, maxsize: int = 64):
        self._q: "queue.Queue[Event]" = queue.Queue(maxsize=maxsize)
        self.dropped = 0

    def publish(self, event: Event) -> bool:
        try:
            self._q.put_nowait(event)
            return True
        except queue.Full:
            self.dropped += 1
            logger.debug("Event channel full, dropped %s", type(event).__name__)
            return False

    def get(self, timeout: Optional[float] = None) -> Optional[Event]:
        try:
            return self._q.get(timeout=timeout) if timeout else self._q.get_nowait()
        except queue.Empty:
            return None

    def drain(self) -> Iterator[Event]:
        while True:
            event = self.get()
            if event is None:
                return
            yield event

    def __len__(self):
        return self._q.qsize()
