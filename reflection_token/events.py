"""
Events emitted by the token and its reference collaborators.
"""
import logging
from collections import deque
from dataclasses import dataclass, asdict
from typing import Callable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Transfer:
    sender: bytes
    recipient: bytes
    amount: int


@dataclass(frozen=True)
class Approval:
    owner: bytes
    spender: bytes
    amount: int


@dataclass(frozen=True)
class MinTokensBeforeSwapUpdated:
    min_tokens_before_swap: int


@dataclass(frozen=True)
class SwapAndLiquifyEnabledUpdated:
    enabled: bool


@dataclass(frozen=True)
class SwapAndLiquify:
    tokens_swapped: int
    reference_received: int
    tokens_into_liquidity: int


class EventLog:
    """
    Append-only record of emitted events with optional subscribers.

    With ``max_events`` set only the most recent events are retained;
    subscribers still see every event.
    """

    def __init__(self, max_events: Optional[int] = None):
        if max_events is not None and max_events <= 0:
            raise ValueError("max_events must be positive")
        self.events = deque(maxlen=max_events)
        self._subscribers: list[Callable] = []

    def emit(self, event):
        self.events.append(event)
        logger.debug(f"Event {type(event).__name__}")
        for callback in self._subscribers:
            callback(event)

    def subscribe(self, callback: Callable):
        self._subscribers.append(callback)

    def of_type(self, event_type: type) -> list:
        return [e for e in self.events if isinstance(e, event_type)]

    def last(self, event_type: Optional[type] = None):
        """Most recent event, optionally of a given type."""
        for event in reversed(self.events):
            if event_type is None or isinstance(event, event_type):
                return event
        return None

    def clear(self):
        self.events.clear()

    def to_list(self) -> list:
        """Events as plain dicts with the event name under 'event'."""
        out = []
        for event in self.events:
            data = {k: (v.hex() if isinstance(v, bytes) else v) for k, v in asdict(event).items()}
            data['event'] = type(event).__name__
            out.append(data)
        return out

    def __len__(self) -> int:
        return len(self.events)
