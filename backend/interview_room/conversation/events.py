from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Union

from interview_room.core.state import FailureCause
from interview_room.transcript.models import Message


class ConversationEventType(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    MESSAGE = "message"
    ERROR = "error"


@dataclass(frozen=True)
class ConnectedEvent:
    conversation_id: str = ""

    @property
    def event_type(self) -> ConversationEventType:
        return ConversationEventType.CONNECTED


@dataclass(frozen=True)
class DisconnectedEvent:
    reason: str = ""

    @property
    def event_type(self) -> ConversationEventType:
        return ConversationEventType.DISCONNECTED


@dataclass(frozen=True)
class MessageEvent:
    message: Message

    @property
    def event_type(self) -> ConversationEventType:
        return ConversationEventType.MESSAGE


@dataclass(frozen=True)
class ErrorEvent:
    cause: FailureCause = FailureCause.AGENT_RUNTIME_ERROR
    detail: str = ""

    @property
    def event_type(self) -> ConversationEventType:
        return ConversationEventType.ERROR


ConversationEvent = Union[ConnectedEvent, DisconnectedEvent, MessageEvent, ErrorEvent]
EventSink = Callable[[ConversationEvent], None]
