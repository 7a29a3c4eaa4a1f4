from interview_room.conversation.client import (
    ConversationClient,
    ElevenLabsConversationClient,
    build_conversation_client,
    build_initiation_frame,
    parse_agent_frame,
)
from interview_room.conversation.events import (
    ConnectedEvent,
    ConversationEvent,
    ConversationEventType,
    DisconnectedEvent,
    ErrorEvent,
    EventSink,
    MessageEvent,
)

__all__ = [
    "ConversationClient",
    "ElevenLabsConversationClient",
    "build_conversation_client",
    "build_initiation_frame",
    "parse_agent_frame",
    "ConnectedEvent",
    "ConversationEvent",
    "ConversationEventType",
    "DisconnectedEvent",
    "ErrorEvent",
    "EventSink",
    "MessageEvent",
]
