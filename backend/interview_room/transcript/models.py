from dataclasses import dataclass, field
from enum import Enum
import time


class MessageSource(str, Enum):
    CANDIDATE = "candidate"
    AGENT = "agent"


@dataclass(frozen=True)
class Message:
    """
    One exchanged utterance, as reported by the remote agent.
    Immutable once created; owned by the TranscriptLog after append.
    """
    source: MessageSource
    text: str
    received_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "source": self.source.value,
            "text": self.text,
            "received_at": self.received_at,
        }
