from interview_room.transcript.log import TranscriptLog
from interview_room.transcript.models import Message, MessageSource

__all__ = ["TranscriptLog", "Message", "MessageSource"]
