from typing import List, Tuple

from .models import Message


class TranscriptLog:
    """
    Holds the exchanged messages for ONE session.
    Insertion order = chronological order = display order.
    Only appended or cleared wholesale.
    """

    def __init__(self):
        self._messages: List[Message] = []

    def append(self, message: Message) -> None:
        self._messages.append(message)

    def clear(self) -> None:
        self._messages = []

    def snapshot(self) -> Tuple[Message, ...]:
        return tuple(self._messages)

    def __len__(self) -> int:
        return len(self._messages)
