from __future__ import annotations

from interview_room.core.state import FailureCause


class InterviewRoomError(Exception):
    """Base class for failures a collaborator reports to the session controller."""

    cause: FailureCause = FailureCause.AGENT_RUNTIME_ERROR

    def __init__(self, message: str = "", *, cause: FailureCause | None = None):
        super().__init__(message or self.__class__.__name__)
        if cause is not None:
            self.cause = cause


class ProfileNotFound(InterviewRoomError):
    cause = FailureCause.PROFILE_NOT_FOUND


class ProfileTransportError(InterviewRoomError):
    cause = FailureCause.PROFILE_TRANSPORT_ERROR


class PermissionDenied(InterviewRoomError):
    cause = FailureCause.PERMISSION_DENIED


class DeviceError(InterviewRoomError):
    cause = FailureCause.DEVICE_ERROR


class ConversationError(InterviewRoomError):
    cause = FailureCause.AGENT_CONNECT_ERROR
