# interview_room/core/state.py

from enum import Enum

class SessionState(str, Enum):
    IDLE = "idle"
    RESOLVING_PROFILE = "resolving_profile"
    READY = "ready"
    ACQUIRING_MEDIA = "acquiring_media"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"
    FAILED = "failed"


class FailureCause(str, Enum):
    MISSING_IDENTIFIER = "missing_identifier"
    PROFILE_NOT_FOUND = "profile_not_found"
    PROFILE_TRANSPORT_ERROR = "profile_transport_error"
    PERMISSION_DENIED = "permission_denied"
    DEVICE_ERROR = "device_error"
    AGENT_CONNECT_ERROR = "agent_connect_error"
    AGENT_RUNTIME_ERROR = "agent_runtime_error"


# States in which a live attempt holds (or may be about to hold) resources.
ACTIVE_ATTEMPT_STATES = frozenset({
    SessionState.ACQUIRING_MEDIA,
    SessionState.CONNECTING,
    SessionState.CONNECTED,
})
