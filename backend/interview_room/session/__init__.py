from interview_room.session.controller import SessionController, SessionSnapshot
from interview_room.session.parameters import BootstrapParams, SessionParameters, build_resume_context
from interview_room.session.registry import SessionRegistry, session_registry

__all__ = [
    "SessionController",
    "SessionSnapshot",
    "BootstrapParams",
    "SessionParameters",
    "build_resume_context",
    "SessionRegistry",
    "session_registry",
]
