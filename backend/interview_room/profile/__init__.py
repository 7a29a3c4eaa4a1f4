from interview_room.profile.models import CandidateProfile, Resume
from interview_room.profile.repository import (
    FirestoreProfileRepository,
    InMemoryProfileRepository,
    ProfileRepository,
    build_profile_repository,
)

__all__ = [
    "CandidateProfile",
    "Resume",
    "ProfileRepository",
    "FirestoreProfileRepository",
    "InMemoryProfileRepository",
    "build_profile_repository",
]
