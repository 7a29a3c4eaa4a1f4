from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from interview_room.profile.models import CandidateProfile

DEFAULT_CANDIDATE_NAME = "Candidato"
DEFAULT_JOB_TITLE = "Vaga"
DEFAULT_COMPANY_NAME = "Empresa"
DEFAULT_JOB_DESCRIPTION = ""
DEFAULT_SKILLS_TEXT = "Geral"
DEFAULT_LOCATION_TEXT = "Brasil"

TRANSPORT_KIND = "websocket"


def _clean(value) -> str:
    return str(value or "").strip()


@dataclass(frozen=True)
class BootstrapParams:
    """Values handed over by the hosting page (query string)."""
    candidate_id: str | None = None
    candidate_name: str = DEFAULT_CANDIDATE_NAME
    job_title: str = DEFAULT_JOB_TITLE
    company_name: str = DEFAULT_COMPANY_NAME
    job_description: str = DEFAULT_JOB_DESCRIPTION

    @classmethod
    def from_query(cls, query: Mapping[str, str]) -> "BootstrapParams":
        return cls(
            candidate_id=_clean(query.get("userId")) or None,
            candidate_name=_clean(query.get("name")) or DEFAULT_CANDIDATE_NAME,
            job_title=_clean(query.get("title")) or DEFAULT_JOB_TITLE,
            company_name=_clean(query.get("company")) or DEFAULT_COMPANY_NAME,
            job_description=_clean(query.get("description")) or DEFAULT_JOB_DESCRIPTION,
        )


def build_resume_context(profile: CandidateProfile | None) -> str:
    resume = profile.resume if profile is not None else None
    skills = [s.strip() for s in (resume.skills if resume else []) if s and s.strip()]
    skills_text = ", ".join(skills) if skills else DEFAULT_SKILLS_TEXT
    location_text = (resume.suggested_location.strip() if resume else "") or DEFAULT_LOCATION_TEXT
    return f"Skills: {skills_text}. Localização: {location_text}."


@dataclass(frozen=True)
class SessionParameters:
    candidate_name: str
    job_title: str
    company_name: str
    job_description: str
    resume_context: str

    @classmethod
    def build(cls, bootstrap: BootstrapParams, profile: CandidateProfile | None) -> "SessionParameters":
        return cls(
            candidate_name=bootstrap.candidate_name,
            job_title=bootstrap.job_title,
            company_name=bootstrap.company_name,
            job_description=bootstrap.job_description,
            resume_context=build_resume_context(profile),
        )

    def to_payload(self, agent_id: str) -> dict:
        return {
            "agentIdentifier": agent_id,
            "transportKind": TRANSPORT_KIND,
            "variables": {
                "job_title": self.job_title,
                "company_name": self.company_name,
                "job_description": self.job_description,
                "candidate_resume": self.resume_context,
                "candidate_name": self.candidate_name,
            },
        }
