from __future__ import annotations

import logging
from typing import Any, Protocol
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from interview_room.core import config
from interview_room.errors import ProfileNotFound, ProfileTransportError
from .models import CandidateProfile

logger = logging.getLogger("profile_repository")

FIRESTORE_BASE_URL = "https://firestore.googleapis.com/v1"


class ProfileRepository(Protocol):
    async def fetch(self, candidate_id: str) -> CandidateProfile:
        ...


class InMemoryProfileRepository:
    def __init__(self, documents: dict[str, dict] | None = None):
        self._documents: dict[str, dict] = dict(documents or {})
        self.fetch_count = 0

    def put(self, candidate_id: str, document: dict) -> None:
        self._documents[candidate_id] = dict(document or {})

    async def fetch(self, candidate_id: str) -> CandidateProfile:
        self.fetch_count += 1
        if candidate_id not in self._documents:
            raise ProfileNotFound(f"profile {candidate_id!r} not found")
        return CandidateProfile.from_document(self._documents[candidate_id])


def decode_firestore_value(value: dict) -> Any:
    """Turn a Firestore REST typed value into plain Python."""
    if not isinstance(value, dict):
        return None
    if "stringValue" in value:
        return str(value["stringValue"])
    if "integerValue" in value:
        return int(value["integerValue"])
    if "doubleValue" in value:
        return float(value["doubleValue"])
    if "booleanValue" in value:
        return bool(value["booleanValue"])
    if "nullValue" in value:
        return None
    if "timestampValue" in value:
        return str(value["timestampValue"])
    if "arrayValue" in value:
        items = (value.get("arrayValue") or {}).get("values") or []
        return [decode_firestore_value(item) for item in items]
    if "mapValue" in value:
        return decode_firestore_fields((value.get("mapValue") or {}).get("fields") or {})
    return None


def decode_firestore_fields(fields: dict) -> dict:
    return {str(k): decode_firestore_value(v) for k, v in (fields or {}).items()}


class FirestoreProfileRepository:
    def __init__(
        self,
        project_id: str,
        api_key: str = "",
        collection: str = "users",
        timeout: float = 8.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not project_id:
            raise RuntimeError("FirestoreProfileRepository requires a project id")
        self._project_id = project_id
        self._api_key = api_key
        self._collection = collection.strip("/") or "users"
        self._timeout = timeout
        self._transport = transport

    def _document_url(self, candidate_id: str) -> str:
        return (
            f"{FIRESTORE_BASE_URL}/projects/{self._project_id}/databases/(default)"
            f"/documents/{self._collection}/{quote(candidate_id, safe='')}"
        )

    async def fetch(self, candidate_id: str) -> CandidateProfile:
        # Not valid Firestore document ids; quoting leaves them as dot segments.
        if candidate_id in (".", ".."):
            raise ProfileNotFound(f"profile {candidate_id!r} not found")
        url = self._document_url(candidate_id)
        params = {"key": self._api_key} if self._api_key else None
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.get(url, params=params)
        except httpx.HTTPError as exc:
            logger.warning("profile fetch failed | candidate_id=%s err=%s", candidate_id, exc)
            raise ProfileTransportError(str(exc)) from exc

        if response.status_code == 404:
            raise ProfileNotFound(f"profile {candidate_id!r} not found")
        if response.status_code != 200:
            logger.warning(
                "profile fetch rejected | candidate_id=%s status=%s",
                candidate_id,
                response.status_code,
            )
            raise ProfileTransportError(f"profile store answered HTTP {response.status_code}")

        try:
            document = response.json()
            return CandidateProfile.from_document(decode_firestore_fields(document.get("fields") or {}))
        except (ValueError, ValidationError) as exc:
            raise ProfileTransportError(f"malformed profile document: {exc}") from exc


def build_profile_repository() -> ProfileRepository:
    if not config.firestore_configured():
        logger.warning("FIREBASE_PROJECT_ID not set; using empty in-memory profile repository")
        return InMemoryProfileRepository()

    return FirestoreProfileRepository(
        project_id=config.FIREBASE_PROJECT_ID,
        api_key=config.FIREBASE_API_KEY,
        collection=config.PROFILE_COLLECTION,
        timeout=config.PROFILE_FETCH_TIMEOUT_SEC,
    )
