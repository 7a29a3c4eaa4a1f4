import httpx
import pytest

from interview_room.errors import ProfileNotFound, ProfileTransportError
from interview_room.profile.repository import (
    FirestoreProfileRepository,
    InMemoryProfileRepository,
    build_profile_repository,
    decode_firestore_fields,
)


def _firestore_document() -> dict:
    return {
        "name": "projects/demo/databases/(default)/documents/users/u1",
        "fields": {
            "name": {"stringValue": "Ana"},
            "resume": {
                "mapValue": {
                    "fields": {
                        "skills": {
                            "arrayValue": {"values": [{"stringValue": "Python"}, {"stringValue": "SQL"}]}
                        },
                        "suggestedLocation": {"stringValue": "Recife"},
                        "yearsOfExperience": {"integerValue": "4"},
                    }
                }
            },
        },
    }


def test_decode_firestore_fields_handles_nested_values():
    decoded = decode_firestore_fields(_firestore_document()["fields"])

    assert decoded["name"] == "Ana"
    assert decoded["resume"]["skills"] == ["Python", "SQL"]
    assert decoded["resume"]["yearsOfExperience"] == 4
    assert decode_firestore_fields({"flag": {"booleanValue": True}, "none": {"nullValue": None}}) == {
        "flag": True,
        "none": None,
    }


@pytest.mark.asyncio
async def test_firestore_fetch_decodes_profile():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["host"] = request.url.host
        seen["path"] = request.url.path
        seen["key"] = request.url.params.get("key")
        return httpx.Response(200, json=_firestore_document())

    repository = FirestoreProfileRepository(
        project_id="demo",
        api_key="secret",
        transport=httpx.MockTransport(handler),
    )

    profile = await repository.fetch("u1")

    assert profile.resume.skills == ["Python", "SQL"]
    assert profile.resume.suggested_location == "Recife"
    assert seen["host"] == "firestore.googleapis.com"
    assert seen["path"] == "/v1/projects/demo/databases/(default)/documents/users/u1"
    assert seen["key"] == "secret"


@pytest.mark.asyncio
async def test_firestore_candidate_id_stays_inside_collection():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.raw_path)
        return httpx.Response(404)

    repository = FirestoreProfileRepository(project_id="demo", transport=httpx.MockTransport(handler))

    with pytest.raises(ProfileNotFound):
        await repository.fetch("../admins/root")
    with pytest.raises(ProfileNotFound):
        await repository.fetch("..")

    assert seen == [b"/v1/projects/demo/databases/(default)/documents/users/..%2Fadmins%2Froot"]


@pytest.mark.asyncio
async def test_firestore_null_resume_fields_fall_back():
    document = {
        "fields": {
            "resume": {
                "mapValue": {
                    "fields": {
                        "skills": {"arrayValue": {"values": [{"stringValue": "Go"}, {"nullValue": None}]}},
                        "suggestedLocation": {"nullValue": None},
                    }
                }
            }
        }
    }
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json=document))
    repository = FirestoreProfileRepository(project_id="demo", transport=transport)

    profile = await repository.fetch("u1")

    assert profile.resume.skills == ["Go"]
    assert profile.resume.suggested_location == ""

@pytest.mark.asyncio
async def test_firestore_document_without_resume_is_valid():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"fields": {}}))
    repository = FirestoreProfileRepository(project_id="demo", transport=transport)

    profile = await repository.fetch("u2")

    assert profile.resume is None


@pytest.mark.asyncio
async def test_firestore_missing_document_raises_not_found():
    transport = httpx.MockTransport(lambda request: httpx.Response(404, json={"error": {"code": 404}}))
    repository = FirestoreProfileRepository(project_id="demo", transport=transport)

    with pytest.raises(ProfileNotFound):
        await repository.fetch("ghost")


@pytest.mark.asyncio
async def test_firestore_server_error_raises_transport_error():
    transport = httpx.MockTransport(lambda request: httpx.Response(503, text="unavailable"))
    repository = FirestoreProfileRepository(project_id="demo", transport=transport)

    with pytest.raises(ProfileTransportError):
        await repository.fetch("u1")


@pytest.mark.asyncio
async def test_firestore_network_failure_raises_transport_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    repository = FirestoreProfileRepository(project_id="demo", transport=httpx.MockTransport(handler))

    with pytest.raises(ProfileTransportError):
        await repository.fetch("u1")


@pytest.mark.asyncio
async def test_firestore_malformed_body_raises_transport_error():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, text="not json"))
    repository = FirestoreProfileRepository(project_id="demo", transport=transport)

    with pytest.raises(ProfileTransportError):
        await repository.fetch("u1")


@pytest.mark.asyncio
async def test_in_memory_repository_counts_fetches():
    repository = InMemoryProfileRepository({"u1": {"resume": {"skills": ["Go"]}}})

    profile = await repository.fetch("u1")
    with pytest.raises(ProfileNotFound):
        await repository.fetch("u9")

    assert profile.resume.skills == ["Go"]
    assert repository.fetch_count == 2


def test_repository_without_project_is_in_memory():
    assert isinstance(build_profile_repository(), InMemoryProfileRepository)
