import asyncio
import json

import httpx
import pytest

from interview_room.audio.devices import MicrophoneHandle
from interview_room.conversation.client import (
    ElevenLabsConversationClient,
    build_initiation_frame,
    parse_agent_frame,
)
from interview_room.conversation.events import ConnectedEvent, DisconnectedEvent, ErrorEvent, MessageEvent
from interview_room.core.state import FailureCause
from interview_room.transcript.models import MessageSource


PAYLOAD = {
    "agentIdentifier": "agent-1",
    "transportKind": "websocket",
    "variables": {
        "job_title": "Dev",
        "company_name": "Acme",
        "job_description": "",
        "candidate_resume": "Skills: Geral. Localização: Brasil.",
        "candidate_name": "Ana",
    },
}

METADATA_FRAME = {
    "type": "conversation_initiation_metadata",
    "conversation_initiation_metadata_event": {"conversation_id": "conv-42"},
}


class FakeAgentSocket:
    def __init__(self):
        self.sent: list[dict] = []
        self.closed = False
        self._incoming: asyncio.Queue = asyncio.Queue()

    def feed(self, frame) -> None:
        self._incoming.put_nowait(frame if isinstance(frame, (str, bytes)) else json.dumps(frame))

    def hang_up(self) -> None:
        self._incoming.put_nowait(None)

    async def send(self, data: str) -> None:
        self.sent.append(json.loads(data))

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._incoming.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._incoming.get()
        if item is None:
            raise StopAsyncIteration
        return item


async def _until(predicate, attempts: int = 200):
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0.001)
    raise AssertionError("condition not reached")


def _client(socket: FakeAgentSocket, urls: list | None = None, **kwargs) -> ElevenLabsConversationClient:
    async def connect_fn(url, **options):
        if urls is not None:
            urls.append(url)
        return socket

    return ElevenLabsConversationClient(ws_url="wss://agent.test/convai", connect_fn=connect_fn, **kwargs)


def test_parse_agent_frame_maps_known_frames():
    assert parse_agent_frame(METADATA_FRAME) == ConnectedEvent(conversation_id="conv-42")

    candidate = parse_agent_frame(
        {"type": "user_transcript", "user_transcription_event": {"user_transcript": " Olá "}}
    )
    assert isinstance(candidate, MessageEvent)
    assert candidate.message.source == MessageSource.CANDIDATE
    assert candidate.message.text == "Olá"

    agent = parse_agent_frame({"type": "agent_response", "agent_response_event": {"agent_response": "Bem-vinda"}})
    assert agent.message.source == MessageSource.AGENT

    assert parse_agent_frame({"type": "user_transcript", "user_transcription_event": {}}) is None
    assert parse_agent_frame({"type": "audio", "audio_event": {"audio_base_64": "AAA="}}) is None
    assert parse_agent_frame({}) is None


def test_initiation_frame_carries_dynamic_variables():
    frame = build_initiation_frame(PAYLOAD)

    assert frame["type"] == "conversation_initiation_client_data"
    assert frame["dynamic_variables"]["candidate_name"] == "Ana"
    assert frame["dynamic_variables"]["candidate_resume"] == "Skills: Geral. Localização: Brasil."


@pytest.mark.asyncio
async def test_open_streams_events_until_close():
    socket = FakeAgentSocket()
    urls: list = []
    events: list = []
    client = _client(socket, urls)

    await client.open(PAYLOAD, events.append)

    assert urls == ["wss://agent.test/convai?agent_id=agent-1"]
    assert socket.sent[0]["type"] == "conversation_initiation_client_data"

    socket.feed({"type": "agent_response", "agent_response_event": {"agent_response": "ignored"}})
    socket.feed(METADATA_FRAME)
    socket.feed({"type": "agent_response", "agent_response_event": {"agent_response": "Olá Ana"}})
    socket.feed("not-json")
    socket.feed({"type": "user_transcript", "user_transcription_event": {"user_transcript": "Oi"}})
    await _until(lambda: len(events) == 3)

    await client.close()

    assert isinstance(events[0], ConnectedEvent)
    assert [e.message.text for e in events[1:3]] == ["Olá Ana", "Oi"]
    assert isinstance(events[-1], DisconnectedEvent)
    assert len(events) == 4
    assert socket.closed is True


@pytest.mark.asyncio
async def test_ping_is_answered_with_pong():
    socket = FakeAgentSocket()
    client = _client(socket)
    await client.open(PAYLOAD, lambda event: None)

    socket.feed({"type": "ping", "ping_event": {"event_id": 7}})
    await _until(lambda: any(frame.get("type") == "pong" for frame in socket.sent))

    assert {"type": "pong", "event_id": 7} in socket.sent
    await client.close()


@pytest.mark.asyncio
async def test_remote_hangup_after_connect_reports_disconnected():
    socket = FakeAgentSocket()
    events: list = []
    client = _client(socket)
    await client.open(PAYLOAD, events.append)

    socket.feed(METADATA_FRAME)
    socket.hang_up()
    await _until(lambda: len(events) == 2)
    await client.close()

    assert isinstance(events[1], DisconnectedEvent)
    assert len(events) == 2


@pytest.mark.asyncio
async def test_hangup_before_metadata_is_connect_error():
    socket = FakeAgentSocket()
    events: list = []
    client = _client(socket)
    await client.open(PAYLOAD, events.append)

    socket.hang_up()
    await _until(lambda: len(events) == 1)
    await client.close()

    assert events == [ErrorEvent(FailureCause.AGENT_CONNECT_ERROR, "closed before initiation")]


@pytest.mark.asyncio
async def test_connect_failure_reports_connect_error():
    events: list = []

    async def refuse(url, **options):
        raise OSError("connection refused")

    client = ElevenLabsConversationClient(ws_url="wss://agent.test/convai", connect_fn=refuse)
    await client.open(PAYLOAD, events.append)

    assert len(events) == 1
    assert events[0].cause == FailureCause.AGENT_CONNECT_ERROR
    await client.close()


@pytest.mark.asyncio
async def test_missing_agent_identifier_reports_connect_error():
    events: list = []
    client = _client(FakeAgentSocket())

    await client.open({**PAYLOAD, "agentIdentifier": ""}, events.append)

    assert len(events) == 1
    assert events[0].cause == FailureCause.AGENT_CONNECT_ERROR


@pytest.mark.asyncio
async def test_handshake_timeout_reports_connect_error():
    socket = FakeAgentSocket()
    events: list = []
    client = _client(socket, connect_timeout=0.01)
    await client.open(PAYLOAD, events.append)

    await _until(lambda: len(events) == 1)
    await client.close()

    assert events == [ErrorEvent(FailureCause.AGENT_CONNECT_ERROR, "handshake timeout")]
    assert socket.closed is True


@pytest.mark.asyncio
async def test_signed_url_is_fetched_when_api_key_is_set():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["api_key"] = request.headers.get("xi-api-key")
        seen["agent_id"] = request.url.params.get("agent_id")
        return httpx.Response(200, json={"signed_url": "wss://agent.test/signed?token=abc"})

    socket = FakeAgentSocket()
    urls: list = []
    client = _client(
        socket,
        urls,
        api_key="xi-secret",
        signed_url_endpoint="https://agent.test/get-signed-url",
        http_transport=httpx.MockTransport(handler),
    )

    await client.open(PAYLOAD, lambda event: None)
    await client.close()

    assert urls == ["wss://agent.test/signed?token=abc"]
    assert seen == {"api_key": "xi-secret", "agent_id": "agent-1"}


@pytest.mark.asyncio
async def test_microphone_audio_is_forwarded_once_connected():
    socket = FakeAgentSocket()
    handle = MicrophoneHandle()
    client = _client(socket)
    await client.open(PAYLOAD, lambda event: None, audio=handle.chunks())

    socket.feed(METADATA_FRAME)
    await _until(lambda: client._connected)
    handle.push(b"ab")
    await _until(lambda: any("user_audio_chunk" in frame for frame in socket.sent))

    assert {"user_audio_chunk": "YWI="} in socket.sent
    await client.close()
