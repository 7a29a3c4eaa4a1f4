import asyncio
import sys
import time
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from interview_room.audio.devices import MicrophoneHandle  # noqa: E402
from interview_room.conversation.events import ConnectedEvent, DisconnectedEvent, ErrorEvent, MessageEvent  # noqa: E402
from interview_room.core import config  # noqa: E402
from interview_room.core.state import FailureCause  # noqa: E402
from interview_room.errors import DeviceError  # noqa: E402
from interview_room.profile.repository import InMemoryProfileRepository  # noqa: E402
from interview_room.session.controller import SessionController  # noqa: E402
from interview_room.session.parameters import BootstrapParams  # noqa: E402
from interview_room.transcript.models import Message, MessageSource  # noqa: E402


@pytest.fixture(autouse=True)
def _test_env(monkeypatch: pytest.MonkeyPatch):
    # config is read once at import; patch the loaded values so a local .env cannot
    # reach real devices or services.
    monkeypatch.setattr(config, "QA_MODE", True)
    monkeypatch.setattr(config, "AUDIO_ENABLED", False)
    monkeypatch.setattr(config, "FIREBASE_PROJECT_ID", "")
    monkeypatch.setattr(config, "ELEVENLABS_API_KEY", "")


class FakeAudioDevices:
    def __init__(self):
        self.acquired: list[MicrophoneHandle] = []
        self.released: list[MicrophoneHandle] = []
        self.mute_calls: list[bool] = []
        self.fail_with: Exception | None = None
        self.gate: asyncio.Event | None = None
        self.delay = 0.0

    def held(self) -> list[MicrophoneHandle]:
        return [h for h in self.acquired if not h.released]

    async def acquire(self) -> MicrophoneHandle:
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            # blocks in a worker thread like a real device open
            await asyncio.to_thread(time.sleep, self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        if self.held():
            raise DeviceError("microphone already held")
        handle = MicrophoneHandle()
        self.acquired.append(handle)
        return handle

    def set_muted(self, handle: MicrophoneHandle, muted: bool) -> None:
        self.mute_calls.append(bool(muted))
        handle.muted = bool(muted)

    async def release(self, handle: MicrophoneHandle) -> None:
        if handle.released:
            return
        handle._mark_released()
        self.released.append(handle)


class FakeConversationClient:
    """Scripted agent: connects on open unless told otherwise."""

    def __init__(self, auto_connect: bool = True):
        self.auto_connect = auto_connect
        self.opened: list[dict] = []
        self.close_calls = 0
        self.messages_on_close: list[Message] = []
        self.open_error: Exception | None = None
        self.sink = None
        self.connected = False

    async def open(self, payload, on_event, audio=None) -> None:
        self.opened.append(payload)
        self.sink = on_event
        if self.open_error is not None:
            raise self.open_error
        if self.auto_connect:
            self.connect()

    def connect(self, conversation_id: str = "conv-1") -> None:
        self.connected = True
        self.sink(ConnectedEvent(conversation_id))

    def say(self, source: MessageSource, text: str) -> None:
        self.sink(MessageEvent(Message(source=source, text=text)))

    def fail(self, detail: str = "agent error") -> None:
        cause = FailureCause.AGENT_RUNTIME_ERROR if self.connected else FailureCause.AGENT_CONNECT_ERROR
        self.sink(ErrorEvent(cause, detail))

    def hang_up(self) -> None:
        self.connected = False
        self.sink(DisconnectedEvent("remote hangup"))

    async def close(self) -> None:
        self.close_calls += 1
        for message in self.messages_on_close:
            self.sink(MessageEvent(message))
        self.messages_on_close = []
        if self.connected:
            self.connected = False
            self.sink(DisconnectedEvent("closed"))


@pytest.fixture
def profiles() -> InMemoryProfileRepository:
    return InMemoryProfileRepository(
        {
            "u1": {"resume": {"skills": ["Python", "SQL"], "suggestedLocation": "São Paulo"}},
            "u2": {},
        }
    )


@pytest.fixture
def audio() -> FakeAudioDevices:
    return FakeAudioDevices()


@pytest.fixture
def agent() -> FakeConversationClient:
    return FakeConversationClient()


@pytest.fixture
def make_controller(profiles, audio, agent):
    created: list[SessionController] = []

    def _make(**query) -> SessionController:
        controller = SessionController(
            profile_repository=profiles,
            audio_devices=audio,
            conversation_client=agent,
            bootstrap=BootstrapParams.from_query(query),
            agent_id="agent-test",
        )
        created.append(controller)
        return controller

    return _make
