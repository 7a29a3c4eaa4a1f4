from __future__ import annotations

import asyncio
import itertools
import logging
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Callable

from interview_room.audio.devices import AudioDeviceManager, MicrophoneHandle
from interview_room.conversation.client import ConversationClient
from interview_room.conversation.events import (
    ConnectedEvent,
    ConversationEvent,
    DisconnectedEvent,
    ErrorEvent,
    MessageEvent,
)
from interview_room.core import config
from interview_room.core.logger import log_event
from interview_room.core.state import ACTIVE_ATTEMPT_STATES, FailureCause, SessionState
from interview_room.errors import InterviewRoomError
from interview_room.profile.models import CandidateProfile
from interview_room.profile.repository import ProfileRepository
from interview_room.system_metrics import increment_metric, record_session_failure
from interview_room.transcript.log import TranscriptLog
from interview_room.transcript.models import Message
from .parameters import BootstrapParams, SessionParameters

logging.basicConfig(
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    level=logging.INFO,
)

logger = logging.getLogger("session_controller")

START_LABEL_FIRST = "Começar Entrevista"
START_LABEL_AGAIN = "Nova Entrevista"

ACQUIRE_SETTLE_TIMEOUT_SEC = 5.0


@dataclass(frozen=True)
class SessionSnapshot:
    session_id: str
    state: SessionState
    failure: FailureCause | None
    muted: bool
    messages: tuple[Message, ...]
    job_title: str

    @property
    def start_label(self) -> str:
        return START_LABEL_AGAIN if self.messages else START_LABEL_FIRST

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "state": self.state.value,
            "failure": self.failure.value if self.failure else None,
            "muted": self.muted,
            "job_title": self.job_title,
            "start_label": self.start_label,
            "messages": [m.to_dict() for m in self.messages],
        }


@dataclass
class _Attempt:
    attempt_id: int
    handle: MicrophoneHandle | None = None
    open_issued: bool = False
    torn_down: bool = False


SnapshotListener = Callable[[SessionSnapshot], None]


class SessionController:
    """
    Lifecycle owner for one candidate's interview room.

    Remote conversation events are serialized through a single queue and
    applied by one consumer task; user commands are state-guarded and
    return False when they do not apply to the current state.
    """

    def __init__(
        self,
        profile_repository: ProfileRepository,
        audio_devices: AudioDeviceManager,
        conversation_client: ConversationClient,
        bootstrap: BootstrapParams,
        agent_id: str | None = None,
        session_id: str | None = None,
    ):
        self.session_id = session_id or str(uuid.uuid4())
        self.bootstrap_params = bootstrap
        self.agent_id = agent_id or config.ELEVENLABS_AGENT_ID
        self.tasks: list[asyncio.Task] = []
        self.history: deque[SessionState] = deque([SessionState.IDLE], maxlen=100)

        self._profiles = profile_repository
        self._audio = audio_devices
        self._conversation = conversation_client

        self._state = SessionState.IDLE
        self._failure: FailureCause | None = None
        self._muted = False
        self._profile: CandidateProfile | None = None
        self._transcript = TranscriptLog()
        self._attempt: _Attempt | None = None
        self._attempt_ids = itertools.count(1)
        self._events: asyncio.Queue[tuple[int, ConversationEvent]] = asyncio.Queue()
        self._consumer_task: asyncio.Task | None = None
        self._acquiring: asyncio.Task | None = None
        self._listeners: list[SnapshotListener] = []

    # -------------------------
    # READ API
    # -------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def failure(self) -> FailureCause | None:
        return self._failure

    @property
    def muted(self) -> bool:
        return self._muted

    @property
    def profile(self) -> CandidateProfile | None:
        return self._profile

    @property
    def transcript(self) -> tuple[Message, ...]:
        return self._transcript.snapshot()

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            session_id=self.session_id,
            state=self._state,
            failure=self._failure,
            muted=self._muted,
            messages=self._transcript.snapshot(),
            job_title=self.bootstrap_params.job_title,
        )

    @property
    def subscriber_count(self) -> int:
        return len(self._listeners)

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("[SESSION %s] snapshot listener failed", self.session_id)

    # -------------------------
    # TRANSITIONS
    # -------------------------

    def _set_state(self, state: SessionState, cause: FailureCause | None = None) -> None:
        previous = self._state
        self._state = state
        self._failure = cause if state == SessionState.FAILED else None
        self.history.append(state)

        if state == SessionState.FAILED:
            logger.warning("[SESSION %s] %s → FAILED | cause=%s", self.session_id, previous.value, cause.value if cause else None)
            record_session_failure(cause.value if cause else "unknown")
        else:
            logger.info("[SESSION %s] %s → %s", self.session_id, previous.value, state.value)

        log_event(
            "session_controller",
            "state_changed",
            self.session_id,
            level=logging.WARNING if state == SessionState.FAILED else logging.INFO,
            previous=previous,
            state=state,
            failure=cause,
        )
        self._notify()

    def _fail(self, cause: FailureCause) -> None:
        if self._attempt is not None:
            self._attempt.torn_down = True
        self._set_state(SessionState.FAILED, cause)

    def _is_live(self, attempt: _Attempt) -> bool:
        return attempt is self._attempt and not attempt.torn_down

    # -------------------------
    # BOOTSTRAP
    # -------------------------

    async def bootstrap(self) -> SessionState:
        if self._state not in (SessionState.IDLE, SessionState.FAILED):
            logger.info("[SESSION %s] bootstrap ignored in state=%s", self.session_id, self._state.value)
            return self._state

        candidate_id = self.bootstrap_params.candidate_id
        if not candidate_id:
            self._fail(FailureCause.MISSING_IDENTIFIER)
            return self._state

        self._profile = None
        self._set_state(SessionState.RESOLVING_PROFILE)
        try:
            profile = await self._profiles.fetch(candidate_id)
        except InterviewRoomError as exc:
            logger.warning("[SESSION %s] profile lookup failed | candidate_id=%s err=%s", self.session_id, candidate_id, exc)
            failure = exc.cause
        except Exception as exc:
            logger.exception("[SESSION %s] profile lookup crashed | candidate_id=%s", self.session_id, candidate_id)
            failure = FailureCause.PROFILE_TRANSPORT_ERROR
        else:
            failure = None

        if self._state != SessionState.RESOLVING_PROFILE:
            return self._state
        if failure is not None:
            self._fail(failure)
            return self._state

        self._profile = profile
        self._set_state(SessionState.READY)
        return self._state

    async def retry(self) -> SessionState:
        return await self.bootstrap()

    # -------------------------
    # START / END / MUTE
    # -------------------------

    async def start(self) -> bool:
        if self._state != SessionState.READY:
            logger.info("[SESSION %s] start ignored in state=%s", self.session_id, self._state.value)
            return False

        self._ensure_consumer()
        attempt = _Attempt(attempt_id=next(self._attempt_ids))
        self._attempt = attempt
        self._transcript.clear()
        self._muted = False
        increment_metric("sessions_started")
        self._set_state(SessionState.ACQUIRING_MEDIA)

        # A cancelled attempt may still be waiting on the device; it owns the
        # microphone until its late handle has been released.
        previous = self._acquiring
        if previous is not None and not previous.done():
            logger.info("[SESSION %s] waiting for previous microphone request to settle", self.session_id)
            await asyncio.wait({previous})
            if not self._is_live(attempt):
                return False

        acquiring = asyncio.create_task(self._acquire_for(attempt))
        acquiring.add_done_callback(self._acquire_settled)
        self._acquiring = acquiring
        try:
            handle = await asyncio.shield(acquiring)
        except InterviewRoomError as exc:
            logger.warning("[SESSION %s] microphone unavailable | err=%s", self.session_id, exc)
            if self._is_live(attempt):
                self._fail(exc.cause)
            return False
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("[SESSION %s] microphone acquisition crashed", self.session_id)
            if self._is_live(attempt):
                self._fail(FailureCause.DEVICE_ERROR)
            return False

        if handle is None:
            return False

        attempt.handle = handle
        parameters = SessionParameters.build(self.bootstrap_params, self._profile)
        payload = parameters.to_payload(self.agent_id)
        self._set_state(SessionState.CONNECTING)
        log_event(
            "session_controller",
            "open_requested",
            self.session_id,
            attempt=attempt.attempt_id,
            agent_id=self.agent_id,
            candidate_resume=parameters.resume_context,
        )

        attempt.open_issued = True
        try:
            await self._conversation.open(payload, self._sink_for(attempt), audio=handle.chunks())
        except Exception as exc:
            logger.warning("[SESSION %s] conversation open raised | err=%s", self.session_id, exc)
            self._events.put_nowait((attempt.attempt_id, ErrorEvent(FailureCause.AGENT_CONNECT_ERROR, str(exc))))
        return True

    async def _acquire_for(self, attempt: _Attempt) -> MicrophoneHandle | None:
        """Runs detached from start() so a cancelled start cannot orphan the handle."""
        handle = await self._audio.acquire()
        if not self._is_live(attempt):
            logger.info("[SESSION %s] microphone arrived after cancel; releasing handle=%s", self.session_id, handle.handle_id)
            await self._release(handle)
            return None
        return handle

    def _acquire_settled(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.debug("[SESSION %s] microphone request ended with %s", self.session_id, type(exc).__name__)

    async def end(self) -> bool:
        attempt = self._attempt
        if self._state not in ACTIVE_ATTEMPT_STATES or attempt is None or attempt.torn_down:
            logger.info("[SESSION %s] end ignored in state=%s", self.session_id, self._state.value)
            return False
        await self._teardown(attempt, SessionState.READY, reason="user_end")
        return True

    def set_muted(self, muted: bool) -> bool:
        attempt = self._attempt
        if self._state != SessionState.CONNECTED or attempt is None or attempt.handle is None:
            logger.info("[SESSION %s] mute ignored in state=%s", self.session_id, self._state.value)
            return False

        muted = bool(muted)
        self._audio.set_muted(attempt.handle, muted)
        if self._muted != muted:
            self._muted = muted
            self._notify()
        return True

    def toggle_mute(self) -> bool:
        return self.set_muted(not self._muted)

    # -------------------------
    # EVENT CHANNEL
    # -------------------------

    def _sink_for(self, attempt: _Attempt):
        attempt_id = attempt.attempt_id

        def _sink(event: ConversationEvent) -> None:
            self._events.put_nowait((attempt_id, event))

        return _sink

    def _ensure_consumer(self) -> None:
        if self._consumer_task is None or self._consumer_task.done():
            self._consumer_task = self.create_task(self._consume_events())

    async def _consume_events(self) -> None:
        while True:
            attempt_id, event = await self._events.get()
            try:
                await self._dispatch(attempt_id, event)
            except Exception:
                logger.exception("[SESSION %s] event dispatch failed | event=%s", self.session_id, type(event).__name__)
            finally:
                self._events.task_done()

    async def wait_idle(self) -> None:
        """Block until every queued conversation event has been applied."""
        await self._events.join()

    async def _dispatch(self, attempt_id: int, event: ConversationEvent) -> None:
        attempt = self._attempt
        if attempt is None or attempt.attempt_id != attempt_id:
            logger.debug("[SESSION %s] stale %s dropped | attempt=%s", self.session_id, type(event).__name__, attempt_id)
            return

        if isinstance(event, MessageEvent):
            if self._state in (SessionState.CONNECTED, SessionState.DISCONNECTING):
                self._append(event.message)
            else:
                logger.debug("[SESSION %s] message dropped in state=%s", self.session_id, self._state.value)
            return

        if attempt.torn_down:
            logger.debug("[SESSION %s] %s ignored during teardown", self.session_id, type(event).__name__)
            return

        if isinstance(event, ConnectedEvent):
            if self._state != SessionState.CONNECTING:
                return
            increment_metric("sessions_connected")
            log_event("session_controller", "connected", self.session_id, conversation_id=event.conversation_id)
            self._set_state(SessionState.CONNECTED)
            return

        if isinstance(event, DisconnectedEvent):
            if self._state == SessionState.CONNECTED:
                await self._teardown(attempt, SessionState.READY, reason=event.reason or "remote_disconnect")
            elif self._state == SessionState.CONNECTING:
                await self._teardown(attempt, SessionState.FAILED, FailureCause.AGENT_CONNECT_ERROR, reason="closed_before_connect")
            return

        if isinstance(event, ErrorEvent):
            if self._state == SessionState.CONNECTING:
                await self._teardown(attempt, SessionState.FAILED, FailureCause.AGENT_CONNECT_ERROR, reason=event.detail)
            elif self._state == SessionState.CONNECTED:
                await self._teardown(attempt, SessionState.FAILED, FailureCause.AGENT_RUNTIME_ERROR, reason=event.detail)

    def _append(self, message: Message) -> None:
        self._transcript.append(message)
        increment_metric("transcript_messages")
        log_event("session_controller", "message", self.session_id, source=message.source.value, text=message.text)
        self._notify()

    def _drain_pending(self, attempt: _Attempt) -> None:
        while not self._events.empty():
            attempt_id, event = self._events.get_nowait()
            try:
                if attempt_id == attempt.attempt_id and isinstance(event, MessageEvent):
                    self._append(event.message)
            finally:
                self._events.task_done()

    # -------------------------
    # TEARDOWN
    # -------------------------

    async def _release(self, handle: MicrophoneHandle) -> None:
        try:
            await self._audio.release(handle)
        except Exception:
            logger.exception("[SESSION %s] microphone release failed | handle=%s", self.session_id, handle.handle_id)

    async def _teardown(
        self,
        attempt: _Attempt,
        outcome: SessionState,
        cause: FailureCause | None = None,
        reason: str = "",
    ) -> None:
        if attempt.torn_down:
            return
        attempt.torn_down = True
        logger.info(
            "[SESSION %s] teardown | attempt=%s outcome=%s reason=%s",
            self.session_id,
            attempt.attempt_id,
            outcome.value,
            reason or "-",
        )

        if self._state == SessionState.CONNECTED or outcome == SessionState.READY:
            self._set_state(SessionState.DISCONNECTING)

        if attempt.open_issued:
            try:
                await self._conversation.close()
            except Exception as exc:
                logger.warning("[SESSION %s] conversation close failed | err=%s", self.session_id, exc)
            self._drain_pending(attempt)

        handle = attempt.handle
        attempt.handle = None
        if handle is not None:
            await self._release(handle)
        self._muted = False

        if attempt is not self._attempt:
            return
        if outcome == SessionState.FAILED:
            self._set_state(SessionState.FAILED, cause or FailureCause.AGENT_RUNTIME_ERROR)
        else:
            self._set_state(SessionState.READY)

    # -------------------------
    # TASKS
    # -------------------------

    def create_task(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self.tasks.append(task)
        task.add_done_callback(self._forget_task)
        return task

    def _forget_task(self, task: asyncio.Task) -> None:
        if task in self.tasks and task is not self._consumer_task:
            self.tasks.remove(task)

    async def stop(self) -> None:
        attempt = self._attempt
        if attempt is not None and not attempt.torn_down and self._state in ACTIVE_ATTEMPT_STATES:
            await self._teardown(attempt, SessionState.READY, reason="shutdown")

        for task in list(self.tasks):
            task.cancel()

        await asyncio.gather(*self.tasks, return_exceptions=True)
        self.tasks.clear()

        acquiring = self._acquiring
        if acquiring is not None and not acquiring.done():
            _, pending = await asyncio.wait({acquiring}, timeout=ACQUIRE_SETTLE_TIMEOUT_SEC)
            if pending:
                logger.warning("[SESSION %s] microphone request still pending at stop", self.session_id)
        self._consumer_task = None
        self._listeners.clear()
