from fastapi import APIRouter, HTTPException, Request, WebSocket
import asyncio
import json
import logging

from starlette.websockets import WebSocketState

from interview_room.audio.devices import AudioDeviceManager, build_audio_manager
from interview_room.conversation.client import ConversationClient, build_conversation_client
from interview_room.core.config import MAX_WS_TEXT_BYTES
from interview_room.core.logger import log_event
from interview_room.core.state import SessionState
from interview_room.profile.repository import ProfileRepository, build_profile_repository
from interview_room.schemas import CommandResult, MuteRequest, SessionView
from interview_room.session.controller import SessionController, SessionSnapshot
from interview_room.session.parameters import BootstrapParams
from interview_room.session.registry import session_registry
from interview_room.system_metrics import decrement_metric, increment_metric, set_metric

logger = logging.getLogger("session_routes")

router = APIRouter()


class SessionDependencyProvider:
    def __init__(self):
        self._profile_repository: ProfileRepository | None = None

    def create_profile_repository(self) -> ProfileRepository:
        if self._profile_repository is None:
            self._profile_repository = build_profile_repository()
        return self._profile_repository

    def create_audio_manager(self) -> AudioDeviceManager:
        return build_audio_manager()

    def create_conversation_client(self) -> ConversationClient:
        return build_conversation_client()

    def create_controller(self, bootstrap: BootstrapParams) -> SessionController:
        return SessionController(
            profile_repository=self.create_profile_repository(),
            audio_devices=self.create_audio_manager(),
            conversation_client=self.create_conversation_client(),
            bootstrap=bootstrap,
        )


dependency_provider = SessionDependencyProvider()


def _require_controller(session_id: str) -> SessionController:
    controller = session_registry.get_controller(session_id)
    if controller is None:
        raise HTTPException(404, "Session not found")
    session_registry.touch(session_id)
    return controller


def _command_result(controller: SessionController, accepted: bool) -> dict:
    return {**controller.snapshot().to_dict(), "accepted": bool(accepted)}


@router.post("/api/sessions", response_model=SessionView)
async def create_session(request: Request):
    bootstrap = BootstrapParams.from_query(request.query_params)
    controller = dependency_provider.create_controller(bootstrap)
    session_registry.register(controller.session_id, controller)
    increment_metric("sessions_created")
    set_metric("sessions_active", session_registry.active_count())
    log_event("session_routes", "session_created", controller.session_id, has_candidate=bool(bootstrap.candidate_id))

    await controller.bootstrap()
    return controller.snapshot().to_dict()


@router.get("/api/sessions/{session_id}", response_model=SessionView)
async def get_session(session_id: str):
    return _require_controller(session_id).snapshot().to_dict()


@router.post("/api/sessions/{session_id}/start", response_model=CommandResult)
async def start_session(session_id: str):
    controller = _require_controller(session_id)
    accepted = controller.state == SessionState.READY
    if accepted:
        # Microphone permission may take arbitrarily long; answer right away.
        controller.create_task(controller.start())
        await asyncio.sleep(0)
    return _command_result(controller, accepted)


@router.post("/api/sessions/{session_id}/end", response_model=CommandResult)
async def end_session(session_id: str):
    controller = _require_controller(session_id)
    accepted = await controller.end()
    return _command_result(controller, accepted)


@router.post("/api/sessions/{session_id}/mute", response_model=CommandResult)
async def mute_session(session_id: str, req: MuteRequest):
    controller = _require_controller(session_id)
    if req.muted is None:
        accepted = controller.toggle_mute()
    else:
        accepted = controller.set_muted(req.muted)
    return _command_result(controller, accepted)


@router.post("/api/sessions/{session_id}/retry", response_model=SessionView)
async def retry_session(session_id: str):
    controller = _require_controller(session_id)
    await controller.retry()
    return controller.snapshot().to_dict()


@router.delete("/api/sessions/{session_id}")
async def close_session(session_id: str):
    controller = _require_controller(session_id)
    await controller.stop()
    session_registry.mark_inactive(session_id)
    set_metric("sessions_active", session_registry.active_count())
    return {"session_id": session_id, "closed": True}


async def _apply_ws_command(controller: SessionController, payload: dict) -> dict | None:
    payload_type = str(payload.get("type") or "").strip().lower()
    if payload_type == "ping":
        return {"type": "pong", "session_id": controller.session_id}
    if payload_type == "start":
        if controller.state == SessionState.READY:
            controller.create_task(controller.start())
            return None
        return {"type": "command_ignored", "command": "start", "state": controller.state.value}
    if payload_type == "end":
        if not await controller.end():
            return {"type": "command_ignored", "command": "end", "state": controller.state.value}
        return None
    if payload_type == "mute":
        muted = payload.get("muted")
        accepted = controller.toggle_mute() if muted is None else controller.set_muted(bool(muted))
        if not accepted:
            return {"type": "command_ignored", "command": "mute", "state": controller.state.value}
        return None
    if payload_type == "retry":
        await controller.retry()
        return None
    return {"type": "error", "message": f"unknown command {payload_type or '<empty>'}"}


@router.websocket("/ws/sessions/{session_id}")
async def session_ws(websocket: WebSocket, session_id: str):
    controller = session_registry.get_controller(session_id)
    if controller is None:
        await websocket.close(code=1008, reason="Session not found")
        return

    await websocket.accept()
    session_registry.mark_active(session_id)
    set_metric("sessions_active", session_registry.active_count())
    increment_metric("ws_connections_active", 1)
    log_event("session_routes", "ws_connect", session_id)

    send_lock = asyncio.Lock()
    snapshots: asyncio.Queue[SessionSnapshot] = asyncio.Queue()
    unsubscribe = controller.subscribe(snapshots.put_nowait)

    async def _safe_send(payload: dict):
        if websocket.client_state != WebSocketState.CONNECTED:
            return
        try:
            encoded = json.dumps(payload)
        except Exception as exc:
            logger.warning("ws payload encode failed | session_id=%s err=%s", session_id, exc)
            return
        try:
            async with send_lock:
                await websocket.send_text(encoded)
        except Exception as exc:
            logger.warning("ws send failed | session_id=%s err=%s", session_id, exc)

    async def push_snapshots():
        while True:
            snapshot = await snapshots.get()
            await _safe_send({"type": "session_state", **snapshot.to_dict()})

    await _safe_send({"type": "session_state", **controller.snapshot().to_dict()})
    pusher = asyncio.create_task(push_snapshots())

    try:
        while True:
            msg = await websocket.receive()
            if msg["type"] == "websocket.disconnect":
                log_event("session_routes", "ws_disconnect", session_id, reason="client_disconnect")
                break

            text_payload = str(msg.get("text") or "")
            if not text_payload:
                continue
            if len(text_payload.encode("utf-8")) > MAX_WS_TEXT_BYTES:
                logger.warning("WS message too large | session_id=%s bytes=%s", session_id, len(text_payload.encode("utf-8")))
                await _safe_send({"type": "error", "message": "message too large"})
                continue
            try:
                payload = json.loads(text_payload)
            except ValueError:
                await _safe_send({"type": "error", "message": "invalid json"})
                continue
            if not isinstance(payload, dict):
                await _safe_send({"type": "error", "message": "invalid command"})
                continue

            session_registry.touch(session_id)
            reply = await _apply_ws_command(controller, payload)
            if reply is not None:
                await _safe_send(reply)
    finally:
        unsubscribe()
        if controller.subscriber_count == 0:
            session_registry.mark_inactive(session_id)
        set_metric("sessions_active", session_registry.active_count())
        pusher.cancel()
        await asyncio.gather(pusher, return_exceptions=True)
        decrement_metric("ws_connections_active", 1)
