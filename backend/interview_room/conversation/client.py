from __future__ import annotations

import asyncio
import base64
import json
import logging
from typing import AsyncIterator, Awaitable, Callable, Optional, Protocol
from urllib.parse import urlencode

import httpx
import websockets
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, WebSocketException

from interview_room.core import config
from interview_room.core.state import FailureCause
from interview_room.errors import ConversationError
from interview_room.transcript.models import Message, MessageSource
from .events import (
    ConnectedEvent,
    ConversationEvent,
    DisconnectedEvent,
    ErrorEvent,
    EventSink,
    MessageEvent,
)

logging.basicConfig(
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    level=logging.INFO,
)

logger = logging.getLogger("conversation_client")

ConnectFn = Callable[..., Awaitable]


class ConversationClient(Protocol):
    async def open(
        self,
        payload: dict,
        on_event: EventSink,
        audio: Optional[AsyncIterator[bytes]] = None,
    ) -> None:
        ...

    async def close(self) -> None:
        ...


def build_initiation_frame(payload: dict) -> dict:
    return {
        "type": "conversation_initiation_client_data",
        "dynamic_variables": dict((payload or {}).get("variables") or {}),
    }


def parse_agent_frame(frame: dict) -> ConversationEvent | None:
    """
    Map one server frame to a controller event.
    Frames the controller has no use for (audio, pings, corrections) map to None.
    """
    kind = str((frame or {}).get("type") or "").strip()

    if kind == "conversation_initiation_metadata":
        meta = frame.get("conversation_initiation_metadata_event") or {}
        return ConnectedEvent(conversation_id=str(meta.get("conversation_id") or ""))

    if kind == "user_transcript":
        text = str((frame.get("user_transcription_event") or {}).get("user_transcript") or "").strip()
        if text:
            return MessageEvent(Message(source=MessageSource.CANDIDATE, text=text))
        return None

    if kind == "agent_response":
        text = str((frame.get("agent_response_event") or {}).get("agent_response") or "").strip()
        if text:
            return MessageEvent(Message(source=MessageSource.AGENT, text=text))
        return None

    return None


class ElevenLabsConversationClient:
    """
    Realtime agent session over a websocket.
    One instance drives one open/close cycle at a time.
    """

    def __init__(
        self,
        ws_url: str = "wss://api.elevenlabs.io/v1/convai/conversation",
        api_key: str = "",
        signed_url_endpoint: str = "",
        connect_timeout: float = 15.0,
        connect_fn: ConnectFn | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._ws_url = ws_url
        self._api_key = api_key
        self._signed_url_endpoint = signed_url_endpoint
        self._connect_timeout = connect_timeout
        self._connect_fn = connect_fn or websockets.connect
        self._http_transport = http_transport

        self._ws = None
        self._on_event: EventSink | None = None
        self._tasks: list[asyncio.Task] = []
        self._receive_task: asyncio.Task | None = None
        self._connected = False
        self._closing = False
        self._finished = False

    # -------------------------
    # EVENT DELIVERY
    # -------------------------

    def _emit(self, event: ConversationEvent) -> None:
        if self._on_event is None:
            return
        try:
            self._on_event(event)
        except Exception:
            logger.exception("conversation event sink failed | event=%s", type(event).__name__)

    def _emit_terminal(self, event: ConversationEvent) -> None:
        if self._finished:
            return
        self._finished = True
        self._emit(event)

    # -------------------------
    # OPEN
    # -------------------------

    async def _resolve_url(self, agent_id: str) -> str:
        if not self._api_key or not self._signed_url_endpoint:
            return f"{self._ws_url}?{urlencode({'agent_id': agent_id})}"

        async with httpx.AsyncClient(timeout=self._connect_timeout, transport=self._http_transport) as client:
            response = await client.get(
                self._signed_url_endpoint,
                params={"agent_id": agent_id},
                headers={"xi-api-key": self._api_key},
            )
        if response.status_code != 200:
            raise ConversationError(f"signed url request answered HTTP {response.status_code}")
        signed_url = str((response.json() or {}).get("signed_url") or "").strip()
        if not signed_url:
            raise ConversationError("signed url response without signed_url")
        return signed_url

    async def open(
        self,
        payload: dict,
        on_event: EventSink,
        audio: Optional[AsyncIterator[bytes]] = None,
    ) -> None:
        if self._ws is not None:
            raise ConversationError("conversation already open")

        self._on_event = on_event
        self._connected = False
        self._closing = False
        self._finished = False

        agent_id = str((payload or {}).get("agentIdentifier") or "").strip()
        if not agent_id:
            self._emit_terminal(ErrorEvent(FailureCause.AGENT_CONNECT_ERROR, "missing agent identifier"))
            return

        try:
            url = await self._resolve_url(agent_id)
            ws = await self._connect_fn(
                url,
                open_timeout=self._connect_timeout,
                ping_interval=20,
                ping_timeout=20,
                max_size=None,
            )
        except (OSError, asyncio.TimeoutError, httpx.HTTPError, ValueError, WebSocketException, ConversationError) as exc:
            logger.warning("agent connect failed | agent_id=%s err=%s", agent_id, exc)
            if not self._closing:
                self._emit_terminal(ErrorEvent(FailureCause.AGENT_CONNECT_ERROR, str(exc)))
            return

        if self._closing:
            await self._close_socket(ws)
            return

        self._ws = ws
        try:
            await ws.send(json.dumps(build_initiation_frame(payload)))
        except (ConnectionClosed, OSError) as exc:
            logger.warning("agent initiation send failed | agent_id=%s err=%s", agent_id, exc)
            self._ws = None
            await self._close_socket(ws)
            self._emit_terminal(ErrorEvent(FailureCause.AGENT_CONNECT_ERROR, str(exc)))
            return

        logger.info("agent socket open | agent_id=%s", agent_id)
        self._receive_task = asyncio.create_task(self._receive_loop(ws))
        self._tasks.append(asyncio.create_task(self._handshake_watchdog()))
        if audio is not None:
            self._tasks.append(asyncio.create_task(self._send_audio_loop(ws, audio)))

    async def _handshake_watchdog(self) -> None:
        await asyncio.sleep(self._connect_timeout)
        if self._connected or self._closing or self._finished:
            return
        logger.error("agent handshake timed out after %.1fs", self._connect_timeout)
        self._emit_terminal(ErrorEvent(FailureCause.AGENT_CONNECT_ERROR, "handshake timeout"))
        ws = self._ws
        if ws is not None:
            await self._close_socket(ws)

    # -------------------------
    # STREAMS
    # -------------------------

    async def _receive_loop(self, ws) -> None:
        reason = "closed"
        try:
            async for raw in ws:
                if isinstance(raw, bytes):
                    continue
                try:
                    frame = json.loads(raw)
                except ValueError:
                    logger.warning("agent frame not json | bytes=%s", len(raw))
                    continue
                await self._handle_frame(ws, frame)
        except ConnectionClosedOK:
            reason = "closed"
        except ConnectionClosed as exc:
            reason = f"connection lost: {exc}"
            if not self._closing:
                cause = FailureCause.AGENT_RUNTIME_ERROR if self._connected else FailureCause.AGENT_CONNECT_ERROR
                logger.warning("agent socket dropped | connected=%s err=%s", self._connected, exc)
                self._emit_terminal(ErrorEvent(cause, reason))
                return
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("agent receive loop failed")
            cause = FailureCause.AGENT_RUNTIME_ERROR if self._connected else FailureCause.AGENT_CONNECT_ERROR
            self._emit_terminal(ErrorEvent(cause, str(exc)))
            return

        if self._connected:
            self._emit_terminal(DisconnectedEvent(reason=reason))
        elif not self._closing:
            self._emit_terminal(ErrorEvent(FailureCause.AGENT_CONNECT_ERROR, "closed before initiation"))

    async def _handle_frame(self, ws, frame: dict) -> None:
        kind = str(frame.get("type") or "")
        if kind == "ping":
            event_id = (frame.get("ping_event") or {}).get("event_id")
            try:
                await ws.send(json.dumps({"type": "pong", "event_id": event_id}))
            except ConnectionClosed:
                pass
            return

        event = parse_agent_frame(frame)
        if event is None:
            return

        if isinstance(event, ConnectedEvent):
            if self._connected or self._finished:
                return
            self._connected = True
            logger.info("agent conversation started | conversation_id=%s", event.conversation_id)
            self._emit(event)
            return

        if not self._connected or self._finished:
            return
        self._emit(event)

    async def _send_audio_loop(self, ws, audio: AsyncIterator[bytes]) -> None:
        try:
            async for chunk in audio:
                if self._closing or self._finished:
                    break
                if not self._connected:
                    continue
                encoded = base64.b64encode(chunk).decode("ascii")
                await ws.send(json.dumps({"user_audio_chunk": encoded}))
        except ConnectionClosed:
            return

    # -------------------------
    # CLOSE
    # -------------------------

    @staticmethod
    async def _close_socket(ws) -> None:
        try:
            await ws.close()
        except Exception as exc:
            logger.warning("agent socket close failed | err=%s", exc)

    async def close(self) -> None:
        self._closing = True
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        ws = self._ws
        self._ws = None
        if ws is not None:
            await self._close_socket(ws)

        receive_task = self._receive_task
        self._receive_task = None
        if receive_task is not None:
            try:
                await asyncio.wait_for(receive_task, timeout=self._connect_timeout)
            except asyncio.TimeoutError:
                logger.warning("agent receive loop did not finish after close")
            except Exception as exc:
                logger.warning("agent receive loop ended with error | err=%s", exc)

        if self._connected:
            self._emit_terminal(DisconnectedEvent(reason="closed"))


def build_conversation_client() -> ConversationClient:
    return ElevenLabsConversationClient(
        ws_url=config.ELEVENLABS_WS_URL,
        api_key=config.ELEVENLABS_API_KEY,
        signed_url_endpoint=config.ELEVENLABS_SIGNED_URL_ENDPOINT,
        connect_timeout=config.AGENT_CONNECT_TIMEOUT_SEC,
    )
