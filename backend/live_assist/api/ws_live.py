import asyncio
import base64
import binascii
import json
import logging
import uuid

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from starlette.websockets import WebSocketState

from core.config import LiveAssistSettings
from core.logger import log_event
from live_assist.orchestrator import InterviewOrchestrator, ListeningState, ListeningStatus
from live_assist.schemas import ClientMessage
from live_assist.session.controller import SessionController
from live_assist.session.registry import session_registry

logger = logging.getLogger("ws_live")

router = APIRouter()


class WsDependencyProvider:
    def create_orchestrator(self, session_id: str) -> InterviewOrchestrator:
        return InterviewOrchestrator(settings=LiveAssistSettings.from_env(), session_id=session_id)


dependency_provider = WsDependencyProvider()


@router.websocket("/ws/live")
async def live_ws(websocket: WebSocket):
    # ================= LIFECYCLE OWNER =================
    controller = SessionController()
    session_id = str(uuid.uuid4())
    await websocket.accept()

    orchestrator = dependency_provider.create_orchestrator(session_id)
    session_registry.register(session_id, orchestrator)
    outbox: asyncio.Queue[dict] = asyncio.Queue()

    def _log_event(event: str, **fields):
        log_event("ws_live", event, session_id, **fields)

    def _queue_error(message: str) -> None:
        outbox.put_nowait({"type": "error", "session_id": session_id, "message": message})

    def _on_state(state: ListeningState) -> None:
        outbox.put_nowait({"type": "state", "session_id": session_id, "state": state.value})

    def _on_status(status: ListeningStatus) -> None:
        outbox.put_nowait({"type": "status", "session_id": session_id, **status.to_dict()})

    unsubscribe_state = orchestrator.on_state_change(_on_state)
    unsubscribe_status = orchestrator.on_status(_on_status)
    _log_event("connect")

    async def _safe_send(payload: dict):
        if websocket.client_state != WebSocketState.CONNECTED:
            return
        try:
            await websocket.send_text(json.dumps(payload))
        except Exception as exc:
            logger.warning("ws send failed | session_id=%s err=%s", session_id, exc)

    # ================= OUTBOUND =================
    async def pump_outbox():
        while not controller.stop_event.is_set():
            payload = await outbox.get()
            await _safe_send(payload)

    async def start_session():
        try:
            await orchestrator.start()
        except Exception as exc:
            _queue_error(f"start failed: {exc}")

    # ================= INBOUND =================
    async def handle_message(raw: str):
        try:
            message = ClientMessage.model_validate_json(raw)
        except ValidationError as exc:
            _queue_error(f"invalid message: {exc.error_count()} validation error(s)")
            return

        if message.type == "start":
            controller.create_task(start_session())
        elif message.type == "stop":
            await orchestrator.stop()
        elif message.type == "audio":
            try:
                pcm = base64.b64decode(message.pcm or "", validate=True)
            except (binascii.Error, ValueError):
                _queue_error("invalid message: pcm is not valid base64")
                return
            orchestrator.receive_audio(pcm, message.level)
        elif message.type == "text":
            if message.text:
                orchestrator.send_text(message.text)

    async def receive_messages():
        try:
            while True:
                raw = await websocket.receive_text()
                session_registry.touch(session_id)
                await handle_message(raw)
        except WebSocketDisconnect:
            _log_event("client_disconnected")
        finally:
            controller.request_stop()

    # ================= RUN TASKS =================
    controller.create_task(pump_outbox())
    controller.create_task(receive_messages())

    async def shutdown_session():
        await orchestrator.stop()
        await controller.stop()

    try:
        await controller.stop_event.wait()
    finally:
        unsubscribe_state()
        unsubscribe_status()
        session_registry.mark_inactive(session_id)
        _log_event("disconnect")
        # Handler cancellation (server shutdown) must not cut the client teardown short.
        try:
            await asyncio.shield(shutdown_session())
        except asyncio.CancelledError:
            logger.warning("ws teardown continuing in background | session_id=%s", session_id)
            raise
