import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

import context
from processors.errors import CaptureFailed, ContractViolation, PermissionDenied
from processors.streaming_audio import StreamingMicrophone
from session_store import SessionNotFound

router = APIRouter()
logger = logging.getLogger(__name__)


@router.websocket("/ws/sessions/{session_id}/record")
async def record_endpoint(websocket: WebSocket, session_id: str):
    """Drives the session's microphone from the browser.

    Text frames are JSON commands (``start``, ``stop``, ``discard``); binary frames
    are audio. The recording is force-released when the socket goes away.
    """
    await websocket.accept()

    if context.session_registry is None:
        await websocket.close(code=1011, reason="Practice engine not available.")
        return
    try:
        live = context.session_registry.get(session_id)
    except SessionNotFound:
        await websocket.close(code=1008, reason="Session not found.")
        return

    capture = live.controller.audio
    microphone = live.microphone

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            if message.get("bytes") is not None:
                if isinstance(microphone, StreamingMicrophone):
                    microphone.feed(message["bytes"])
                continue

            try:
                command = json.loads(message.get("text") or "")
                action = command["action"]
            except (json.JSONDecodeError, KeyError, TypeError):
                await websocket.send_json({"event": "error", "error": "invalid_command"})
                continue

            try:
                if action == "start":
                    if isinstance(microphone, StreamingMicrophone):
                        microphone.grant(command.get("permission") == "granted")
                    await capture.start()
                    await websocket.send_json({"event": "recording"})
                elif action == "stop":
                    payload = await capture.stop()
                    await websocket.send_json({
                        "event": "stopped",
                        "bytes": len(payload),
                        "limit_reached": capture.limit_reached,
                    })
                elif action == "discard":
                    await capture.discard()
                    await websocket.send_json({"event": "discarded"})
                else:
                    await websocket.send_json({"event": "error", "error": f"unknown_action:{action}"})
            except PermissionDenied:
                await websocket.send_json({"event": "error", "error": "permission_denied"})
            except CaptureFailed as e:
                await websocket.send_json({"event": "error", "error": "capture_failed", "detail": str(e)})
            except ContractViolation as e:
                await websocket.send_json({"event": "error", "error": "invalid_state", "detail": str(e)})
    except WebSocketDisconnect:
        pass
    finally:
        if capture.is_recording:
            logger.info(f"Recording socket for session {session_id} closed mid-recording; releasing microphone.")
            await capture.discard()
