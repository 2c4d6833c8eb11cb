"""
Client-facing live channel endpoints.

- ``/ws``: websocket endpoint, one session per connection
- ``/ws/fallback/...``: HTTP long-polling for clients that cannot open a
  websocket (open a session, post control frames, poll for frames, close)

Origins are not restricted and the user id presented by the client is
trusted as-is; see the security note in live_notifications.transport.
"""

import asyncio
import contextlib
import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ValidationError
from starlette.concurrency import run_in_threadpool

from live_notifications.transport import (
    ClientFrame,
    FrameCommand,
    LiveChannelTransport,
    ServerFrame,
    Session,
    SessionKind,
    SessionLimitExceeded,
    UnknownSessionError,
)

logger = logging.getLogger("transport")

router = APIRouter()

MAX_POLL_SECONDS = 30.0


class FallbackSession(BaseModel):
    sessionId: str


class FallbackPoll(BaseModel):
    frames: list[dict[str, Any]]
    closed: bool


def _transport(request: Request) -> LiveChannelTransport:
    return request.app.state.transport


# =============================================================================
# Websocket
# =============================================================================

async def _pump_frames(websocket: WebSocket, session: Session, wakeup: asyncio.Event) -> None:
    """Sending flow of one session: the only writer to the socket."""
    try:
        while True:
            await wakeup.wait()
            wakeup.clear()
            for frame in session.drain():
                await websocket.send_text(frame.model_dump_json())
            if session.closed:
                await websocket.send_text(session.close_frame().model_dump_json())
                await websocket.close()
                return
    except Exception as e:
        # peer went away mid-send
        logger.debug(f"Send to session {session.session_id} aborted: {e!r}")


@router.websocket("/ws")
async def live_channel(websocket: WebSocket):
    """Accept a websocket session and serve it until either side closes."""
    transport: LiveChannelTransport = websocket.app.state.transport
    await websocket.accept()

    loop = asyncio.get_running_loop()
    wakeup = asyncio.Event()
    try:
        session = transport.open_session(
            SessionKind.WEBSOCKET,
            waker=lambda: loop.call_soon_threadsafe(wakeup.set),
        )
    except SessionLimitExceeded as e:
        logger.warning(f"Rejecting websocket session: {e}")
        refusal = ServerFrame(command=FrameCommand.CLOSE, body={"reason": str(e)})
        await websocket.send_text(refusal.model_dump_json())
        await websocket.close(code=1013)
        return

    pump = asyncio.create_task(_pump_frames(websocket, session, wakeup))
    try:
        while not session.closed:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            text = message.get("text")
            if text is None and message.get("bytes") is not None:
                try:
                    text = message["bytes"].decode("utf-8")
                except UnicodeDecodeError:
                    logger.warning(f"Ignoring non UTF-8 binary frame from session {session.session_id}")
                    continue
            text = text or ""
            try:
                frame = ClientFrame.model_validate_json(text)
            except ValidationError:
                logger.warning(f"Ignoring malformed frame from session {session.session_id}: {text[:200]!r}")
                continue
            # offer() can block for send_timeout, keep it off the event loop
            await run_in_threadpool(transport.handle_frame, session.session_id, frame)
    except (WebSocketDisconnect, UnknownSessionError, RuntimeError):
        pass
    finally:
        transport.close_session(session.session_id)
        if not pump.done():
            pump.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await pump


# =============================================================================
# Long-poll fallback
# =============================================================================

@router.post("/ws/fallback/sessions", response_model=FallbackSession, status_code=201, tags=["Live Channel"])
def open_fallback_session(request: Request):
    """Open a long-poll session. The CONNECTED frame is returned by the first poll."""
    transport = _transport(request)
    transport.expire_idle_sessions()
    try:
        session = transport.open_session(SessionKind.FALLBACK)
    except SessionLimitExceeded as e:
        raise HTTPException(status_code=503, detail=str(e))
    return FallbackSession(sessionId=session.session_id)


@router.post("/ws/fallback/sessions/{session_id}/frames", status_code=202, tags=["Live Channel"])
def send_fallback_frame(session_id: str, frame: ClientFrame, request: Request):
    """Post one control frame (/app/connect, /app/subscribe, /app/track-order)."""
    try:
        _transport(request).handle_frame(session_id, frame)
    except UnknownSessionError:
        raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")
    return {"accepted": True}


@router.get("/ws/fallback/sessions/{session_id}/frames", response_model=FallbackPoll, tags=["Live Channel"])
def poll_fallback_frames(
    session_id: str,
    request: Request,
    timeout: float = Query(default=25.0, ge=0.0, le=MAX_POLL_SECONDS),
):
    """Wait up to ``timeout`` seconds for frames addressed to this session."""
    transport = _transport(request)
    transport.expire_idle_sessions()
    try:
        session = transport.get_session(session_id)
    except UnknownSessionError:
        raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")

    session.touch()
    frames = session.take(timeout)
    session.touch()
    if session.closed:
        frames.append(session.close_frame())
    return FallbackPoll(frames=[f.model_dump(mode="json") for f in frames], closed=session.closed)


@router.delete("/ws/fallback/sessions/{session_id}", status_code=204, tags=["Live Channel"])
def close_fallback_session(session_id: str, request: Request):
    if not _transport(request).close_session(session_id):
        raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")
