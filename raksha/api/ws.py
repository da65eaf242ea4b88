"""WebSocket endpoint with JWT auth."""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from raksha.api.location import report_to_fix
from raksha.core.security import user_id_from_token
from raksha.core.ws_manager import ws_manager
from raksha.db.session import SessionLocal
from raksha.models.user import User
from raksha.schemas.location import LocationReport

logger = logging.getLogger(__name__)

router = APIRouter()


def _authenticate_ws(token: str) -> int | None:
    """Validate JWT and return user_id, or None."""
    user_id = user_id_from_token(token)
    if user_id is None:
        return None
    db = SessionLocal()
    try:
        user = db.get(User, user_id)
        if not user or not user.is_active:
            return None
        return user.id
    finally:
        db.close()


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    WebSocket endpoint. Client connects with ?token=<jwt>.
    Server pushes events: checkin.tick, checkin.escalated, checkin.critical,
    checkin.completed, location.request
    Client sends "ping" or {"event": "location", "data": {...}}
    """
    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=4001, reason="Missing token")
        return

    user_id = _authenticate_ws(token)
    if user_id is None:
        await websocket.close(code=4003, reason="Invalid or expired token")
        return

    await ws_manager.connect(websocket, user_id)
    try:
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text('{"event":"pong"}')
                continue
            await _handle_message(websocket, user_id, data)
    except WebSocketDisconnect:
        pass
    finally:
        ws_manager.disconnect(websocket, user_id)


async def _handle_message(websocket: WebSocket, user_id: int, raw: str) -> None:
    try:
        message = json.loads(raw)
    except json.JSONDecodeError:
        await websocket.send_text('{"event":"error","data":"invalid json"}')
        return
    if not isinstance(message, dict) or message.get("event") != "location":
        await websocket.send_text('{"event":"error","data":"unknown event"}')
        return
    try:
        report = LocationReport.model_validate(message.get("data") or {})
    except ValidationError:
        await websocket.send_text('{"event":"error","data":"invalid location"}')
        return
    engine = websocket.app.state.checkin_engine
    engine.location_provider.report(user_id, report_to_fix(report))
    logger.debug("Location fix received over WS: owner=%s", user_id)
