import asyncio
import json
import logging
from typing import Optional
from fastapi import APIRouter, Depends, File, UploadFile, WebSocket, WebSocketDisconnect
from pydantic import BaseModel
from sqlmodel import Session

from app.db.db import get_session
from app.models.user import User
from app.services.chat_rooms import get_room_for_user, resolve_room
from app.services.chat_sync import ChatSync, SqlMessageStore
from app.services.errors import LostFoundError, ValidationError
from app.services.realtime import RoomEventBus, get_event_bus
from app.utils.auth_helper import get_current_db_user, get_user_from_token
from app.utils.s3_service import upload_photo

logger = logging.getLogger(__name__)

router = APIRouter()


class RoomRequest(BaseModel):
    lost_report_id: str
    found_report_id: str


class MessageCreateRequest(BaseModel):
    content: str


def get_uploader():
    return upload_photo


def parse_command(text: str) -> dict:
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        raise ValidationError("Commands must be JSON")

    if not isinstance(data, dict):
        raise ValidationError("Commands must be JSON objects")

    return data


def room_engine(room_id: str, session: Session, bus: RoomEventBus) -> ChatSync:
    return ChatSync(room_id, SqlMessageStore(session, bus), bus)


@router.post("/rooms")
async def open_room(
    payload: RoomRequest,
    session: Session = Depends(get_session),
    user: User = Depends(get_current_db_user),
):
    room_id = resolve_room(session, payload.lost_report_id, payload.found_report_id, user)
    return {"room_id": room_id}


@router.get("/{room_id}/messages")
async def get_messages(
    room_id: str,
    session: Session = Depends(get_session),
    user: User = Depends(get_current_db_user),
    bus: RoomEventBus = Depends(get_event_bus),
):
    get_room_for_user(session, room_id, user)

    messages = await SqlMessageStore(session, bus).fetch_messages(room_id)
    return {"messages": messages}


@router.post("/{room_id}/messages")
async def send_message(
    room_id: str,
    payload: MessageCreateRequest,
    session: Session = Depends(get_session),
    user: User = Depends(get_current_db_user),
    bus: RoomEventBus = Depends(get_event_bus),
):
    get_room_for_user(session, room_id, user)

    message = await room_engine(room_id, session, bus).send_message(payload.content, user.id)
    return {"ok": True, "message_id": str(message.id)}


@router.post("/{room_id}/images")
async def send_image(
    room_id: str,
    image: UploadFile = File(...),
    session: Session = Depends(get_session),
    user: User = Depends(get_current_db_user),
    bus: RoomEventBus = Depends(get_event_bus),
    uploader=Depends(get_uploader),
):
    get_room_for_user(session, room_id, user)

    raw_bytes = await image.read()
    message = await room_engine(room_id, session, bus).send_image(raw_bytes, image.filename, user.id, uploader)
    return {"ok": True, "message_id": str(message.id)}


@router.delete("/{room_id}/messages/{message_id}")
async def delete_message(
    room_id: str,
    message_id: str,
    session: Session = Depends(get_session),
    user: User = Depends(get_current_db_user),
    bus: RoomEventBus = Depends(get_event_bus),
):
    get_room_for_user(session, room_id, user)

    await room_engine(room_id, session, bus).delete_message(message_id, user.id)
    return {"ok": True}


@router.websocket("/{room_id}/ws")
async def room_socket(
    websocket: WebSocket,
    room_id: str,
    token: Optional[str] = None,
    session: Session = Depends(get_session),
    bus: RoomEventBus = Depends(get_event_bus),
):
    try:
        user = get_user_from_token(session, token)
        get_room_for_user(session, room_id, user)
    except LostFoundError as e:
        await websocket.close(code=4000 + e.status_code, reason=e.message)
        return

    await websocket.accept()

    # events applied right after the seed must not overtake the snapshot
    snapshot_sent = asyncio.Event()

    async def forward(kind, message):
        await snapshot_sent.wait()
        await websocket.send_json({"event": kind, "message": message.model_dump(mode="json")})

    engine = ChatSync(room_id, SqlMessageStore(session, bus), bus, on_change=forward)

    try:
        messages = await engine.attach()
        await websocket.send_json({
            "event": "snapshot",
            "messages": [m.model_dump(mode="json") for m in messages],
        })
        snapshot_sent.set()

        while True:
            text = await websocket.receive_text()

            try:
                data = parse_command(text)
                action = data.get("action")

                if action == "send":
                    await engine.send_message(data.get("content"), user.id)
                elif action == "delete":
                    await engine.delete_message(data.get("message_id"), user.id)
                else:
                    raise ValidationError(f"Unknown action: {action}")
            except LostFoundError as e:
                await websocket.send_json({"event": "error", "detail": e.message})
    except WebSocketDisconnect:
        logger.debug("Socket for room %s disconnected", room_id)
    finally:
        await engine.detach()
