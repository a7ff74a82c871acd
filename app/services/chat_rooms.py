"""
Maps a (lost report, found report) pair to its single chat room.

Clients address a room by its handle "<lost_report_id>_<found_report_id>";
the row's primary key never leaves the database.
"""

import logging
import uuid
from typing import Tuple
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from app.models.chat_room import ChatRoom
from app.models.report import Report
from app.models.user import User
from app.services.errors import ForbiddenError, InvalidRoomKey, NotFoundError, PersistenceError

logger = logging.getLogger(__name__)

SEPARATOR = "_"


def _parse_id(value) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value

    if not value:
        raise InvalidRoomKey("Missing report id")

    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise InvalidRoomKey(f"Malformed report id: {value}")


def make_room_key(lost_report_id, found_report_id) -> str:
    return f"{_parse_id(lost_report_id)}{SEPARATOR}{_parse_id(found_report_id)}"


def parse_room_key(room_key: str) -> Tuple[uuid.UUID, uuid.UUID]:
    parts = (room_key or "").split(SEPARATOR)
    if len(parts) != 2:
        raise InvalidRoomKey(f"Malformed room id: {room_key}")

    return _parse_id(parts[0]), _parse_id(parts[1])


def find_room(session: Session, lost_report_id: uuid.UUID, found_report_id: uuid.UUID):
    return session.exec(
        select(ChatRoom)
        .where(ChatRoom.lost_report_id == lost_report_id)
        .where(ChatRoom.found_report_id == found_report_id)
    ).first()


def get_room_for_user(session: Session, room_key: str, user: User) -> ChatRoom:
    lost_id, found_id = parse_room_key(room_key)

    room = find_room(session, lost_id, found_id)
    if not room:
        raise NotFoundError("Chat room not found")

    if not room.has_participant(user.id):
        raise ForbiddenError("Not a participant of this chat room")

    return room


def resolve_room(session: Session, lost_report_id, found_report_id, requesting_user: User) -> str:
    # validate before touching the database
    lost_id = _parse_id(lost_report_id)
    found_id = _parse_id(found_report_id)

    room = find_room(session, lost_id, found_id)
    if room:
        if not room.has_participant(requesting_user.id):
            raise ForbiddenError("Not a participant of this chat room")
        return room.room_key

    lost = session.get(Report, lost_id)
    found = session.get(Report, found_id)

    if not lost or not found:
        raise NotFoundError("Report not found")

    if lost.kind != "lost" or found.kind != "found":
        raise InvalidRoomKey("A room needs one lost and one found report")

    if requesting_user.id not in (lost.user_id, found.user_id):
        raise ForbiddenError("Not a participant of this match")

    room = ChatRoom(
        room_key=make_room_key(lost_id, found_id),
        lost_report_id=lost_id,
        found_report_id=found_id,
        lost_user_id=lost.user_id,
        found_user_id=found.user_id,
    )

    try:
        session.add(room)
        session.commit()
    except IntegrityError:
        # another device created the room between our check and insert
        session.rollback()
        logger.info("Chat room for %s/%s created concurrently, re-fetching", lost_id, found_id)

        room = find_room(session, lost_id, found_id)
        if room is None:
            raise PersistenceError("Could not create the chat room")
        return room.room_key

    logger.info("Created chat room %s", room.room_key)
    return make_room_key(lost_id, found_id)
