import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, func, select

from app.models.notification import Notification
from app.models.user import User
from app.services.chat_rooms import resolve_room
from app.services.errors import NotFoundError, PersistenceError, ValidationError

logger = logging.getLogger(__name__)


def relative_time(created_at: datetime, now: Optional[datetime] = None) -> str:
    """Bucket an age into "Nm ago", "Nh ago" or "Nd ago"."""
    now = now or datetime.now(timezone.utc)

    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)

    minutes = max(int((now - created_at).total_seconds() // 60), 0)
    if minutes < 60:
        return f"{minutes}m ago"

    hours = minutes // 60
    if hours < 24:
        return f"{hours}h ago"

    return f"{hours // 24}d ago"


def list_for_user(session: Session, user_id: int, limit: Optional[int] = None, unread_only: bool = False) -> List[Notification]:
    query = (
        select(Notification)
        .where(Notification.user_id == user_id)
        .order_by(Notification.created_at.desc())
    )

    if unread_only:
        query = query.where(Notification.is_read == False)  # noqa: E712

    if limit is not None:
        query = query.limit(limit)

    return session.exec(query).all()


def unread_count(session: Session, user_id: int) -> int:
    return session.exec(
        select(func.count(Notification.id))
        .where(Notification.user_id == user_id)
        .where(Notification.is_read == False)  # noqa: E712
    ).one()


def get_for_user(session: Session, notification_id, user_id: int) -> Notification:
    try:
        notification_id = uuid.UUID(str(notification_id))
    except ValueError:
        raise NotFoundError("Notification not found")

    notif = session.exec(
        select(Notification)
        .where(Notification.id == notification_id)
        .where(Notification.user_id == user_id)
    ).first()

    if not notif:
        raise NotFoundError("Notification not found")

    return notif


def mark_read(session: Session, notification_id, user_id: int) -> Notification:
    notif = get_for_user(session, notification_id, user_id)

    notif.is_read = True
    _commit(session, notif)

    return notif


def mark_all_read(session: Session, user_id: int) -> int:
    notifications = list_for_user(session, user_id, unread_only=True)

    for notif in notifications:
        notif.is_read = True
        session.add(notif)

    _commit(session)
    return len(notifications)


def delete(session: Session, notification_id, user_id: int) -> None:
    notif = get_for_user(session, notification_id, user_id)

    try:
        session.delete(notif)
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.error("Deleting notification %s failed: %s", notif.id, e)
        raise PersistenceError("Could not delete the notification")


def open_match_chat(session: Session, notification_id, user: User) -> str:
    """Acting on a match notification opens (or creates) its chat room."""
    notif = get_for_user(session, notification_id, user.id)

    if notif.type != "match" or not notif.lost_report_id or not notif.found_report_id:
        raise ValidationError("Only match notifications open a chat")

    room_id = resolve_room(session, notif.lost_report_id, notif.found_report_id, user)

    if not notif.is_read:
        notif.is_read = True
        _commit(session, notif)

    return room_id


def _commit(session: Session, instance=None):
    try:
        if instance is not None:
            session.add(instance)
        session.commit()
        if instance is not None:
            session.refresh(instance)
    except SQLAlchemyError as e:
        session.rollback()
        logger.error("Notification update failed: %s", e)
        raise PersistenceError("Could not update notifications")
