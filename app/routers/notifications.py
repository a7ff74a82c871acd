from fastapi import APIRouter, Depends
from sqlmodel import Session

from app.db.db import get_session
from app.models.user import User
from app.services import notifications as feed
from app.utils.auth_helper import get_current_db_user


router = APIRouter()

@router.get("/")
async def get_my_notifications(
    limit: int = 20,
    unread_only: bool = False,
    session: Session = Depends(get_session),
    user: User = Depends(get_current_db_user),
):
    notifications = feed.list_for_user(session, user.id, limit=limit, unread_only=unread_only)

    items = []
    for notif in notifications:
        data = notif.model_dump(mode="json")
        data["time_ago"] = feed.relative_time(notif.created_at)
        items.append(data)

    return {"notifications": items}

@router.get("/count")
async def get_unread_notifications_count(
    session: Session = Depends(get_session),
    user: User = Depends(get_current_db_user),
):
    return { "count": feed.unread_count(session, user.id) }

@router.post("/mark-all-read")
async def mark_all_notifications_read(
    session: Session = Depends(get_session),
    user: User = Depends(get_current_db_user),
):
    feed.mark_all_read(session, user.id)
    return {"ok": True}

@router.post("/{id}/mark-read")
async def mark_notification_read(
    id: str,
    session: Session = Depends(get_session),
    user: User = Depends(get_current_db_user),
):
    feed.mark_read(session, id, user.id)
    return {"ok": True}

@router.post("/{id}/open-chat")
async def open_chat_for_notification(
    id: str,
    session: Session = Depends(get_session),
    user: User = Depends(get_current_db_user),
):
    return {"room_id": feed.open_match_chat(session, id, user)}

@router.delete("/{id}")
async def delete_notification(
    id: str,
    session: Session = Depends(get_session),
    user: User = Depends(get_current_db_user),
):
    feed.delete(session, id, user.id)
    return {"ok": True}
