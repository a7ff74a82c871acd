"""
Per-room chat synchronization.

A ChatSync keeps one ordered, deduplicated message list for a room. The bulk
fetch and the live event feed both feed a single asyncio queue that one
consumer task drains, so every change to the list is applied sequentially:

    Idle -> Loading   subscribe to the room, then bulk fetch
    Loading -> Live   seed the list, then apply whatever the feed buffered
    Live -> Closed    unsubscribe, drop the list

Sends are not applied locally; the copy shown is the one the live feed
reflects back.
"""

import asyncio
import bisect
import logging
import uuid
from enum import Enum
from typing import Awaitable, Callable, List, Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from app.models.message import Message, MessageRead
from app.services.errors import AuthRequiredError, ForbiddenError, NotFoundError, PersistenceError, ValidationError
from app.services.realtime import RoomEventBus

logger = logging.getLogger(__name__)

INSERT = "insert"
DELETE = "delete"

OnChange = Callable[[str, MessageRead], Awaitable[None]]


class RoomState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    LIVE = "live"
    CLOSED = "closed"


class SqlMessageStore:
    """Message persistence for one session; publishes every committed change."""

    def __init__(self, session: Session, bus: RoomEventBus):
        self.session = session
        self.bus = bus

    async def fetch_messages(self, room_id: str) -> List[MessageRead]:
        try:
            rows = self.session.exec(
                select(Message)
                .where(Message.room_id == room_id)
                .order_by(Message.created_at.asc(), Message.id.asc())
            ).all()
        except SQLAlchemyError as e:
            logger.error("Fetching messages for %s failed: %s", room_id, e)
            raise PersistenceError("Failed to load messages")

        return [MessageRead.from_row(row) for row in rows]

    async def get_message(self, message_id) -> Optional[MessageRead]:
        row = self.session.get(Message, message_id)
        return MessageRead.from_row(row) if row else None

    async def insert_message(
        self,
        room_id: str,
        sender_id: int,
        content: str,
        type: str = "text",
        meta: Optional[dict] = None,
    ) -> MessageRead:
        row = Message(room_id=room_id, sender_id=sender_id, content=content, type=type, meta=meta)

        try:
            self.session.add(row)
            self.session.commit()
            self.session.refresh(row)
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error("Sending message to %s failed: %s", room_id, e)
            raise PersistenceError("Failed to send message")

        message = MessageRead.from_row(row)
        self.bus.publish_insert(message)
        return message

    async def delete_message(self, message_id) -> Optional[MessageRead]:
        row = self.session.get(Message, message_id)
        if row is None:
            return None

        message = MessageRead.from_row(row)

        try:
            self.session.delete(row)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error("Deleting message %s failed: %s", message_id, e)
            raise PersistenceError("Failed to delete message")

        self.bus.publish_delete(message)
        return message


class ChatSync:
    def __init__(self, room_id: str, store, bus: RoomEventBus, on_change: Optional[OnChange] = None):
        self.room_id = room_id
        self.store = store
        self.bus = bus
        self.on_change = on_change

        self._state = RoomState.IDLE
        self._messages: List[MessageRead] = []
        self._keys = []
        self._ids = set()
        # ids deleted in this room; late or repeated inserts for them are dropped
        self._deleted = set()
        self._queue: Optional[asyncio.Queue] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._handle: Optional[str] = None
        self._consumer: Optional[asyncio.Task] = None

    @property
    def state(self) -> RoomState:
        return self._state

    @property
    def messages(self) -> List[MessageRead]:
        return list(self._messages)

    async def attach(self) -> List[MessageRead]:
        if self._state != RoomState.IDLE:
            raise RuntimeError(f"Cannot attach a room in state {self._state.value}")

        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._state = RoomState.LOADING

        # subscribe first so nothing committed during the fetch is lost
        self._handle = self.bus.subscribe(self.room_id, self._on_insert, self._on_delete)

        try:
            seed = await self.store.fetch_messages(self.room_id)
        except Exception:
            await self.detach()
            raise

        if self._state == RoomState.CLOSED:
            # detached while the fetch was in flight
            return []

        for message in seed:
            self._apply(INSERT, message)

        self._state = RoomState.LIVE
        self._consumer = asyncio.create_task(self._run())

        logger.info("Attached to room %s with %d messages", self.room_id, len(self._messages))
        return self.messages

    async def detach(self) -> None:
        if self._state == RoomState.CLOSED:
            return

        self._state = RoomState.CLOSED
        self.bus.unsubscribe(self._handle)
        self._handle = None

        if self._consumer is not None:
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
            self._consumer = None

        self._messages = []
        self._keys = []
        self._ids = set()
        self._deleted = set()
        logger.info("Detached from room %s", self.room_id)

    async def settle(self) -> None:
        """Wait until every queued event has been applied."""
        if self._queue is not None and self._state == RoomState.LIVE:
            await self._queue.join()

    async def send_message(self, content: str, sender_id: Optional[int]) -> MessageRead:
        text = content.strip() if isinstance(content, str) else ""
        if not text:
            raise ValidationError("Message cannot be empty")

        if sender_id is None:
            raise AuthRequiredError("Sign in to send messages")

        return await self.store.insert_message(self.room_id, sender_id, text)

    async def send_image(self, raw_bytes: bytes, filename: str, sender_id: Optional[int], uploader) -> MessageRead:
        if sender_id is None:
            raise AuthRequiredError("Sign in to send messages")

        uploaded = uploader(raw_bytes, filename, folder=f"chat/{self.room_id}")

        return await self.store.insert_message(
            self.room_id,
            sender_id,
            uploaded["url"],
            type="image",
            meta={"width": uploaded["width"], "height": uploaded["height"], "size": uploaded["size"]},
        )

    async def delete_message(self, message_id, caller_id: int) -> None:
        try:
            message_id = uuid.UUID(str(message_id))
        except ValueError:
            raise NotFoundError("Message not found")

        message = next((m for m in self._messages if m.id == message_id), None)
        if message is None:
            message = await self.store.get_message(message_id)

        if message is None or message.room_id != self.room_id:
            raise NotFoundError("Message not found")

        if message.sender_id != caller_id:
            raise ForbiddenError("You can only delete your own messages")

        deleted = await self.store.delete_message(message_id)

        # remote delete confirmed; the echo from the feed becomes a no-op
        if deleted is not None and self._state == RoomState.LIVE:
            self._deleted.add(deleted.id)
            self._enqueue(DELETE, deleted)
            await self.settle()

    def _on_insert(self, message: MessageRead) -> None:
        self._enqueue(INSERT, message)

    def _on_delete(self, message: MessageRead) -> None:
        self._enqueue(DELETE, message)

    def _enqueue(self, kind: str, message: MessageRead) -> None:
        if self._state in (RoomState.IDLE, RoomState.CLOSED):
            return

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is self._loop:
            self._queue.put_nowait((kind, message))
        else:
            # published from another thread
            self._loop.call_soon_threadsafe(self._queue.put_nowait, (kind, message))

    async def _run(self) -> None:
        while True:
            kind, message = await self._queue.get()
            try:
                if self._apply(kind, message) and self.on_change is not None:
                    await self.on_change(kind, message)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Applying %s for message %s failed", kind, message.id)
            finally:
                self._queue.task_done()

    def _apply(self, kind: str, message: MessageRead) -> bool:
        if message.room_id != self.room_id:
            return False

        if kind == INSERT:
            if message.id in self._ids or message.id in self._deleted:
                return False

            key = message.sort_key
            index = bisect.bisect_right(self._keys, key)
            self._keys.insert(index, key)
            self._messages.insert(index, message)
            self._ids.add(message.id)
            return True

        if kind == DELETE:
            self._deleted.add(message.id)

            if message.id not in self._ids:
                # already gone
                return False

            index = next(i for i, m in enumerate(self._messages) if m.id == message.id)
            del self._messages[index]
            del self._keys[index]
            self._ids.discard(message.id)
            return True

        return False
