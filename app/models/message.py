from typing import Optional
from pydantic import BaseModel, field_validator
import uuid
from sqlmodel import JSON, Column, Field, SQLModel
from datetime import datetime, timezone


class Message(SQLModel, table=True):
    __tablename__ = "messages"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), index=True)

    room_id: str = Field(index=True)  # ChatRoom.room_key
    sender_id: int = Field(foreign_key="users.id")

    content: str
    type: str = Field(default="text")  # "text" or "image"

    # image width/height/size; "metadata" is reserved on SQLModel classes
    meta: Optional[dict] = Field(default=None, sa_column=Column("metadata", JSON))


class MessageRead(BaseModel):
    """Detached copy of a message row, as carried by live events."""

    id: uuid.UUID
    room_id: str
    sender_id: int
    content: str
    type: str = "text"
    metadata: Optional[dict] = None
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        # sqlite hands back naive datetimes
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @classmethod
    def from_row(cls, row: Message) -> "MessageRead":
        return cls(
            id=row.id,
            room_id=row.room_id,
            sender_id=row.sender_id,
            content=row.content,
            type=row.type,
            metadata=row.meta,
            created_at=row.created_at,
        )

    @property
    def sort_key(self):
        return (self.created_at, str(self.id))
