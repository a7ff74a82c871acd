import uuid
from sqlmodel import Field, SQLModel, UniqueConstraint
from datetime import datetime, timezone


class ChatRoom(SQLModel, table=True):
    __tablename__ = "chat_rooms"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Handle used by clients and messages: "<lost_report_id>_<found_report_id>"
    room_key: str = Field(index=True, unique=True)

    # Linked reports
    lost_report_id: uuid.UUID = Field(foreign_key="reports.id", index=True)
    found_report_id: uuid.UUID = Field(foreign_key="reports.id", index=True)

    # Participants
    lost_user_id: int = Field(foreign_key="users.id")
    found_user_id: int = Field(foreign_key="users.id")

    __table_args__ = (
        UniqueConstraint(
            "lost_report_id",
            "found_report_id",
            name="uq_chat_room_pair",
        ),
    )

    def has_participant(self, user_id: int) -> bool:
        return user_id in (self.lost_user_id, self.found_user_id)
