from typing import Optional
import uuid
from sqlmodel import Field, SQLModel, UniqueConstraint
from datetime import datetime, timezone

class Notification(SQLModel, table=True):
    __tablename__ = "notifications"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Ownership
    user_id: int = Field(foreign_key="users.id", index=True)

    # Notification fields
    type: str = Field(index=True) # values: "match", "update", "info", "success"

    title: str
    message: str

    # Related reports
    lost_report_id: Optional[uuid.UUID] = Field(default=None, foreign_key="reports.id", index=True)
    found_report_id: Optional[uuid.UUID] = Field(default=None, foreign_key="reports.id", index=True)

    is_read: bool = Field(default=False)

    __table_args__ = (
        # One match notification per recipient and report pair
        UniqueConstraint(
            "user_id",
            "type",
            "lost_report_id",
            "found_report_id",
            name="uq_user_notification_pair",
        ),
    )
