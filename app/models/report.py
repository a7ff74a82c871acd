import uuid
from typing import List
from sqlmodel import JSON, Column, Field, SQLModel
from datetime import date, datetime, timezone


class Report(SQLModel, table=True):
    __tablename__ = "reports"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Owner info
    user_id: int = Field(foreign_key="users.id", index=True)

    kind: str = Field(index=True)  # "lost" or "found"

    # Item fields
    category: str
    item_name: str
    description: str
    event_date: date
    contact_details: str
    photo_urls: List[str] = Field(default_factory=list, sa_column=Column(JSON))

    # Where it was lost / found
    latitude: float
    longitude: float

    status: str = Field(default="active", index=True)  # active/resolved/closed

    @property
    def location(self):
        return (self.latitude, self.longitude)
