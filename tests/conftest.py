import os

os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-client-id")
os.environ.setdefault("DATABASE_URL", "sqlite://")

import uuid
from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel, create_engine
from sqlmodel.pool import StaticPool

from app.db.db import get_session
from app.main import app
from app.models.chat_room import ChatRoom  # noqa: F401
from app.models.message import Message  # noqa: F401
from app.models.notification import Notification  # noqa: F401
from app.models.report import Report
from app.models.user import User
from app.routers import chat as chat_router
from app.routers import reports as reports_router
from app.services.realtime import RoomEventBus, get_event_bus
from tests.helpers import fake_uploader


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def session(db_engine):
    with Session(db_engine) as session:
        yield session


@pytest.fixture
def bus():
    return RoomEventBus()


@pytest.fixture
def make_user(session):
    def _make_user(name):
        user = User(public_id=f"pid-{name}-{uuid.uuid4().hex[:6]}", name=name, email=f"{name}@example.com")
        session.add(user)
        session.commit()
        session.refresh(user)
        return user

    return _make_user


@pytest.fixture
def alice(make_user):
    return make_user("alice")


@pytest.fixture
def bob(make_user):
    return make_user("bob")


@pytest.fixture
def carol(make_user):
    return make_user("carol")


@pytest.fixture
def make_report(session):
    def _make_report(owner, kind, item_name, category="Wallet", latitude=1.0, longitude=1.0, status="active"):
        report = Report(
            user_id=owner.id,
            kind=kind,
            category=category,
            item_name=item_name,
            description=f"{kind} {item_name}",
            event_date=date(2024, 5, 1),
            contact_details=f"{owner.email}",
            photo_urls=["https://cdn.test/reports/photo.jpg"],
            latitude=latitude,
            longitude=longitude,
            status=status,
        )
        session.add(report)
        session.commit()
        session.refresh(report)
        return report

    return _make_report


@pytest.fixture
def client(session, bus):
    app.dependency_overrides[get_session] = lambda: session
    app.dependency_overrides[get_event_bus] = lambda: bus
    app.dependency_overrides[reports_router.get_uploader] = lambda: fake_uploader
    app.dependency_overrides[reports_router.get_remover] = lambda: (lambda url: None)
    app.dependency_overrides[chat_router.get_uploader] = lambda: fake_uploader

    yield TestClient(app)

    app.dependency_overrides.clear()
