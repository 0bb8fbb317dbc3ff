# tests/conftest.py
"""
Fixtures and test setup for the Pytest suite.
"""

import os

# Set test environment variables BEFORE any application code is imported.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENV"] = "test"
os.environ["RUN_TICKER"] = "false"
os.environ["API_KEY"] = "test_api_key"

import pytest
from unittest.mock import MagicMock
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from rolemailer.config import Settings
from rolemailer.boot import build_services
from rolemailer.application.rule_table import RuleTable
from rolemailer.infrastructure.db.models import Base
from rolemailer.infrastructure.db.repository import UserRepository
from rolemailer.infrastructure.db.uow import build_engine, make_session_scope


TRANSITIONS = {
    "trial": {
        "paid": {"welcome": 0, "getting_started": 3600},
    },
    "paid": {
        "cancelled": {"cancel_survey": 0, "winback": 86400},
        "trial": {"downgrade_note": 0},
    },
}

EVENTS = {
    "welcome": {
        "template_id": "welcome.html",
        "subject": "Welcome",
        "from_address": "support@example.com",
    },
    "getting_started": {
        "action": "send_message",
        "template_id": "getting_started.html",
        "subject": "Getting started",
        "from_address": "support@example.com",
        "docs_url": "https://example.com/docs",
    },
    "cancel_survey": {
        "action": "send_message_with_token",
        "one_time": True,
        "template_id": "cancel_survey.html",
        "subject": "Why did you leave?",
        "from_address": "support@example.com",
    },
    "winback": {"action": "none"},
    "downgrade_note": {"action": "ignore"},
}


class FakeClock:
    """Settable epoch-seconds clock."""

    def __init__(self, now: int = 1000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> int:
        self.now += seconds
        return self.now


@pytest.fixture
def db_engine():
    """A fresh in-memory database per test."""
    engine = build_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_scope(db_engine):
    return make_session_scope(sessionmaker(bind=db_engine, expire_on_commit=False))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(1000)


@pytest.fixture
def users(session_scope):
    """Five users, ids 1..5."""
    with session_scope() as session:
        repo = UserRepository(session)
        created = [
            repo.add(email=f"user{i}@example.com", display_name=f"User {i}", login=f"user{i}", role="trial")
            for i in range(1, 6)
        ]
        return [u.id for u in created]


@pytest.fixture
def rule_table() -> RuleTable:
    return RuleTable.from_documents(TRANSITIONS, EVENTS)


@pytest.fixture
def mock_renderer() -> MagicMock:
    renderer = MagicMock()
    renderer.render.side_effect = lambda template_id, parameters: f"<p>{template_id} for {parameters['email_address']}</p>"
    return renderer


@pytest.fixture
def mock_transport() -> MagicMock:
    return MagicMock()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        DATABASE_URL="sqlite://",
        SITE_URL="https://example.com",
        NONCE_LENGTH=32,
        DISPATCH_WORKERS=1,
        MARK_PROCESSED_ON_TRANSPORT_FAILURE=True,
    )


@pytest.fixture
def services(test_settings, session_scope, mock_renderer, mock_transport, clock, rule_table):
    """
    Builds the application services against the test database, with the
    renderer and transport mocked so no template files or SMTP are needed.
    """
    return build_services(
        settings=test_settings,
        session_scope=session_scope,
        renderer=mock_renderer,
        transport=mock_transport,
        clock=clock,
        rule_loader=lambda: rule_table,
    )


@pytest.fixture
def engine(services):
    return services["engine"]
