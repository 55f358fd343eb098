"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from laurel.database.models import Base
from laurel.services.dispatch import InlineDispatcher
from laurel.services.hooks import RewardHooks, build_hooks
from laurel.services.template_service import create_reward_template


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all Laurel tables.

    Uses StaticPool so every session shares the same in-memory database.
    """
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a transactional session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


@pytest.fixture
def engine(db_engine):
    """Re-use the shared db_engine (SQLite, StaticPool)."""
    return db_engine


@pytest.fixture
def notifier():
    """A mock Notifier that records every send()."""
    mock_notifier = MagicMock()
    mock_notifier.send.return_value = []
    return mock_notifier


@pytest.fixture
def badge_evaluator():
    """A mock BadgeEvaluator that accepts every award."""
    evaluator = MagicMock()
    evaluator.award_badge_directly.return_value = True
    evaluator.check_and_award_eligible_badges.return_value = None
    return evaluator


@pytest.fixture
def hooks(notifier, badge_evaluator) -> RewardHooks:
    """Side-effect hooks that run inline against the mocks."""
    return build_hooks(
        notifier=notifier,
        badge_evaluator=badge_evaluator,
        dispatcher=InlineDispatcher(),
    )


@pytest.fixture
def sent_events(notifier):
    """Callable returning the event names sent so far, in call order."""
    return lambda: [c.kwargs["event"] for c in notifier.send.call_args_list]


@pytest.fixture
def make_reward(engine):
    """Factory: create a reward template with the given tasks."""

    def _make(name: str = "Reward", tasks=None, **fields):
        if tasks is None:
            tasks = [{"title": "Do the thing", "action_type": "custom", "target_value": 1}]
        return create_reward_template(engine, name=name, tasks=tasks, **fields)

    return _make
