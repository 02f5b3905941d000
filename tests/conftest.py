import fnmatch
import random
from datetime import datetime, timedelta

import pytest
import redis

from examprep.core.config import Settings
from examprep.core.database import build_engine, build_session_factory, init_db
from examprep.models.orm import (
    Alternative, BaseQuestion, Package, Purchase, PurchaseStatus, QuestionVariation,
    QUESTIONS_PER_KIND, SessionKind, Specialty, Topic,
)
from examprep.services.sessions import SessionManager

LETTERS = ("Alpha", "Bravo", "Charlie", "Delta")


class FakeClock:
    def __init__(self, start=datetime(2024, 3, 1, 9, 0, 0)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class FakeRedis:
    """Records publish/scan_iter/delete; fail=True raises like a dead server."""

    def __init__(self, keys=(), fail=False):
        self.store = set(keys)
        self.published = []
        self.fail = fail

    def publish(self, channel, message):
        if self.fail:
            raise redis.ConnectionError("connection refused")
        self.published.append((channel, message))
        return 1

    def scan_iter(self, match=None, count=None):
        if self.fail:
            raise redis.ConnectionError("connection refused")
        for key in sorted(self.store):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    def delete(self, *keys):
        removed = self.store & set(keys)
        self.store -= removed
        return len(removed)


class CatalogBuilder:
    """Seeds content and entitlements. Call commit() before using the engine."""

    def __init__(self, db):
        self.db = db
        self._sequence = 0

    def specialty(self, name):
        s = Specialty(name=name)
        self.db.add(s); self.db.flush()
        return s

    def topic(self, name, weight=None, specialty=None):
        t = Topic(name=name, weight_percentage=weight, specialty_id=specialty.id if specialty else None)
        self.db.add(t); self.db.flush()
        return t

    def question(self, topic=None, variations=1, version=1, visible=True, correct_order=0, active=True):
        self._sequence += 1
        base = BaseQuestion(
            topic_id=topic.id if topic else None, display_sequence=self._sequence, is_active=active
        )
        self.db.add(base); self.db.flush()
        for number in range(1, variations + 1):
            self.variation(base, number, version=version, visible=visible, correct_order=correct_order)
        return base

    def questions(self, count, topic=None, **kwargs):
        return [self.question(topic, **kwargs) for _ in range(count)]

    def variation(self, base, number, version=1, visible=True, correct_order=0, texts=LETTERS):
        v = QuestionVariation(
            base_question_id=base.id,
            variation_number=number,
            version=version,
            is_visible=visible,
            content=f"Question {base.display_sequence}.{number} v{version}",
            explanation="Because.",
        )
        v.alternatives = [
            Alternative(text=text, order=i, is_correct=(i == correct_order), explanation=f"{text} note")
            for i, text in enumerate(texts)
        ]
        self.db.add(v); self.db.flush()
        return v

    def package(self, kind=SessionKind.CONTROL, session_qty=1, total_questions=None, active=True):
        p = Package(
            name=f"{kind.value} x{session_qty}",
            price=10,
            kind=kind,
            session_qty=session_qty,
            total_questions=total_questions or QUESTIONS_PER_KIND[kind],
            is_active=active,
        )
        self.db.add(p); self.db.flush()
        return p

    def purchase(self, package, user_id="user-1", used=0, status=PurchaseStatus.ACTIVE):
        p = Purchase(
            user_id=user_id,
            package_id=package.id,
            sessions_total=package.session_qty,
            sessions_used=used,
            status=status,
            version=0,
        )
        self.db.add(p); self.db.flush()
        return p

    def commit(self):
        self.db.commit()


@pytest.fixture
def settings():
    return Settings(
        DATABASE_URL="sqlite://",
        ENVIRONMENT="testing",
        CACHE_INVALIDATION_ENABLED=False,
        NOTIFICATIONS_ENABLED=False,
        LOG_FORMAT="text",
    )


@pytest.fixture
def engine(settings):
    engine = build_engine(settings)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def db(factory):
    session = factory()
    yield session
    session.close()


@pytest.fixture
def catalog(db):
    return CatalogBuilder(db)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def manager(factory, clock):
    return SessionManager(factory, rng=random.Random(7), clock=clock)
