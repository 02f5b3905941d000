from datetime import timedelta

from sqlalchemy import select

from examprep.core.config import Settings
from examprep.core.database import build_engine, build_session_factory, init_db
from examprep.jobs.housekeeping import abandon_stale_sessions_job, enqueue_housekeeping
from examprep.models.orm import AssessmentSession, SessionKind, SessionStatus, utcnow

from conftest import CatalogBuilder


class RecordingQueue:
    def __init__(self):
        self.calls = []

    def enqueue(self, func, *args, **kwargs):
        self.calls.append((func, args, kwargs))
        return "job-1"


def test_job_abandons_sessions_older_than_threshold(tmp_path):
    url = f"sqlite:///{tmp_path / 'housekeeping.db'}"
    engine = build_engine(Settings(DATABASE_URL=url))
    init_db(engine)
    factory = build_session_factory(engine)
    with factory() as s:
        builder = CatalogBuilder(s)
        purchase = builder.purchase(builder.package(SessionKind.CONTROL, session_qty=2))
        for hours_ago in (30, 2):
            s.add(AssessmentSession(
                user_id="user-1",
                purchase_id=purchase.id,
                kind=SessionKind.CONTROL,
                status=SessionStatus.IN_PROGRESS,
                total_questions=15,
                started_at=utcnow() - timedelta(hours=hours_ago),
            ))
        builder.commit()

    result = abandon_stale_sessions_job(url, 24)

    assert result["abandoned"] == 1
    with factory() as s:
        statuses = sorted(st.value for st in s.scalars(select(AssessmentSession.status)).all())
    assert statuses == ["abandoned", "in_progress"]
    engine.dispose()


def test_enqueue_housekeeping_passes_settings(settings):
    queue = RecordingQueue()
    enqueue_housekeeping(queue, settings)

    func, args, kwargs = queue.calls[0]
    assert func is abandon_stale_sessions_job
    assert args == (settings.DATABASE_URL, settings.SESSION_STALE_HOURS)
    assert kwargs == {"job_timeout": settings.HOUSEKEEPING_JOB_TIMEOUT}
