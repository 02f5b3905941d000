import logging
from datetime import timedelta

from rq import Queue, get_current_job

from examprep.core.config import Settings
from examprep.core.database import build_engine, build_session_factory
from examprep.models.orm import utcnow
from examprep.schemas import HousekeepingResult
from examprep.services.sessions import SessionManager

logger = logging.getLogger(__name__)


def abandon_stale_sessions_job(database_url: str, stale_hours: int) -> dict:
    """Abandon sessions left IN_PROGRESS for longer than stale_hours."""
    job = get_current_job()
    if job is not None:
        job.meta.update({"state": "running", "stale_hours": stale_hours}); job.save_meta()

    settings = Settings(DATABASE_URL=database_url, CACHE_INVALIDATION_ENABLED=False, NOTIFICATIONS_ENABLED=False)
    engine = build_engine(settings)
    try:
        now = utcnow()
        older_than = timedelta(hours=stale_hours)
        cutoff = now - older_than
        manager = SessionManager(build_session_factory(engine), clock=lambda: now)
        abandoned = manager.abandon_stale(older_than)
    except Exception:
        if job is not None:
            job.meta.update({"state": "failed"}); job.save_meta()
        logger.exception("Housekeeping failed")
        raise
    finally:
        engine.dispose()

    result = HousekeepingResult(abandoned=abandoned, cutoff=cutoff)
    if job is not None:
        job.meta.update({"state": "done", "abandoned": abandoned}); job.save_meta()
    logger.info("Housekeeping abandoned %d stale sessions", abandoned)
    return result.model_dump(mode="json")


def enqueue_housekeeping(queue: Queue, settings: Settings):
    return queue.enqueue(
        abandon_stale_sessions_job,
        settings.DATABASE_URL,
        settings.SESSION_STALE_HOURS,
        job_timeout=settings.HOUSEKEEPING_JOB_TIMEOUT,
    )
