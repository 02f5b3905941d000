# =====================================================
# Session lifecycle: start, answer, complete, abandon
# =====================================================
import logging
import random
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Protocol, Union

from sqlalchemy import func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session, sessionmaker
from tenacity import Retrying, before_sleep_log, retry_if_exception_type, stop_after_attempt

from examprep.core.cache import build_progress_cache
from examprep.core.config import Settings
from examprep.core.database import build_engine, build_session_factory
from examprep.core.errors import Conflict, InvalidState, NotFound, StaleEntitlement, Unauthorized
from examprep.models.orm import (
    Alternative, Answer, AssessmentSession, SessionKind, SessionQuestion, SessionStatus, utcnow
)
from examprep.schemas import (
    AnswerOutcome, MatchKind, PackageOut, PurchaseOut, SessionSummary
)
from examprep.services.catalog import QuestionCatalog
from examprep.services.ledger import EntitlementLedger, as_uuid
from examprep.services.notifications import build_notifier
from examprep.services.sampler import StratifiedSampler, round_half_up

logger = logging.getLogger(__name__)

SessionId = Union[str, uuid.UUID]


class Notifier(Protocol):
    def session_completed(self, user_id: str, payload: Dict[str, Any]) -> Any: ...


class CacheInvalidator(Protocol):
    def invalidate_user(self, user_id: str) -> Any: ...


def letter_for(order: int) -> str:
    return chr(ord("A") + order)


def match_answer(selected_answer: str, correct: Alternative) -> MatchKind:
    """Which form of the correct alternative the submission matches.

    Text is checked before the letter label. An alternative whose text is
    itself a letter ("B") can therefore match by text while a different letter
    is its label.
    """
    if selected_answer == correct.text:
        return "text"
    if selected_answer == letter_for(correct.order):
        return "letter"
    return "none"


def score_for(correct_answers: int, total_questions: int) -> int:
    if total_questions <= 0:
        return 0
    return round_half_up(correct_answers * 100 / total_questions)


def upsert_answer(
    db: Session,
    session_id: uuid.UUID,
    variation_id: int,
    selected_answer: str,
    is_correct: bool,
    answered_at: datetime,
) -> None:
    """INSERT ... ON CONFLICT (session_id, variation_id) DO UPDATE."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        insert = postgresql.insert
    elif dialect == "sqlite":
        insert = sqlite.insert
    else:
        raise NotImplementedError(f"Answer upsert is not supported on {dialect}")
    stmt = insert(Answer).values(
        session_id=session_id,
        variation_id=variation_id,
        selected_answer=selected_answer,
        is_correct=is_correct,
        answered_at=answered_at,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["session_id", "variation_id"],
        set_={
            "selected_answer": stmt.excluded.selected_answer,
            "is_correct": stmt.excluded.is_correct,
            "answered_at": stmt.excluded.answered_at,
        },
    )
    db.execute(stmt)


def summarize(session: AssessmentSession, variation_ids: Optional[List[int]] = None) -> SessionSummary:
    if variation_ids is None:
        variation_ids = [q.variation_id for q in session.questions]
    return SessionSummary(
        id=session.id,
        user_id=session.user_id,
        purchase_id=session.purchase_id,
        kind=session.kind,
        status=session.status,
        total_questions=session.total_questions,
        correct_answers=session.correct_answers,
        score=session.score,
        started_at=session.started_at,
        completed_at=session.completed_at,
        time_spent_secs=session.time_spent_secs,
        variation_ids=variation_ids,
    )


def load_owned_session(db: Session, session_id: SessionId, user_id: str, lock: Optional[str] = None) -> AssessmentSession:
    """Fetch a session and check ownership. lock: None, "share" or "update"."""
    sid = as_uuid(session_id, "Session")
    stmt = select(AssessmentSession).where(AssessmentSession.id == sid)
    if lock == "update":
        stmt = stmt.with_for_update()
    elif lock == "share":
        stmt = stmt.with_for_update(read=True)
    session = db.scalar(stmt.execution_options(populate_existing=True))
    if session is None:
        raise NotFound("Session not found", {"session_id": str(sid)})
    if session.user_id != user_id:
        raise Unauthorized("Session belongs to another user", {"session_id": str(sid)})
    return session


class SessionManager:
    """Owns the session state machine: IN_PROGRESS -> COMPLETED | ABANDONED."""

    def __init__(
        self,
        session_factory: sessionmaker,
        notifier: Optional[Notifier] = None,
        cache: Optional[CacheInvalidator] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = utcnow,
        max_quota_retries: int = 3,
    ):
        self.session_factory = session_factory
        self.notifier = notifier
        self.cache = cache
        self.rng = rng or random.Random()
        self.clock = clock
        self.max_quota_retries = max(1, max_quota_retries)

    @classmethod
    def from_settings(cls, settings: Settings, session_factory: Optional[sessionmaker] = None) -> "SessionManager":
        if session_factory is None:
            session_factory = build_session_factory(build_engine(settings))
        return cls(
            session_factory,
            notifier=build_notifier(settings),
            cache=build_progress_cache(settings),
            max_quota_retries=settings.QUOTA_MAX_RETRIES,
        )

    # ---------- Ledger read-throughs ----------

    def list_packages(self, kind: Optional[SessionKind] = None) -> List[PackageOut]:
        with self.session_factory() as db:
            return [PackageOut.model_validate(p) for p in EntitlementLedger(db).list_packages(kind)]

    def list_purchases(self, user_id: str) -> List[PurchaseOut]:
        with self.session_factory() as db:
            return [PurchaseOut.model_validate(p) for p in EntitlementLedger(db).list_purchases(user_id)]

    def grant_purchase(self, user_id: str, package_id: int, payment_id: Optional[str] = None) -> PurchaseOut:
        with self.session_factory.begin() as db:
            purchase = EntitlementLedger(db).grant_purchase(user_id, package_id, payment_id)
            out = PurchaseOut.model_validate(purchase)
        self._invalidate(user_id)
        return out

    # ---------- Lifecycle ----------

    def start(self, user_id: str, purchase_id: SessionId, specialty_id: Optional[int] = None) -> SessionSummary:
        """Create a session against a purchase and consume one entitlement."""
        try:
            for attempt in Retrying(
                stop=stop_after_attempt(self.max_quota_retries),
                retry=retry_if_exception_type(StaleEntitlement),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True,
            ):
                with attempt:
                    summary = self._start_once(user_id, purchase_id, specialty_id)
        except StaleEntitlement as e:
            logger.error("Gave up starting session on purchase %s after %d attempts", e.purchase_id, self.max_quota_retries)
            raise Conflict(
                "Purchase was modified concurrently, please retry",
                {"purchase_id": str(e.purchase_id)},
            ) from e

        logger.info(
            "Session %s (%s, %d questions) started for user %s",
            summary.id, summary.kind.value, summary.total_questions, user_id,
        )
        self._invalidate(user_id)
        return summary

    def _start_once(self, user_id: str, purchase_id: SessionId, specialty_id: Optional[int]) -> SessionSummary:
        with self.session_factory.begin() as db:
            ledger = EntitlementLedger(db)
            purchase = ledger.lock_purchase(purchase_id)
            ledger.ensure_available(purchase, user_id)
            package = purchase.package

            catalog = QuestionCatalog(db)
            weights = catalog.topic_weights() if package.kind == SessionKind.MOCK_EXAM else None
            selection = StratifiedSampler(catalog, self.rng).plan(
                package.total_questions, weights, specialty_id=specialty_id
            )

            session = AssessmentSession(
                user_id=user_id,
                purchase_id=purchase.id,
                kind=package.kind,
                status=SessionStatus.IN_PROGRESS,
                total_questions=package.total_questions,
                started_at=self.clock(),
            )
            session.questions = [
                SessionQuestion(variation_id=vid, question_order=i)
                for i, vid in enumerate(selection.variation_ids, start=1)
            ]
            db.add(session)
            db.flush()

            ledger.consume(purchase)
            return summarize(session, selection.variation_ids)

    def answer(self, session_id: SessionId, user_id: str, variation_id: int, selected_answer: str) -> AnswerOutcome:
        """Record (or overwrite) the caller's answer to one question."""
        with self.session_factory.begin() as db:
            session = load_owned_session(db, session_id, user_id, lock="share")
            if session.status != SessionStatus.IN_PROGRESS:
                raise InvalidState(
                    "Session is no longer accepting answers",
                    {"session_id": str(session.id), "status": session.status.value},
                )

            in_session = db.scalar(
                select(SessionQuestion.id).where(
                    SessionQuestion.session_id == session.id,
                    SessionQuestion.variation_id == variation_id,
                )
            )
            if in_session is None:
                raise NotFound(
                    "Question is not part of this session",
                    {"session_id": str(session.id), "variation_id": variation_id},
                )

            correct = db.scalar(
                select(Alternative)
                .where(Alternative.variation_id == variation_id, Alternative.is_correct.is_(True))
                .order_by(Alternative.order)
                .limit(1)
            )
            if correct is None:
                raise NotFound("Question has no correct alternative", {"variation_id": variation_id})

            match = match_answer(selected_answer, correct)
            if match == "letter":
                logger.debug("Answer for variation %s matched by letter label", variation_id)
            upsert_answer(db, session.id, variation_id, selected_answer, match != "none", self.clock())

            return AnswerOutcome(
                session_id=session.id,
                variation_id=variation_id,
                is_correct=match != "none",
                match=match,
            )

    def complete(self, session_id: SessionId, user_id: str) -> SessionSummary:
        """Score the session. Completing twice returns the stored result."""
        with self.session_factory.begin() as db:
            session = load_owned_session(db, session_id, user_id, lock="update")
            if session.status == SessionStatus.COMPLETED:
                return summarize(session)
            if session.status != SessionStatus.IN_PROGRESS:
                raise InvalidState(
                    "Session cannot be completed",
                    {"session_id": str(session.id), "status": session.status.value},
                )

            correct = db.scalar(
                select(func.count(Answer.id)).where(
                    Answer.session_id == session.id, Answer.is_correct.is_(True)
                )
            ) or 0
            now = self.clock()
            session.correct_answers = correct
            session.score = score_for(correct, session.total_questions)
            session.time_spent_secs = max(0, int((now - session.started_at).total_seconds()))
            session.status = SessionStatus.COMPLETED
            session.completed_at = now
            db.flush()
            summary = summarize(session)

        logger.info(
            "Session %s completed: %d/%d correct, score %d",
            summary.id, summary.correct_answers, summary.total_questions, summary.score,
        )
        self._notify_completed(summary)
        self._invalidate(user_id)
        return summary

    def abandon_stale(self, older_than: timedelta) -> int:
        """Move sessions left IN_PROGRESS since before now - older_than to ABANDONED."""
        cutoff = self.clock() - older_than
        with self.session_factory.begin() as db:
            result = db.execute(
                update(AssessmentSession)
                .where(
                    AssessmentSession.status == SessionStatus.IN_PROGRESS,
                    AssessmentSession.started_at < cutoff,
                )
                .values(status=SessionStatus.ABANDONED)
                .execution_options(synchronize_session=False)
            )
            abandoned = result.rowcount or 0
        if abandoned:
            logger.info("Abandoned %d sessions started before %s", abandoned, cutoff.isoformat())
        return abandoned

    # ---------- Best-effort side effects ----------

    def _notify_completed(self, summary: SessionSummary) -> None:
        if self.notifier is None:
            return
        payload = {
            "type": summary.kind.value,
            "session_id": str(summary.id),
            "score": summary.score,
            "correct_answers": summary.correct_answers,
            "total_questions": summary.total_questions,
        }
        try:
            self.notifier.session_completed(summary.user_id, payload)
        except Exception:
            logger.exception("Completion notification failed for session %s", summary.id)

    def _invalidate(self, user_id: str) -> None:
        if self.cache is None:
            return
        try:
            self.cache.invalidate_user(user_id)
        except Exception:
            logger.exception("Cache invalidation failed for user %s", user_id)
