from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload, sessionmaker

from examprep.core.errors import InvalidState
from examprep.models.orm import (
    Answer, AssessmentSession, BaseQuestion, QuestionVariation, SessionKind, SessionQuestion, SessionStatus
)
from examprep.schemas import (
    AlternativeView, AnswerView, QuestionView, SessionResult, SessionSummary, SessionView, TopicScore
)
from examprep.services.sessions import SessionId, letter_for, load_owned_session, summarize

UNCATEGORIZED = "Uncategorized"


def display_code(base: BaseQuestion, variation: QuestionVariation) -> Optional[str]:
    if base.display_sequence is None:
        return None
    return f"{base.display_sequence}.{variation.variation_number}"


def question_view(sq: SessionQuestion, answer: Optional[Answer], reveal: bool) -> QuestionView:
    """Project one session question. reveal=False strips every correctness hint."""
    variation = sq.variation
    base = variation.base_question
    alternatives = []
    correct_letter = None
    for alt in variation.alternatives:
        letter = letter_for(alt.order)
        if alt.is_correct and correct_letter is None:
            correct_letter = letter
        alternatives.append(AlternativeView(
            letter=letter,
            text=alt.text,
            order=alt.order,
            is_correct=alt.is_correct if reveal else None,
            explanation=alt.explanation if reveal else None,
        ))

    answer_view = None
    if answer is not None:
        answer_view = AnswerView(
            selected_answer=answer.selected_answer,
            is_correct=answer.is_correct if reveal else None,
            answered_at=answer.answered_at,
        )

    return QuestionView(
        question_order=sq.question_order,
        variation_id=variation.id,
        base_question_id=base.id,
        variation_number=variation.variation_number,
        display_code=display_code(base, variation),
        topic_id=base.topic_id,
        content=variation.content,
        explanation=variation.explanation if reveal else None,
        alternatives=alternatives,
        correct_letter=correct_letter if reveal else None,
        answer=answer_view,
    )


def topic_breakdown(questions: List[SessionQuestion], answers: Dict[int, Answer]) -> List[TopicScore]:
    """Correct/total per topic; unanswered questions count against the total."""
    scores: Dict[Optional[int], TopicScore] = {}
    for sq in questions:
        base = sq.variation.base_question
        score = scores.get(base.topic_id)
        if score is None:
            name = base.topic.name if base.topic is not None else UNCATEGORIZED
            score = scores[base.topic_id] = TopicScore(topic_id=base.topic_id, topic_name=name, correct=0, total=0)
        score.total += 1
        answer = answers.get(sq.variation_id)
        if answer is not None and answer.is_correct:
            score.correct += 1
    return sorted(scores.values(), key=lambda s: s.topic_name)


class ResultProjector:
    """Read side: results of completed sessions and in-progress views."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def get_results(self, session_id: SessionId, user_id: str) -> SessionResult:
        with self.session_factory() as db:
            session = load_owned_session(db, session_id, user_id)
            if session.status != SessionStatus.COMPLETED:
                raise InvalidState(
                    "Results are only available for completed sessions",
                    {"session_id": str(session.id), "status": session.status.value},
                )
            questions = self._questions(db, session)
            answers = self._answers(db, session)
            views = [question_view(sq, answers.get(sq.variation_id), reveal=True) for sq in questions]
            answered = sum(1 for sq in questions if sq.variation_id in answers)
            return SessionResult(
                session=summarize(session, [sq.variation_id for sq in questions]),
                questions=views,
                answered=answered,
                unanswered=len(questions) - answered,
                topic_breakdown=topic_breakdown(questions, answers),
            )

    def get_session(self, session_id: SessionId, user_id: str) -> SessionView:
        with self.session_factory() as db:
            session = load_owned_session(db, session_id, user_id)
            questions = self._questions(db, session)
            answers = self._answers(db, session)
            return SessionView(
                session=summarize(session, [sq.variation_id for sq in questions]),
                questions=[question_view(sq, answers.get(sq.variation_id), reveal=False) for sq in questions],
                answered=sum(1 for sq in questions if sq.variation_id in answers),
            )

    def list_sessions(self, user_id: str, kind: Optional[SessionKind] = None) -> List[SessionSummary]:
        stmt = (
            select(AssessmentSession)
            .options(selectinload(AssessmentSession.questions))
            .where(AssessmentSession.user_id == user_id)
            .order_by(AssessmentSession.started_at.desc())
        )
        if kind is not None:
            stmt = stmt.where(AssessmentSession.kind == kind)
        with self.session_factory() as db:
            return [summarize(s) for s in db.scalars(stmt).all()]

    def _questions(self, db: Session, session: AssessmentSession) -> List[SessionQuestion]:
        stmt = (
            select(SessionQuestion)
            .options(
                selectinload(SessionQuestion.variation).selectinload(QuestionVariation.alternatives),
                selectinload(SessionQuestion.variation)
                .selectinload(QuestionVariation.base_question)
                .selectinload(BaseQuestion.topic),
            )
            .where(SessionQuestion.session_id == session.id)
            .order_by(SessionQuestion.question_order)
        )
        return list(db.scalars(stmt).all())

    def _answers(self, db: Session, session: AssessmentSession) -> Dict[int, Answer]:
        rows = db.scalars(select(Answer).where(Answer.session_id == session.id)).all()
        return {a.variation_id: a for a in rows}
