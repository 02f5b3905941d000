from dataclasses import dataclass
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from examprep.models.orm import BaseQuestion, QuestionVariation, Topic


@dataclass(frozen=True)
class CatalogEntry:
    """One versioned variation as seen by the sampler."""
    variation_id: int
    base_question_id: int
    variation_number: int
    version: int
    is_visible: bool
    topic_id: Optional[int]

    @property
    def slot(self) -> tuple:
        return (self.base_question_id, self.variation_number)


class QuestionCatalog:
    """Read-only view over the question bank."""

    def __init__(self, db: Session):
        self.db = db

    def list_eligible_variations(
        self,
        topic_id: Optional[int] = None,
        specialty_id: Optional[int] = None,
    ) -> List[CatalogEntry]:
        """Every version of every variation under an active base question.

        Hidden versions are returned too (flagged), so callers can tell when the
        newest version of a slot has been withdrawn.
        """
        stmt = (
            select(
                QuestionVariation.id,
                QuestionVariation.base_question_id,
                QuestionVariation.variation_number,
                QuestionVariation.version,
                QuestionVariation.is_visible,
                BaseQuestion.topic_id,
            )
            .join(BaseQuestion, BaseQuestion.id == QuestionVariation.base_question_id)
            .where(BaseQuestion.is_active.is_(True))
            .order_by(BaseQuestion.display_sequence, QuestionVariation.base_question_id, QuestionVariation.variation_number)
        )
        if topic_id is not None:
            stmt = stmt.where(BaseQuestion.topic_id == topic_id)
        if specialty_id is not None:
            stmt = stmt.join(Topic, Topic.id == BaseQuestion.topic_id).where(Topic.specialty_id == specialty_id)
        rows = self.db.execute(stmt).all()
        return [
            CatalogEntry(
                variation_id=r[0], base_question_id=r[1], variation_number=r[2],
                version=r[3], is_visible=bool(r[4]), topic_id=r[5],
            )
            for r in rows
        ]

    def topic_weights(self) -> Dict[int, float]:
        """Topics that carry a mock-exam weight, keyed by topic id."""
        rows = self.db.execute(
            select(Topic.id, Topic.weight_percentage).where(Topic.weight_percentage.is_not(None))
        ).all()
        return {r[0]: float(r[1]) for r in rows}
