import logging
from collections import Counter
from typing import Mapping, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from examprep.core.errors import InvalidInput, NotFound
from examprep.models.orm import Topic
from examprep.schemas import TopicWeightReport, TopicWeightRow, TopicWeightSummary
from examprep.services.catalog import QuestionCatalog
from examprep.services.sampler import latest_versions

logger = logging.getLogger(__name__)

# Weights count as summing to 100 within this tolerance
WEIGHT_TOLERANCE = 0.5


def validate_weight(topic_id: int, pct: Optional[float]) -> Optional[float]:
    if pct is None:
        return None
    try:
        value = float(pct)
    except (TypeError, ValueError):
        raise InvalidInput("Weight must be a number", {"topic_id": topic_id, "weight_percentage": pct})
    if value < 0 or value > 100:
        raise InvalidInput("Weight must be between 0 and 100", {"topic_id": topic_id, "weight_percentage": value})
    return value


class TopicWeights:
    """Admin view of mock-exam topic weights."""

    def __init__(self, db: Session):
        self.db = db

    def report(self) -> TopicWeightReport:
        topics = self.db.scalars(
            select(Topic).options(selectinload(Topic.specialty)).order_by(Topic.name, Topic.id)
        ).all()
        eligible = Counter(e.topic_id for e in latest_versions(QuestionCatalog(self.db).list_eligible_variations()))

        rows = [
            TopicWeightRow(
                id=t.id,
                name=t.name,
                specialty_id=t.specialty_id,
                specialty_name=t.specialty.name if t.specialty is not None else None,
                weight_percentage=t.weight_percentage,
                question_count=eligible.get(t.id, 0),
            )
            for t in topics
        ]
        rows.sort(key=lambda r: (r.specialty_name or "", r.name))

        weighted = [r.weight_percentage for r in rows if r.weight_percentage is not None]
        total_pct = round(sum(weighted), 2)
        return TopicWeightReport(
            topics=rows,
            summary=TopicWeightSummary(
                total=len(rows),
                with_percentage=len(weighted),
                total_percentage=total_pct,
                is_valid=abs(total_pct - 100) < WEIGHT_TOLERANCE,
            ),
        )

    def set_weight(self, topic_id: int, pct: Optional[float]) -> Topic:
        """Set or clear (pct=None) one topic's weight."""
        value = validate_weight(topic_id, pct)
        topic = self.db.get(Topic, topic_id)
        if topic is None:
            raise NotFound("Topic not found", {"topic_id": topic_id})
        topic.weight_percentage = value
        self.db.flush()
        logger.info("Topic %s weight set to %s", topic_id, value)
        return topic

    def bulk_update(self, weights: Mapping[int, Optional[float]]) -> TopicWeightReport:
        """Apply several weights at once. Nothing is written if any entry is invalid."""
        values = {topic_id: validate_weight(topic_id, pct) for topic_id, pct in weights.items()}
        topics = {
            t.id: t for t in self.db.scalars(select(Topic).where(Topic.id.in_(list(values)))).all()
        }
        missing = sorted(set(values) - set(topics))
        if missing:
            raise NotFound("Topic not found", {"topic_ids": missing})
        for topic_id, value in values.items():
            topics[topic_id].weight_percentage = value
        self.db.flush()
        logger.info("Updated weights for %d topics", len(values))

        report = self.report()
        if not report.summary.is_valid:
            logger.warning("Topic weights now sum to %.2f%%", report.summary.total_percentage)
        return report
