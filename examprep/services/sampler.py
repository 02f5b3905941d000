# =====================================================
# Stratified question selection for new sessions
# =====================================================
import math
import random
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from examprep.core.errors import InsufficientQuestions
from examprep.services.catalog import CatalogEntry, QuestionCatalog

logger = logging.getLogger(__name__)


def round_half_up(x: float) -> int:
    """Round .5 away from zero for non-negative x (round() is banker's)."""
    return int(math.floor(x + 0.5))


def latest_versions(entries: List[CatalogEntry]) -> List[CatalogEntry]:
    """Keep the newest version of each (base question, variation number) slot.

    A slot whose newest version is hidden is dropped; an older visible version
    never stands in for it.
    """
    newest: Dict[tuple, CatalogEntry] = {}
    for entry in entries:
        current = newest.get(entry.slot)
        if current is None or entry.version > current.version:
            newest[entry.slot] = entry
    return [e for e in newest.values() if e.is_visible]


@dataclass
class Selection:
    """Outcome of one sampling run."""
    variation_ids: List[int]
    quotas: Dict[int, int] = field(default_factory=dict)
    taken: Dict[int, int] = field(default_factory=dict)
    shortfalls: Dict[int, int] = field(default_factory=dict)
    backfilled: int = 0
    weighted: bool = False


class StratifiedSampler:
    """Draws a fixed-size, duplicate-free question set from the catalog."""

    def __init__(self, catalog: QuestionCatalog, rng: Optional[random.Random] = None):
        self.catalog = catalog
        self.rng = rng or random.Random()

    def select_questions(
        self,
        target_count: int,
        topic_weights: Optional[Mapping[int, float]] = None,
        specialty_id: Optional[int] = None,
    ) -> List[int]:
        return self.plan(target_count, topic_weights, specialty_id).variation_ids

    def plan(
        self,
        target_count: int,
        topic_weights: Optional[Mapping[int, float]] = None,
        specialty_id: Optional[int] = None,
    ) -> Selection:
        pool = latest_versions(self.catalog.list_eligible_variations(specialty_id=specialty_id))
        weights = {t: w for t, w in (topic_weights or {}).items() if w is not None and w > 0}

        if not weights:
            return Selection(variation_ids=self._uniform(pool, target_count))
        return self._weighted(pool, target_count, weights)

    def _shuffled(self, entries: List[CatalogEntry]) -> List[CatalogEntry]:
        # random.shuffle is Fisher-Yates
        out = list(entries)
        self.rng.shuffle(out)
        return out

    def _uniform(self, pool: List[CatalogEntry], target_count: int) -> List[int]:
        if len(pool) < target_count:
            logger.warning("Only %d variations available, %d required", len(pool), target_count)
            raise InsufficientQuestions(target_count, len(pool))
        return [e.variation_id for e in self._shuffled(pool)[:target_count]]

    def _weighted(self, pool: List[CatalogEntry], target_count: int, weights: Dict[int, float]) -> Selection:
        total_weight = sum(weights.values())
        if abs(total_weight - 100) >= 0.5:
            logger.warning("Topic weights sum to %.2f%%, expected 100%%", total_weight)

        by_topic: Dict[int, List[CatalogEntry]] = {}
        for entry in pool:
            if entry.topic_id in weights:
                by_topic.setdefault(entry.topic_id, []).append(entry)

        selection = Selection(variation_ids=[], weighted=True)
        chosen: List[CatalogEntry] = []
        for topic_id, weight in weights.items():
            quota = round_half_up(weight * target_count / 100)
            available = self._shuffled(by_topic.get(topic_id, []))
            picked = available[:min(quota, len(available))]
            chosen.extend(picked)
            selection.quotas[topic_id] = quota
            selection.taken[topic_id] = len(picked)
            if len(picked) < quota:
                selection.shortfalls[topic_id] = quota - len(picked)
                logger.warning(
                    "Topic %s short by %d (quota %d, available %d)",
                    topic_id, quota - len(picked), quota, len(available),
                )

        if len(chosen) < target_count:
            used = {e.slot for e in chosen}
            remainder = [e for e in pool if e.slot not in used]
            missing = target_count - len(chosen)
            if len(remainder) < missing:
                available = len(chosen) + len(remainder)
                logger.warning("Only %d variations available, %d required", available, target_count)
                raise InsufficientQuestions(target_count, available)
            backfill = self._shuffled(remainder)[:missing]
            chosen.extend(backfill)
            selection.backfilled = len(backfill)
            logger.info("Backfilled %d questions outside weighted topics", len(backfill))

        # quotas rounded up can overshoot; the final shuffle hides topic grouping
        selection.variation_ids = [e.variation_id for e in self._shuffled(chosen)[:target_count]]
        return selection
