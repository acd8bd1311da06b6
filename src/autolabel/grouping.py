"""
Similarity Grouping Module

Assigns photographs without a readable code to the group of the most similar
already-grouped photograph (an anchor). Similarity combines three factors:
object description text, dominant colors and capture time.

The total is a plain sum of per-factor contributions, so it can exceed 1.0
(maximum 0.8 + 0.6 + 0.2 = 1.6 with default weights). Thresholds are set per
factor; the stored confidence is clamped to [0, 1].
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

import numpy as np

from .config import settings
from .events import EventBus, record_delta
from .models import GroupingReport, ObjectColor, PhotoRecord
from .naming import NameResolver, NamingCollisionExhaustion
from .status import ExtractionState, GroupingState, GroupSource
from .store import RecordStore
from .validator import is_valid_code

logger = logging.getLogger(__name__)

MAX_RGB_DISTANCE = float(np.sqrt(3 * 255 ** 2))


def levenshtein_distance(a: str, b: str) -> int:
    """Minimum number of single-character edits turning a into b."""
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, 1):
        current = [i]
        for j, char_b in enumerate(b, 1):
            current.append(min(
                previous[j] + 1,  # deletion
                current[j - 1] + 1,  # insertion
                previous[j - 1] + (char_a != char_b),  # substitution
            ))
        previous = current
    return previous[-1]


def calculate_description_similarity(desc_a: Optional[str], desc_b: Optional[str]) -> float:
    """
    Normalized text similarity: 1 - edit_distance / longer_length.

    Comparison ignores case and surrounding whitespace. A missing
    description on either side scores 0.0.
    """
    a = (desc_a or "").strip().lower()
    b = (desc_b or "").strip().lower()
    if not a or not b:
        return 0.0
    return 1.0 - levenshtein_distance(a, b) / max(len(a), len(b))


def calculate_color_similarity(
    colors_a: Sequence[ObjectColor],
    colors_b: Sequence[ObjectColor],
) -> float:
    """
    Similarity of two top-3 color palettes in RGB space.

    Each color is matched to its nearest color in the other palette; the
    per-color similarity is 1 - distance / max_distance. Both directions are
    averaged so the score is symmetric.

    Returns:
        Similarity between 0.0 and 1.0 (0.0 if either palette is empty)
    """
    if not colors_a or not colors_b:
        return 0.0

    rgb_a = np.array([c.rgb for c in colors_a[:3]], dtype=np.float32)
    rgb_b = np.array([c.rgb for c in colors_b[:3]], dtype=np.float32)

    # Pairwise distance matrix, shape (len(a), len(b))
    distances = np.linalg.norm(rgb_a[:, None, :] - rgb_b[None, :, :], axis=2)
    similarities = 1.0 - distances / MAX_RGB_DISTANCE

    score = (similarities.max(axis=1).mean() + similarities.max(axis=0).mean()) / 2
    return float(max(0.0, min(1.0, score)))


def calculate_time_proximity(
    time_a: datetime,
    time_b: datetime,
    window_seconds: float = None,
) -> float:
    """
    Linear decay from 1.0 at identical capture times to 0.0 at the window edge.
    """
    window_seconds = window_seconds if window_seconds is not None else settings.time_window_seconds
    delta = abs((time_a - time_b).total_seconds())
    if window_seconds <= 0:
        return 1.0 if delta == 0 else 0.0
    return max(0.0, 1.0 - delta / window_seconds)


def calculate_grouping_score(
    description_sim: float,
    color_sim: float,
    time_score: float,
) -> float:
    """
    Combine the three factor similarities into a total score.

    - description: flat description_weight once description_threshold is met
    - color: color_sim * color_weight once color_threshold is met
    - time: time_score * time_weight

    Each contribution is non-decreasing in its own similarity.
    """
    total = 0.0
    if description_sim >= settings.description_threshold:
        total += settings.description_weight
    if color_sim >= settings.color_threshold:
        total += color_sim * settings.color_weight
    total += time_score * settings.time_weight
    return round(total, 4)


class AnchorScore:
    """Similarity of one ungrouped record to one anchor."""

    def __init__(
        self,
        anchor_id: str,
        group: str,
        description_sim: float,
        color_sim: float,
        time_score: float,
    ):
        self.anchor_id = anchor_id
        self.group = group
        self.description_sim = description_sim
        self.color_sim = color_sim
        self.time_score = time_score
        self.total = calculate_grouping_score(description_sim, color_sim, time_score)

    @property
    def confidence(self) -> float:
        return max(0.0, min(1.0, self.total))

    def to_dict(self) -> dict:
        return {
            "anchor_id": self.anchor_id,
            "group": self.group,
            "description_sim": self.description_sim,
            "color_sim": self.color_sim,
            "time_score": self.time_score,
            "total": self.total,
        }


def score_anchor(target: PhotoRecord, anchor: PhotoRecord) -> AnchorScore:
    return AnchorScore(
        anchor_id=anchor.id,
        group=anchor.group,
        description_sim=calculate_description_similarity(
            target.object_description, anchor.object_description
        ),
        color_sim=calculate_color_similarity(target.object_colors, anchor.object_colors),
        time_score=calculate_time_proximity(target.capture_timestamp, anchor.capture_timestamp),
    )


def find_best_anchor(target: PhotoRecord, anchors: List[PhotoRecord]) -> Optional[AnchorScore]:
    """
    Highest scoring anchor for a target.

    Anchors are scanned in creation order and only a strictly higher score
    replaces the current best, so ties go to the earliest-created anchor.
    """
    best = None
    for anchor in anchors:
        if anchor.id == target.id:
            continue
        score = score_anchor(target, anchor)
        if best is None or score.total > best.total:
            best = score
    return best


class SimilarityGrouper:
    """
    Greedy nearest-anchor assignment for records without a group.

    Anchors are the records that hold a valid group when the pass starts;
    records grouped during the pass do not become anchors for later targets.
    """

    def __init__(
        self,
        store: RecordStore,
        bus: EventBus,
        resolver: Optional[NameResolver] = None,
        min_score: float = None,
    ):
        self.store = store
        self.bus = bus
        self.resolver = resolver or NameResolver(store)
        self.min_score = min_score if min_score is not None else settings.grouping_min_score

    @staticmethod
    def is_target(record: PhotoRecord) -> bool:
        return (
            not record.group.strip()
            and not record.has_user_group
            and record.code_extraction_state is ExtractionState.COMPLETE
        )

    def run(self, record_ids: Optional[Iterable[str]] = None) -> GroupingReport:
        """
        Run one grouping pass over ungrouped, extraction-complete records.

        Args:
            record_ids: Limit the pass to these records (default: every target)

        Returns:
            GroupingReport with assigned, ungrouped and failed record ids
        """
        records = self.store.all()
        anchors = [r for r in records if r.group and is_valid_code(r.group)]
        wanted = set(record_ids) if record_ids is not None else None
        candidates = [
            r for r in records
            if self.is_target(r) and (wanted is None or r.id in wanted)
        ]

        targets = []
        for candidate in candidates:
            with self.store.transaction():
                # A user edit may land between the snapshot and this write
                if not self.is_target(self.store.get(candidate.id)):
                    continue
                record = self.store.update(candidate.id, grouping_state=GroupingState.PROCESSING)
            targets.append(candidate)
            self.bus.publish(candidate.id, record_delta(record, "grouping_state"))

        report = GroupingReport(considered=len(targets))
        if not targets:
            logger.info("No ungrouped records to group")
            return report

        logger.info(f"Grouping {len(targets)} records against {len(anchors)} anchors")

        for target in targets:
            try:
                self._group_one(target, anchors, report)
            except NamingCollisionExhaustion as e:
                logger.error(f"Grouping failed for {target.original_name}: {e}")
                record = self.store.update(
                    target.id,
                    grouping_state=GroupingState.ERROR,
                    error_message=str(e),
                )
                self.bus.publish(target.id, record_delta(record, "grouping_state", "error_message"))
                report.failed[target.id] = str(e)

        logger.info(
            f"Grouping pass done: {len(report.assigned)} grouped, "
            f"{len(report.ungrouped)} ungrouped, {len(report.failed)} failed"
        )
        return report

    def _group_one(self, target: PhotoRecord, anchors: List[PhotoRecord], report: GroupingReport) -> None:
        best = find_best_anchor(target, anchors)

        record = None
        if best is not None and best.total >= self.min_score:
            record = self.resolver.assign(
                target.id,
                best.group,
                guard=self.is_target,
                group_source=GroupSource.INFERRED,
                grouping_state=GroupingState.COMPLETE,
                grouping_confidence=best.confidence,
            )
            if record is not None:
                report.assigned[target.id] = best.group
                logger.debug(f"Grouped {target.original_name} -> {best.group} ({best.to_dict()})")

        if record is None:
            with self.store.transaction():
                current = self.store.get(target.id)
                if not self.is_target(current):
                    record = self._release(current)
                else:
                    record = self.store.update(
                        target.id,
                        grouping_state=GroupingState.COMPLETE,
                        grouping_confidence=best.confidence if best else 0.0,
                    )
                    report.ungrouped.append(target.id)
                    logger.debug(
                        f"No anchor for {target.original_name} "
                        f"(best {best.total if best else 0.0} < {self.min_score})"
                    )
            if record is None:
                return

        self.bus.publish(
            target.id,
            record_delta(record, "group", "new_name", "grouping_state", "grouping_confidence"),
        )

    def _release(self, record: PhotoRecord) -> Optional[PhotoRecord]:
        """Settle a record that was edited while the pass was running."""
        logger.debug(f"Skipping {record.id[:8]}: changed during pass")
        if record.grouping_state is not GroupingState.PROCESSING:
            return None
        return self.store.update(record.id, grouping_state=GroupingState.COMPLETE)
