"""
Record Status State Machine

Closed state enums for a photo record and the single derivation of its
externally visible status.
"""

from enum import Enum

from .validator import is_valid_code


class ExtractionState(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"


class GroupingState(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"


class GroupSource(str, Enum):
    """Who assigned the record's current group."""

    NONE = "none"
    EXTRACTED = "extracted"  # Read from the photograph itself
    INFERRED = "inferred"  # Similarity grouping engine
    USER = "user"  # Direct edit


class OverallStatus(str, Enum):
    PENDING = "pending"
    EXTRACTING = "extracting"
    EXTRACTED = "extracted"
    INVALID_GROUP = "invalid_group"
    PENDING_GROUPING = "pending_grouping"
    GROUPING = "grouping"
    UNGROUPED = "ungrouped"
    AUTO_GROUPED = "auto_grouped"
    USER_GROUPED = "user_grouped"


def derive_overall_status(
    extraction_state: ExtractionState,
    grouping_state: GroupingState,
    group: str,
    group_source: GroupSource = GroupSource.NONE,
) -> OverallStatus:
    """
    Derive the overall status of a record.

    Rows are evaluated in order:
    1. Extraction not finished (pending, processing, error) wins outright,
       so a retried record reads as pending even when it keeps a user group.
    2. A non-empty group that fails validation is always invalid_group.
    3. A valid group is classified by who set it.
    4. An empty group is classified by the grouping sub-state, except that
       a user who cleared the group has settled it as ungrouped.

    Args:
        extraction_state: Code extraction sub-state
        grouping_state: Grouping sub-state
        group: Current group value ("" when ungrouped)
        group_source: Provenance of the group value

    Returns:
        The derived OverallStatus
    """
    extraction_state = ExtractionState(extraction_state)
    grouping_state = GroupingState(grouping_state)
    group_source = GroupSource(group_source)
    group = (group or "").strip()

    if extraction_state is ExtractionState.PENDING:
        return OverallStatus.PENDING
    if extraction_state is ExtractionState.PROCESSING:
        return OverallStatus.EXTRACTING
    if extraction_state is ExtractionState.ERROR:
        return OverallStatus.PENDING

    # Extraction is complete from here on
    if group:
        if not is_valid_code(group):
            return OverallStatus.INVALID_GROUP
        if group_source is GroupSource.EXTRACTED:
            return OverallStatus.EXTRACTED
        if group_source is GroupSource.INFERRED:
            return OverallStatus.AUTO_GROUPED
        # USER, or a group handed over by ingestion with no recorded source
        return OverallStatus.USER_GROUPED

    if group_source is GroupSource.USER:
        return OverallStatus.UNGROUPED
    if grouping_state is GroupingState.PROCESSING:
        return OverallStatus.GROUPING
    if grouping_state is GroupingState.COMPLETE:
        return OverallStatus.UNGROUPED
    # PENDING, or ERROR awaiting another grouping pass
    return OverallStatus.PENDING_GROUPING


def count_by_status(records) -> dict:
    """Number of records per overall status, every status present."""
    counts = {status.value: 0 for status in OverallStatus}
    for record in records:
        counts[record.overall_status.value] += 1
    return counts
