"""
Photo Pipeline

Wires the record store, extraction stage, grouping engine and event bus,
and exposes the operator triggers: batch run, manual retry, manual grouping
pass, direct field edit and full-batch reset.
"""

import logging
import time
from concurrent.futures import Future
from typing import Dict, Iterable, List, Optional

from .events import EventBus, record_delta
from .extraction import OUTCOME_NO_CODE, ExtractionStage
from .grouping import SimilarityGrouper
from .models import BatchReport, GroupingReport, PhotoRecord
from .naming import NameResolver, validate_export_names
from .status import ExtractionState, GroupingState, GroupSource, count_by_status
from .store import RecordStore
from .vision.base_extractor import BaseExtractor

logger = logging.getLogger(__name__)

# Sentinel for "field not provided" in edit_record()
UNSET = object()


class ExtractionInProgressError(Exception):
    """Raised when a retry is requested for a record that is being extracted."""
    pass


class PhotoPipeline:
    """
    Extraction followed by similarity grouping over one batch of photos.

    Grouping only starts after every extraction task of the batch has
    settled, so it never reads a record that is still being extracted.
    """

    def __init__(
        self,
        store: RecordStore,
        extractor: BaseExtractor,
        bus: Optional[EventBus] = None,
        concurrency: Optional[int] = None,
        min_score: Optional[float] = None,
    ):
        self.store = store
        self.extractor = extractor
        self.bus = bus or EventBus()
        self.resolver = NameResolver(store)
        self.extraction = ExtractionStage(
            store,
            extractor,
            self.bus,
            resolver=self.resolver,
            concurrency=concurrency,
        )
        self.grouper = SimilarityGrouper(
            store,
            self.bus,
            resolver=self.resolver,
            min_score=min_score,
        )

    def run_batch(self, record_ids: Optional[Iterable[str]] = None) -> BatchReport:
        """
        Process a batch end to end.

        Args:
            record_ids: Records to extract (default: every pending record)

        Returns:
            BatchReport including the grouping pass outcome
        """
        start_time = time.time()
        ids = list(record_ids) if record_ids is not None else self.store.pending_ids()
        logger.info(f"Starting batch of {len(ids)} records")

        report = self.extraction.process_batch(ids)
        report.grouping = self.grouper.run()
        report.duration_seconds = time.time() - start_time

        logger.info(f"Batch finished in {report.duration_seconds:.1f}s")
        return report

    def run_grouping_pass(self) -> GroupingReport:
        """Re-run similarity grouping over all ungrouped, extracted records."""
        return self.grouper.run()

    def retry_extraction(self, record_id: str) -> Future:
        """
        Reset a record's extraction and queue it again.

        A user-set group is kept; a machine-assigned group is cleared so the
        record is named again from the new result. When the new result has
        no code, a grouping pass for this record runs in the same task.
        Failures of the task are logged with the record id.

        Returns:
            Future resolving to the extraction outcome once the record has
            settled, grouping included
        """
        record = self.store.get(record_id)
        if record.code_extraction_state is ExtractionState.PROCESSING:
            raise ExtractionInProgressError(f"Extraction already running for {record.original_name}")
        logger.info(f"Manual retry requested for {record.original_name}")

        fields = {
            "code_extraction_state": ExtractionState.PENDING,
            "extracted_code": None,
            "extracted_text": None,
            "object_description": None,
            "object_colors": [],
            "code_confidence": None,
            "error_message": None,
        }
        if not record.has_user_group:
            fields.update(
                group="",
                group_source=GroupSource.NONE,
                new_name="",
                grouping_state=GroupingState.PENDING,
                grouping_confidence=None,
            )

        record = self.store.update(record_id, **fields)
        self.bus.publish(record_id, record_delta(record, *fields))
        future = self.extraction.submit(record_id, on_settled=self._group_after_retry)
        future.add_done_callback(lambda f: self._log_retry_failure(record_id, f))
        return future

    def _group_after_retry(self, record_id: str, outcome: str) -> None:
        if outcome == OUTCOME_NO_CODE:
            self.grouper.run(record_ids=[record_id])

    @staticmethod
    def _log_retry_failure(record_id: str, future: Future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error(f"Retry of record {record_id} failed: {error!r}")

    def edit_record(self, record_id: str, new_name=UNSET, group=UNSET) -> PhotoRecord:
        """
        Apply a direct user edit of the export name and/or group.

        A group edit always settles grouping (complete) and marks the group
        as user-owned, so later grouping passes leave it alone. Clearing the
        group also clears the export name.

        Raises:
            RecordNotFoundError: If the record does not exist
            DuplicateNameError: If the requested name is already taken
        """
        record = self.store.get(record_id)

        if group is None:
            group = UNSET
        if new_name is None:
            new_name = UNSET

        if group is not UNSET and (group.strip() != record.group or not record.has_user_group):
            group = group.strip()
            if group:
                record = self.resolver.assign(
                    record_id,
                    group,
                    group_source=GroupSource.USER,
                    grouping_state=GroupingState.COMPLETE,
                    grouping_confidence=1.0,
                )
            else:
                record = self.store.update(
                    record_id,
                    group="",
                    new_name="",
                    group_source=GroupSource.USER,
                    grouping_state=GroupingState.COMPLETE,
                    grouping_confidence=0.0,
                )
            logger.info(f"User set group of {record.original_name} to {group!r}")

        if new_name is not UNSET and new_name != record.new_name:
            record = self.resolver.claim(record_id, new_name)
            logger.info(f"User renamed {record.original_name} to {record.new_name}")

        self.bus.publish(
            record_id,
            record_delta(record, "group", "new_name", "grouping_state", "grouping_confidence"),
        )
        return record

    def reset(self) -> int:
        """Delete every record before a new ingestion."""
        return self.store.delete_all()

    def list_records(self, **filters) -> List[PhotoRecord]:
        return self.store.list_by_filter(**filters)

    def validate_export(self) -> List[str]:
        """Problems that would prevent exporting under the new names."""
        return validate_export_names(self.store.all())

    def get_status_summary(self) -> Dict:
        """
        Get batch status summary.

        Returns:
            Dict with total and counts by overall status
        """
        by_status = count_by_status(self.store.all())

        return {
            "total": sum(by_status.values()),
            "by_status": by_status,
        }

    def close(self) -> None:
        self.extraction.shutdown()
        self.extractor.close()
