"""
Extraction Stage

Runs the code extraction capability over a batch of records with a bounded
number of in-flight calls and folds each result into the record.
"""

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Callable, Iterable, Optional

from .config import settings
from .events import EventBus, record_delta
from .models import BatchReport, ExtractionResult, PhotoRecord
from .naming import NameResolver, NamingCollisionExhaustion
from .status import ExtractionState, GroupingState, GroupSource
from .store import RecordStore, StoreError
from .validator import is_valid_code
from .vision.base_extractor import BaseExtractor, ExtractionError

logger = logging.getLogger(__name__)

# Outcomes of process_record()
OUTCOME_EXTRACTED = "extracted"
OUTCOME_INVALID = "invalid"
OUTCOME_NO_CODE = "no_code"
OUTCOME_FAILED = "failed"
OUTCOME_SKIPPED = "skipped"


def _without_user_group(record: PhotoRecord) -> bool:
    return not record.has_user_group


class ExtractionStage:
    """
    Bounded-concurrency orchestrator for code extraction.

    Calls run on a thread pool whose size is the in-flight bound, so at most
    `concurrency` extractor calls are outstanding at once, whether they come
    from a batch or from manual retries.
    """

    def __init__(
        self,
        store: RecordStore,
        extractor: BaseExtractor,
        bus: EventBus,
        resolver: Optional[NameResolver] = None,
        concurrency: Optional[int] = None,
    ):
        self.store = store
        self.extractor = extractor
        self.bus = bus
        self.resolver = resolver or NameResolver(store)
        self.concurrency = concurrency if concurrency is not None else settings.extraction_concurrency
        if self.concurrency < 1:
            raise ValueError(f"Concurrency must be at least 1, got {self.concurrency}")
        self._executor = ThreadPoolExecutor(
            max_workers=self.concurrency,
            thread_name_prefix="extraction",
        )

    def submit(
        self,
        record_id: str,
        on_settled: Optional[Callable[[str, str], None]] = None,
    ) -> Future:
        """
        Queue one record for extraction. The future resolves to its outcome.

        on_settled(record_id, outcome) runs in the same task once the record
        has settled, so the future only completes after it.
        """
        if on_settled is None:
            return self._executor.submit(self.process_record, record_id)
        return self._executor.submit(self._process_then, record_id, on_settled)

    def _process_then(self, record_id: str, on_settled: Callable[[str, str], None]) -> str:
        outcome = self.process_record(record_id)
        on_settled(record_id, outcome)
        return outcome

    def process_batch(self, record_ids: Iterable[str]) -> BatchReport:
        """
        Extract every given record and wait for all of them to settle.

        One record's failure never stops its siblings. Extraction and naming
        failures are reported per record; a store failure is re-raised once
        every task has finished.

        Returns:
            BatchReport with per-outcome record ids
        """
        start_time = time.time()
        futures = {self.submit(record_id): record_id for record_id in record_ids}
        logger.info(f"Extracting {len(futures)} records (max {self.concurrency} in flight)")

        wait(futures)

        report = BatchReport(processed=len(futures))
        store_error = None

        for future, record_id in futures.items():
            try:
                outcome = future.result()
            except NamingCollisionExhaustion as e:
                logger.error(f"Naming failed for {record_id}: {e}")
                report.failed[record_id] = str(e)
                continue
            except StoreError as e:
                logger.error(f"Store failure while extracting {record_id}: {e}")
                report.failed[record_id] = str(e)
                store_error = store_error or e
                continue

            if outcome == OUTCOME_EXTRACTED:
                report.extracted.append(record_id)
            elif outcome == OUTCOME_INVALID:
                report.invalid.append(record_id)
            elif outcome == OUTCOME_NO_CODE:
                report.no_code.append(record_id)
            elif outcome == OUTCOME_FAILED:
                report.failed[record_id] = self.store.get(record_id).error_message or "extraction failed"

        report.duration_seconds = time.time() - start_time
        logger.info(
            f"Extraction batch done in {report.duration_seconds:.1f}s: "
            f"{len(report.extracted)} extracted, {len(report.invalid)} invalid, "
            f"{len(report.no_code)} without code, {len(report.failed)} failed"
        )

        if store_error is not None:
            raise store_error
        return report

    def _claim(self, record_id: str) -> Optional[PhotoRecord]:
        """Move a pending record to processing; None if it is not pending."""
        with self.store.transaction():
            record = self.store.get(record_id)
            if record.code_extraction_state is not ExtractionState.PENDING:
                return None
            return self.store.update(
                record_id,
                code_extraction_state=ExtractionState.PROCESSING,
                error_message=None,
            )

    def process_record(self, record_id: str) -> str:
        """
        Extract a single record: pending -> processing -> complete | error.

        Returns:
            One of the OUTCOME_* constants
        """
        record = self._claim(record_id)
        if record is None:
            logger.debug(f"Skipping {record_id[:8]}: extraction not pending")
            return OUTCOME_SKIPPED

        self.bus.publish(record_id, record_delta(record, "code_extraction_state"))

        try:
            result = self.extractor.extract(Path(record.file_path))
        except ExtractionError as e:
            return self._mark_failed(record_id, str(e))
        except Exception as e:
            logger.exception(f"Unexpected extractor failure for {record.original_name}: {e}")
            return self._mark_failed(record_id, str(e))

        return self._apply_result(record_id, result)

    def _mark_failed(self, record_id: str, message: str) -> str:
        record = self.store.update(
            record_id,
            code_extraction_state=ExtractionState.ERROR,
            error_message=message,
        )
        logger.error(f"Extraction failed for {record.original_name}: {message}")
        self.bus.publish(record_id, record_delta(record, "code_extraction_state", "error_message"))
        return OUTCOME_FAILED

    def _apply_result(self, record_id: str, result: ExtractionResult) -> str:
        fields = {
            "code_extraction_state": ExtractionState.COMPLETE,
            "extracted_code": result.code,
            "extracted_text": result.other_text,
            "object_description": result.object_description,
            "object_colors": result.object_colors,
            "code_confidence": result.confidence,
            "error_message": None,
        }
        code = (result.code or "").strip()
        valid = is_valid_code(code)

        record = None
        if code and not self.store.get(record_id).has_user_group:
            group_fields = {"group_source": GroupSource.EXTRACTED}
            if valid:
                group_fields.update(
                    grouping_state=GroupingState.COMPLETE,
                    grouping_confidence=1.0,
                )
            try:
                record = self.resolver.assign(
                    record_id,
                    code,
                    guard=_without_user_group,
                    **fields,
                    **group_fields,
                )
            except NamingCollisionExhaustion as e:
                self._mark_unnamed(record_id, code, {**fields, **group_fields}, e)

        if record is None:
            # A user-set group is never replaced; without a code the record waits for grouping
            record = self.store.update(record_id, **fields)

        self.bus.publish(record_id, record_delta(record, *fields, "group", "new_name", "grouping_state"))
        logger.info(
            f"Extracted {record.original_name}: code={code or '-'} -> {record.overall_status.value}"
        )

        if not code:
            return OUTCOME_NO_CODE
        return OUTCOME_EXTRACTED if valid else OUTCOME_INVALID

    def _mark_unnamed(self, record_id: str, code: str, fields: dict, error: NamingCollisionExhaustion) -> None:
        """Keep the extracted group without a name, then re-raise the naming failure."""
        with self.store.transaction():
            if self.store.get(record_id).has_user_group:
                # The user settled group and name meanwhile; only the extraction fields are stale
                return
            record = self.store.update(
                record_id,
                group=code,
                new_name="",
                **{**fields, "error_message": str(error)},
            )
        self.bus.publish(record_id, record_delta(record, *fields, "group", "new_name"))
        raise error

    def shutdown(self, wait_for_pending: bool = True) -> None:
        """Stop accepting work and optionally wait for in-flight calls."""
        self._executor.shutdown(wait=wait_for_pending)
