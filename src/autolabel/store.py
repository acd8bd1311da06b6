"""
Photo Record Store

Thread-safe keyed storage of photo records with optional JSON persistence.
Iteration order is creation order.
"""

import json
import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from pydantic import ValidationError

from .models import PhotoRecord
from .status import ExtractionState, GroupingState, OverallStatus

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Raised when the record store cannot read or write a record."""
    pass


class RecordNotFoundError(StoreError):
    """Raised when a record id is not in the store."""
    pass


class RecordStore:
    """
    Keyed storage of PhotoRecords.

    Every read returns a copy; callers modify the copy and write it back with
    update(). State is saved to a JSON file after each mutation when a
    state_file is configured.
    """

    def __init__(self, state_file: Optional[Path] = None):
        self.state_file = Path(state_file) if state_file else None
        self.records: Dict[str, PhotoRecord] = {}
        self._lock = threading.RLock()

        self._load_state()

    @contextmanager
    def transaction(self) -> Iterator["RecordStore"]:
        """Hold the store lock across several reads and writes."""
        with self._lock:
            yield self

    def _load_state(self):
        """Load store state from disk."""
        if not self.state_file or not self.state_file.exists():
            return

        try:
            data = json.loads(self.state_file.read_text(encoding="utf-8"))
            for record_data in data.get("records", []):
                record = PhotoRecord.model_validate(record_data)
                self.records[record.id] = record
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            raise StoreError(f"Failed to load record store {self.state_file}: {e}") from e

        logger.info(f"Loaded record store: {len(self.records)} records")

        # Extraction calls do not survive a restart
        stuck = [
            r for r in self.records.values()
            if r.code_extraction_state is ExtractionState.PROCESSING
        ]
        for record in stuck:
            record.code_extraction_state = ExtractionState.PENDING
        if stuck:
            logger.warning(f"Reset {len(stuck)} records stuck in 'processing' to 'pending'")
            self._save_state()

    def _save_state(self):
        """Save store state to disk."""
        if not self.state_file:
            return

        data = {
            "records": [
                record.model_dump(mode="json", exclude={"overall_status"})
                for record in self.records.values()
            ],
        }
        try:
            self.state_file.parent.mkdir(parents=True, exist_ok=True)
            temp_path = self.state_file.with_suffix(".tmp")
            temp_path.write_text(json.dumps(data, indent=2), encoding="utf-8")
            temp_path.replace(self.state_file)
        except OSError as e:
            raise StoreError(f"Failed to save record store {self.state_file}: {e}") from e

    def create(self, record: PhotoRecord) -> PhotoRecord:
        """Add a new record. Ids must be unique."""
        with self._lock:
            if record.id in self.records:
                raise StoreError(f"Record already exists: {record.id}")
            self.records[record.id] = record.model_copy(deep=True)
            self._save_state()
        logger.debug(f"Created record {record.id[:8]} ({record.original_name})")
        return record.model_copy(deep=True)

    def get(self, record_id: str) -> PhotoRecord:
        """Return a copy of the record, raising RecordNotFoundError when absent."""
        with self._lock:
            record = self.records.get(record_id)
            if record is None:
                raise RecordNotFoundError(f"Record not found: {record_id}")
            return record.model_copy(deep=True)

    def update(self, record_id: str, **fields) -> PhotoRecord:
        """
        Replace the stored record with a copy carrying the given field values.

        The merged record is re-validated so enum and range constraints hold
        after every mutation.

        Returns:
            The updated record (copy)
        """
        with self._lock:
            current = self.get(record_id)
            data = current.model_dump(exclude={"overall_status"})
            data.update(fields)
            data["updated_at"] = datetime.utcnow()
            try:
                updated = PhotoRecord.model_validate(data)
            except ValidationError as e:
                raise StoreError(f"Invalid update for record {record_id}: {e}") from e
            self.records[record_id] = updated
            self._save_state()
            return updated.model_copy(deep=True)

    def all(self) -> List[PhotoRecord]:
        """All records in creation order."""
        with self._lock:
            return [r.model_copy(deep=True) for r in self.records.values()]

    def count(self) -> int:
        with self._lock:
            return len(self.records)

    def siblings(self, group: str, exclude_id: str) -> List[PhotoRecord]:
        """Records sharing the exact (unsanitized) group value, in creation order."""
        with self._lock:
            return [
                r.model_copy(deep=True)
                for r in self.records.values()
                if r.group == group and r.id != exclude_id
            ]

    def find_by_new_name(self, new_name: str, exclude_id: Optional[str] = None) -> Optional[PhotoRecord]:
        """Return the record holding the given export name, if any."""
        with self._lock:
            for record in self.records.values():
                if record.new_name == new_name and record.id != exclude_id:
                    return record.model_copy(deep=True)
        return None

    def pending_ids(self) -> List[str]:
        """Ids of records whose extraction has not started."""
        with self._lock:
            return [
                r.id for r in self.records.values()
                if r.code_extraction_state is ExtractionState.PENDING
            ]

    def list_by_filter(
        self,
        group: Optional[str] = None,
        status: Optional[OverallStatus] = None,
        search: Optional[str] = None,
        view: str = "all",
    ) -> List[PhotoRecord]:
        """
        List records matching every given filter, ordered by capture time.

        Args:
            group: Exact group value
            status: Derived overall status
            search: Substring of original name, new name or extracted code
            view: all | unknown (extraction and grouping unfinished) |
                conflict (extraction failed)

        Returns:
            Matching records (copies)
        """
        if view not in ("all", "unknown", "conflict"):
            raise ValueError(f"Unknown view: {view}")

        results = []
        for record in self.all():
            if group is not None and record.group != group:
                continue
            if status is not None and record.overall_status != OverallStatus(status):
                continue
            if search:
                haystack = [record.original_name, record.new_name, record.extracted_code or ""]
                if not any(search in value for value in haystack):
                    continue
            if view == "unknown" and (
                record.code_extraction_state is ExtractionState.COMPLETE
                or record.grouping_state is GroupingState.COMPLETE
            ):
                continue
            if view == "conflict" and record.code_extraction_state is not ExtractionState.ERROR:
                continue
            results.append(record)

        results.sort(key=lambda r: r.capture_timestamp)
        return results

    def delete_all(self) -> int:
        """Full-batch reset. Returns the number of records removed."""
        with self._lock:
            count = len(self.records)
            self.records = {}
            self._save_state()
        logger.info(f"Deleted {count} records")
        return count
