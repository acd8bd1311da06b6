"""
Export Filename Resolver

Deterministic, collision-free export names derived from a record's group.

A group's "primary" photograph (the one whose code was read from the image)
gets the bare group name; later arrivals get a numeric suffix. A global
uniqueness pass then guarantees no two records share a name.
"""

import logging
import re
import threading
from typing import Callable, Dict, Iterable, List, Optional

from .config import settings
from .models import PhotoRecord
from .store import RecordStore

logger = logging.getLogger(__name__)

RESERVED_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


class NamingCollisionExhaustion(Exception):
    """Raised when no free name is found within the attempt bound."""
    pass


class DuplicateNameError(Exception):
    """Raised when a user-supplied name is already held by another record."""
    pass


def sanitize_filename(name: str, placeholder: Optional[str] = None) -> str:
    """
    Make a group or name safe to use as a filename.

    Whitespace runs become underscores, reserved characters are dropped,
    repeated underscores collapse and edge underscores are trimmed.
    """
    placeholder = placeholder or settings.naming_placeholder

    sanitized = re.sub(r"\s+", "_", (name or "").strip())
    sanitized = RESERVED_CHARS.sub("", sanitized)
    sanitized = re.sub(r"_+", "_", sanitized)
    sanitized = sanitized.strip("_")

    return sanitized or placeholder


def _base_counter(siblings: List[PhotoRecord]) -> int:
    """1 for the bare name, otherwise the suffix the record starts from."""
    if not siblings:
        return 1
    if any(sibling.extracted_code for sibling in siblings):
        return len(siblings) + 1
    # Siblings exist but none was read from a photograph; this one is primary
    return 1


def _format_name(stem: str, counter: int, extension: str) -> str:
    if counter <= 1:
        return f"{stem}{extension}"
    return f"{stem}_{counter}{extension}"


def _extension_of(original_name: str) -> str:
    dot = original_name.rfind(".")
    if dot <= 0:
        return ""
    return original_name[dot:]


def compute_base_name(group: str, siblings: List[PhotoRecord], extension: str) -> str:
    """
    Name a record before the global uniqueness pass.

    Args:
        group: Raw group value
        siblings: Other records in the same group, in creation order
        extension: Extension of the original file, including the dot

    Returns:
        Either "<group><ext>" or "<group>_<n><ext>"
    """
    return _format_name(sanitize_filename(group), _base_counter(siblings), extension)


def _unique_name(
    stem: str,
    counter: int,
    extension: str,
    record_id: str,
    store: RecordStore,
    max_attempts: int,
) -> str:
    candidate = _format_name(stem, counter, extension)
    attempts = 0
    while store.find_by_new_name(candidate, exclude_id=record_id) is not None:
        attempts += 1
        if attempts >= max_attempts:
            raise NamingCollisionExhaustion(
                f"No free name for {stem!r} after {attempts} attempts"
            )
        counter = max(counter, 1) + 1
        candidate = _format_name(stem, counter, extension)
    return candidate


def resolve_name(
    group: str,
    record_id: str,
    original_name: str,
    store: RecordStore,
    max_attempts: Optional[int] = None,
) -> str:
    """
    Compute a globally unique export name for a record joining a group.

    Only reads the store; use NameResolver.assign() to resolve and commit
    under the proper locks.

    Raises:
        NamingCollisionExhaustion: If max_attempts candidates are all taken
    """
    siblings = store.siblings(group, exclude_id=record_id)
    return _unique_name(
        sanitize_filename(group),
        _base_counter(siblings),
        _extension_of(original_name),
        record_id,
        store,
        max_attempts or settings.naming_max_attempts,
    )


class NameResolver:
    """
    Serializes name resolution per group.

    Two records joining the same group must not both compute the bare name,
    so the sibling read, the uniqueness pass and the write all happen under
    a lock keyed by the sanitized group. Different groups resolve in
    parallel; only the final check-and-write holds the store lock, which
    keeps names unique across groups whose suffixed forms overlap.
    """

    def __init__(self, store: RecordStore, max_attempts: Optional[int] = None):
        self.store = store
        self.max_attempts = max_attempts or settings.naming_max_attempts
        self._group_locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, group: str) -> threading.Lock:
        key = sanitize_filename(group)
        with self._registry_lock:
            lock = self._group_locks.get(key)
            if lock is None:
                lock = self._group_locks[key] = threading.Lock()
            return lock

    def assign(
        self,
        record_id: str,
        group: str,
        guard: Optional[Callable[[PhotoRecord], bool]] = None,
        **fields,
    ) -> Optional[PhotoRecord]:
        """
        Move a record into a group and commit its resolved export name.

        The group, the new name and any extra fields are written in one
        update, so siblings never see the group without its name.

        Args:
            record_id: Record to move
            group: Target group
            guard: Checked against the current record under the store lock,
                right before the write; when it returns False nothing is
                written and None is returned

        Raises:
            NamingCollisionExhaustion: If no free name could be found
        """
        with self._lock_for(group):
            record = self.store.get(record_id)
            siblings = self.store.siblings(group, exclude_id=record_id)
            counter = _base_counter(siblings)

            with self.store.transaction():
                if guard is not None and not guard(self.store.get(record_id)):
                    logger.debug(f"Not naming {record_id[:8]}: record changed before the write")
                    return None
                new_name = _unique_name(
                    sanitize_filename(group),
                    counter,
                    _extension_of(record.original_name),
                    record_id,
                    self.store,
                    self.max_attempts,
                )
                updated = self.store.update(record_id, group=group, new_name=new_name, **fields)

        logger.debug(f"Named {record_id[:8]} -> {new_name} (group {group})")
        return updated

    def claim(self, record_id: str, new_name: str) -> PhotoRecord:
        """
        Give a record a user-chosen export name.

        Raises:
            DuplicateNameError: If another record already holds the name
        """
        new_name = sanitize_filename(new_name)
        with self.store.transaction():
            holder = self.store.find_by_new_name(new_name, exclude_id=record_id)
            if holder is not None:
                raise DuplicateNameError(
                    f"Name {new_name!r} is already used by {holder.original_name}"
                )
            return self.store.update(record_id, new_name=new_name)


def validate_export_names(records: Iterable[PhotoRecord]) -> List[str]:
    """
    Check that a record set is ready to be exported under its new names.

    Returns:
        Human readable problems; empty when every record has a unique,
        filesystem-safe name
    """
    errors = []
    counts: Dict[str, int] = {}

    for record in records:
        if not record.new_name:
            errors.append(f'Image "{record.original_name}" is missing a new name')
            continue
        if RESERVED_CHARS.search(record.new_name):
            errors.append(
                f'Image "{record.original_name}" has invalid characters in new name "{record.new_name}"'
            )
        counts[record.new_name] = counts.get(record.new_name, 0) + 1

    for name, count in counts.items():
        if count > 1:
            errors.append(f'Duplicate new name "{name}" found {count} times')

    return errors
