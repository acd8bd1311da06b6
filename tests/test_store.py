"""
Autolabel Tests - Record Store
"""

import json

import pytest

from autolabel.models import PhotoRecord
from autolabel.status import ExtractionState, GroupingState, GroupSource, OverallStatus
from autolabel.store import RecordNotFoundError, RecordStore, StoreError


class TestRecordCrud:
    def test_create_and_get(self, store):
        record = store.create(PhotoRecord(original_name="a.jpg", file_path="/a.jpg"))
        fetched = store.get(record.id)
        assert fetched.original_name == "a.jpg"
        assert store.count() == 1

    def test_duplicate_id_rejected(self, store):
        record = store.create(PhotoRecord(original_name="a.jpg", file_path="/a.jpg"))
        with pytest.raises(StoreError):
            store.create(record)

    def test_get_missing(self, store):
        with pytest.raises(RecordNotFoundError):
            store.get("nope")

    def test_get_returns_copy(self, store, make_record):
        record = make_record()
        copy = store.get(record.id)
        copy.group = "changed"
        assert store.get(record.id).group == ""

    def test_update_merges_fields(self, store, make_record):
        record = make_record()
        updated = store.update(record.id, group="MWI.1.2.10A.5.3", group_source=GroupSource.USER)
        assert updated.group == "MWI.1.2.10A.5.3"
        assert updated.original_name == record.original_name
        assert updated.updated_at >= record.updated_at

    def test_update_validates(self, store, make_record):
        record = make_record()
        with pytest.raises(StoreError):
            store.update(record.id, code_confidence=1.5)
        assert store.get(record.id).code_confidence is None

    def test_update_missing(self, store):
        with pytest.raises(RecordNotFoundError):
            store.update("nope", group="x")

    def test_all_in_creation_order(self, store, make_record):
        ids = [make_record(seconds=100 - i).id for i in range(5)]
        assert [r.id for r in store.all()] == ids

    def test_delete_all(self, store, make_record):
        make_record()
        make_record()
        assert store.delete_all() == 2
        assert store.count() == 0


class TestRecordQueries:
    def test_siblings(self, store, make_record):
        a = make_record(group="G")
        b = make_record(group="G")
        make_record(group="H")
        assert [r.id for r in store.siblings("G", exclude_id=a.id)] == [b.id]

    def test_find_by_new_name(self, store, make_record):
        a = make_record(new_name="x.jpg")
        assert store.find_by_new_name("x.jpg").id == a.id
        assert store.find_by_new_name("x.jpg", exclude_id=a.id) is None
        assert store.find_by_new_name("y.jpg") is None

    def test_pending_ids(self, store, make_record):
        a = make_record()
        make_record(code_extraction_state=ExtractionState.COMPLETE)
        assert store.pending_ids() == [a.id]


class TestListByFilter:
    def test_sorted_by_capture_time(self, store, make_record):
        late = make_record(seconds=50)
        early = make_record(seconds=5)
        assert [r.id for r in store.list_by_filter()] == [early.id, late.id]

    def test_search_matches_names_and_code(self, store, make_record):
        a = make_record(original_name="field/IMG_1.jpg")
        b = make_record(extracted_code="KEN.12.34B.5.6")
        make_record()
        assert [r.id for r in store.list_by_filter(search="field")] == [a.id]
        assert [r.id for r in store.list_by_filter(search="KEN.12")] == [b.id]

    def test_group_and_status(self, store, make_record):
        grouped = make_record(
            group="MWI.1.2.10A.5.3",
            group_source=GroupSource.INFERRED,
            code_extraction_state=ExtractionState.COMPLETE,
        )
        make_record()
        assert [r.id for r in store.list_by_filter(group="MWI.1.2.10A.5.3")] == [grouped.id]
        assert [r.id for r in store.list_by_filter(status=OverallStatus.AUTO_GROUPED)] == [grouped.id]
        assert [r.id for r in store.list_by_filter(status="auto_grouped")] == [grouped.id]

    def test_unknown_and_conflict_views(self, store, make_record):
        pending = make_record()
        failed = make_record(code_extraction_state=ExtractionState.ERROR)
        make_record(
            code_extraction_state=ExtractionState.COMPLETE,
            grouping_state=GroupingState.COMPLETE,
        )
        assert {r.id for r in store.list_by_filter(view="unknown")} == {pending.id, failed.id}
        assert [r.id for r in store.list_by_filter(view="conflict")] == [failed.id]

    def test_unknown_view_name(self, store):
        with pytest.raises(ValueError):
            store.list_by_filter(view="everything")


class TestPersistence:
    def test_round_trip(self, tmp_path):
        state_file = tmp_path / "records.json"
        store = RecordStore(state_file)
        record = store.create(PhotoRecord(original_name="a.jpg", file_path="/a.jpg"))
        store.update(record.id, group="KEN.12.34B.5.6", new_name="KEN.12.34B.5.6.jpg")

        reloaded = RecordStore(state_file)

        assert reloaded.get(record.id).new_name == "KEN.12.34B.5.6.jpg"
        data = json.loads(state_file.read_text())
        assert "overall_status" not in data["records"][0]

    def test_stuck_processing_reset_on_load(self, tmp_path):
        state_file = tmp_path / "records.json"
        store = RecordStore(state_file)
        record = store.create(PhotoRecord(
            original_name="a.jpg",
            file_path="/a.jpg",
            code_extraction_state=ExtractionState.PROCESSING,
        ))

        reloaded = RecordStore(state_file)

        assert reloaded.get(record.id).code_extraction_state is ExtractionState.PENDING

    def test_corrupt_state_file(self, tmp_path):
        state_file = tmp_path / "records.json"
        state_file.write_text("{not json")
        with pytest.raises(StoreError):
            RecordStore(state_file)
