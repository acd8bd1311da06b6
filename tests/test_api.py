"""
Autolabel Tests - API Endpoints
"""

import logging
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from autolabel import main
from autolabel.config import settings
from autolabel.models import ExtractionResult
from autolabel.naming import NamingCollisionExhaustion
from autolabel.pipeline import PhotoPipeline
from autolabel.status import ExtractionState, GroupSource

from .conftest import FakeExtractor

CODE = "MWI.1.2.10A.5.3"


@pytest.fixture
def pipeline(store, bus):
    pipeline = PhotoPipeline(
        store,
        FakeExtractor({"IMG_0001.jpg": ExtractionResult(code=CODE)}),
        bus=bus,
        concurrency=2,
    )
    main.set_pipeline(pipeline)
    yield pipeline
    main.set_pipeline(None)
    pipeline.close()


@pytest.fixture
def client(pipeline):
    client = TestClient(main.app)
    client.headers["Authorization"] = f"Bearer {settings.api_token}"
    return client


class TestAuth:
    def test_health_is_public(self, pipeline):
        response = TestClient(main.app).get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_missing_token(self, pipeline):
        assert TestClient(main.app).get("/records").status_code == 401

    def test_token_query_param(self, pipeline):
        response = TestClient(main.app).get("/records", params={"token": settings.api_token})
        assert response.status_code == 200


class TestRecordEndpoints:
    def test_list_records(self, client, make_record):
        make_record(seconds=20)
        first = make_record(seconds=10)

        data = client.get("/records", params={"limit": 1}).json()

        assert data["pagination"] == {"page": 1, "limit": 1, "total": 2, "pages": 2}
        assert data["records"][0]["id"] == first.id
        assert data["records"][0]["overall_status"] == "pending"

    def test_list_unknown_view(self, client):
        assert client.get("/records", params={"view": "bogus"}).status_code == 400

    def test_get_record(self, client, make_record):
        record = make_record()
        assert client.get(f"/records/{record.id}").json()["original_name"] == record.original_name
        assert client.get("/records/missing").status_code == 404

    def test_patch_group(self, client, make_record):
        record = make_record(code_extraction_state=ExtractionState.COMPLETE)

        response = client.patch(f"/records/{record.id}", json={"group": CODE})

        assert response.status_code == 200
        assert response.json()["overall_status"] == "user_grouped"
        assert response.json()["new_name"] == f"{CODE}.jpg"

    def test_patch_only_sent_fields(self, client, store, make_record):
        record = make_record(
            group=CODE,
            new_name="custom.jpg",
            group_source=GroupSource.USER,
            code_extraction_state=ExtractionState.COMPLETE,
        )

        client.patch(f"/records/{record.id}", json={"new_name": "other.jpg"})

        updated = store.get(record.id)
        assert updated.group == CODE
        assert updated.new_name == "other.jpg"

    def test_patch_duplicate_name(self, client, make_record):
        make_record(new_name="taken.jpg")
        record = make_record()
        response = client.patch(f"/records/{record.id}", json={"new_name": "taken.jpg"})
        assert response.status_code == 409

    def test_retry(self, client, store, make_record):
        record = make_record(code_extraction_state=ExtractionState.ERROR)

        response = client.post(f"/records/{record.id}/retry")

        assert response.status_code == 202
        assert response.json()["status"] == "started"

    def test_retry_background_failure_is_logged(self, client, pipeline, make_record, caplog):
        record = make_record(code_extraction_state=ExtractionState.ERROR)

        with caplog.at_level(logging.ERROR, logger="autolabel.pipeline"):
            with patch.object(
                pipeline.resolver, "assign", side_effect=NamingCollisionExhaustion("no free name")
            ):
                response = client.post(f"/records/{record.id}/retry")
                pipeline.extraction.shutdown()

        assert response.status_code == 202
        assert any(
            record.id in r.getMessage() and r.levelno == logging.ERROR
            for r in caplog.records
            if r.name == "autolabel.pipeline"
        )

    def test_retry_in_progress(self, client, make_record):
        record = make_record(code_extraction_state=ExtractionState.PROCESSING)
        assert client.post(f"/records/{record.id}/retry").status_code == 409

    def test_delete_all(self, client, store, make_record):
        make_record()
        assert client.delete("/records").json() == {"status": "deleted", "count": 1}
        assert store.count() == 0


class TestPipelineEndpoints:
    def test_batch_run(self, client, store, make_record):
        record = make_record()

        response = client.post("/batch/run")

        assert response.json()["status"] == "started"
        assert store.get(record.id).group == CODE
        assert client.get("/batch/running").json()["is_running"] is False

    def test_batch_run_nothing_pending(self, client):
        assert client.post("/batch/run").json()["status"] == "no_pending"

    def test_grouping_run(self, client):
        data = client.post("/grouping/run").json()
        assert data["status"] == "completed"
        assert data["report"]["considered"] == 0

    def test_status_and_export(self, client, make_record):
        make_record()
        assert client.get("/status").json()["total"] == 1
        export = client.get("/export/validate").json()
        assert export["valid"] is False
        assert len(export["errors"]) == 1
