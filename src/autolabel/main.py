"""
Autolabel FastAPI Main Application
API endpoints for browsing records, editing them and triggering the pipeline.
"""

import logging
import threading
from datetime import datetime
from typing import Optional

from fastapi import BackgroundTasks, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .config import settings
from .naming import DuplicateNameError
from .pipeline import UNSET, ExtractionInProgressError, PhotoPipeline
from .status import OverallStatus
from .store import RecordNotFoundError, RecordStore
from .vision import OllamaVisionExtractor

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

_pipeline: Optional[PhotoPipeline] = None
_pipeline_lock = threading.Lock()


def get_pipeline() -> PhotoPipeline:
    """Pipeline backed by the configured state file and vision model."""
    global _pipeline
    with _pipeline_lock:
        if _pipeline is None:
            settings.ensure_directories()
            _pipeline = PhotoPipeline(
                RecordStore(settings.state_file),
                OllamaVisionExtractor(),
            )
        return _pipeline


def set_pipeline(pipeline: Optional[PhotoPipeline]) -> None:
    """Replace the process-wide pipeline (used by tests and embedding apps)."""
    global _pipeline
    with _pipeline_lock:
        _pipeline = pipeline


# Create FastAPI app
app = FastAPI(
    title="Autolabel",
    description="Sample code extraction and photo grouping API",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Auth Middleware ---

@app.middleware("http")
async def verify_token(request: Request, call_next):
    """Verify API token on every endpoint except health and docs."""
    if request.method == "OPTIONS":
        return await call_next(request)

    public_paths = ["/", "/docs", "/openapi.json", "/health"]
    if request.url.path in public_paths:
        return await call_next(request)

    token = request.query_params.get("token") or request.headers.get("Authorization", "").replace("Bearer ", "")
    if token != settings.api_token:
        return JSONResponse(status_code=401, content={"error": "Invalid or missing API token"})

    return await call_next(request)


# --- Health Check ---

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "0.1.0", "timestamp": datetime.utcnow().isoformat()}


# --- Record Endpoints ---

@app.get("/records")
def list_records(
    view: str = Query("all", description="all | unknown | conflict"),
    search: Optional[str] = Query(None),
    group: Optional[str] = Query(None),
    status: Optional[OverallStatus] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(100, ge=1, le=2000),
):
    """List records in capture order with optional filtering and pagination."""
    if view not in ("all", "unknown", "conflict"):
        raise HTTPException(status_code=400, detail=f"Unknown view: {view}")

    records = get_pipeline().list_records(group=group, status=status, search=search, view=view)
    total = len(records)
    start = (page - 1) * limit

    return {
        "records": [r.model_dump(mode="json") for r in records[start:start + limit]],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit,
        },
    }


@app.get("/records/{record_id}")
def get_record(record_id: str):
    """Get a single record."""
    try:
        return get_pipeline().store.get(record_id).model_dump(mode="json")
    except RecordNotFoundError:
        raise HTTPException(status_code=404, detail="Record not found")


class RecordEdit(BaseModel):
    new_name: Optional[str] = None
    group: Optional[str] = None


@app.patch("/records/{record_id}")
def edit_record(record_id: str, body: RecordEdit):
    """Direct edit of export name and/or group. Only fields sent are changed."""
    changes = {
        field: getattr(body, field) if field in body.model_fields_set else UNSET
        for field in ("new_name", "group")
    }
    try:
        record = get_pipeline().edit_record(record_id, **changes)
    except RecordNotFoundError:
        raise HTTPException(status_code=404, detail="Record not found")
    except DuplicateNameError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return record.model_dump(mode="json")


@app.post("/records/{record_id}/retry", status_code=202)
def retry_record(record_id: str):
    """Reset extraction for one record and process it again in the background."""
    pipeline = get_pipeline()
    try:
        record = pipeline.store.get(record_id)
        pipeline.retry_extraction(record_id)
    except RecordNotFoundError:
        raise HTTPException(status_code=404, detail="Record not found")
    except ExtractionInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return {
        "status": "started",
        "record_id": record_id,
        "original_name": record.original_name,
    }


@app.delete("/records")
def delete_all_records():
    """Full-batch reset."""
    count = get_pipeline().reset()
    return {"status": "deleted", "count": count}


# --- Pipeline Endpoints ---

@app.post("/grouping/run")
def run_grouping():
    """Re-run similarity grouping over every ungrouped record."""
    report = get_pipeline().run_grouping_pass()
    return {
        "status": "completed",
        "report": report.model_dump(),
        "timestamp": datetime.utcnow().isoformat(),
    }


# Global batch processing state
_batch_state = {
    "is_running": False,
    "started_at": None,
    "last_report": None,
    "last_error": None,
}


def _run_batch_background():
    """Background task running extraction and grouping over pending records."""
    global _batch_state

    _batch_state["started_at"] = datetime.utcnow().isoformat()
    _batch_state["last_error"] = None
    try:
        report = get_pipeline().run_batch()
        _batch_state["last_report"] = report.model_dump()
    except Exception as e:
        logger.exception(f"Background batch failed: {e}")
        _batch_state["last_error"] = str(e)
    finally:
        _batch_state["is_running"] = False


@app.post("/batch/run")
def run_batch(background_tasks: BackgroundTasks):
    """Start processing every pending record in the background."""
    global _batch_state

    if _batch_state["is_running"]:
        return {
            "status": "already_running",
            "started_at": _batch_state["started_at"],
            "message": "A batch is already running",
        }

    pending = len(get_pipeline().store.pending_ids())
    if pending == 0:
        return {"status": "no_pending", "message": "No pending records to process"}

    _batch_state["is_running"] = True
    background_tasks.add_task(_run_batch_background)

    return {
        "status": "started",
        "pending_count": pending,
        "message": f"Started processing {pending} records",
    }


@app.get("/batch/running")
def get_batch_running_status():
    """Current state of the background batch."""
    return dict(_batch_state)


@app.get("/status")
def get_status():
    """Counts by overall status."""
    return get_pipeline().get_status_summary()


@app.get("/export/validate")
def validate_export():
    """Check that every record has a unique, filesystem-safe export name."""
    errors = get_pipeline().validate_export()
    return {"valid": not errors, "errors": errors}


# --- Lifecycle ---

@app.on_event("startup")
async def startup_event():
    """Initialize on startup."""
    logger.info("Starting Autolabel API...")
    logger.info(f"Record store: {settings.state_file}")
    logger.info(f"API token: {settings.api_token[:8]}...")


@app.on_event("shutdown")
async def shutdown_event():
    """Stop extraction workers."""
    if _pipeline is not None:
        _pipeline.close()
