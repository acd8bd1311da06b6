"""
Autolabel Data Models
Pydantic models for photo records, extraction results and pipeline reports.
"""

import re
from datetime import datetime
from typing import Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, computed_field, field_validator

from .status import (
    ExtractionState,
    GroupingState,
    GroupSource,
    OverallStatus,
    derive_overall_status,
)

HEX_COLOR_PATTERN = re.compile(r"^#?([0-9a-fA-F]{6})$")
MAX_COLORS = 3


class ObjectColor(BaseModel):
    """A dominant color of the photographed object."""

    color: str = Field(description="Hex color, e.g. #a0522d")
    name: str = Field(default="", description="Human readable color name")

    @field_validator("color")
    @classmethod
    def normalize_hex(cls, value: str) -> str:
        match = HEX_COLOR_PATTERN.match(value.strip())
        if not match:
            raise ValueError(f"Not a hex color: {value!r}")
        return f"#{match.group(1).lower()}"

    @property
    def rgb(self) -> tuple:
        hex_digits = self.color[1:]
        return tuple(int(hex_digits[i:i + 2], 16) for i in (0, 2, 4))


class ExtractionResult(BaseModel):
    """Structured output of the code extraction capability."""

    code: Optional[str] = None
    other_text: Optional[str] = None
    object_description: Optional[str] = None
    object_colors: List[ObjectColor] = Field(default_factory=list, max_length=MAX_COLORS)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class PhotoRecord(BaseModel):
    """
    The unit of work: one photograph and everything the pipeline knows about it.

    overall_status is computed from the sub-states on every access and is
    never assigned directly.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    original_name: str
    file_path: str
    new_name: str = ""
    capture_timestamp: datetime = Field(default_factory=datetime.utcnow)

    group: str = ""
    group_source: GroupSource = GroupSource.NONE

    extracted_code: Optional[str] = None
    extracted_text: Optional[str] = None
    object_description: Optional[str] = None
    object_colors: List[ObjectColor] = Field(default_factory=list, max_length=MAX_COLORS)

    code_extraction_state: ExtractionState = ExtractionState.PENDING
    grouping_state: GroupingState = GroupingState.PENDING
    code_confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    grouping_confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    error_message: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @computed_field
    @property
    def overall_status(self) -> OverallStatus:
        return derive_overall_status(
            self.code_extraction_state,
            self.grouping_state,
            self.group,
            self.group_source,
        )

    @property
    def has_user_group(self) -> bool:
        return self.group_source is GroupSource.USER


class RecordEvent(BaseModel):
    """Status delta broadcast to observers."""

    record_id: str
    delta: Dict = Field(default_factory=dict)
    emitted_at: datetime = Field(default_factory=datetime.utcnow)


class GroupingReport(BaseModel):
    """Outcome of one similarity grouping pass."""

    considered: int = 0
    assigned: Dict[str, str] = Field(default_factory=dict)  # record id -> group
    ungrouped: List[str] = Field(default_factory=list)
    failed: Dict[str, str] = Field(default_factory=dict)  # record id -> error


class BatchReport(BaseModel):
    """Outcome of one extraction batch (and its grouping pass when run)."""

    processed: int = 0
    extracted: List[str] = Field(default_factory=list)  # valid code found
    invalid: List[str] = Field(default_factory=list)  # code found, failed validation
    no_code: List[str] = Field(default_factory=list)
    failed: Dict[str, str] = Field(default_factory=dict)  # record id -> error
    grouping: Optional[GroupingReport] = None
    duration_seconds: float = 0.0
