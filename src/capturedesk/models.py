"""Data models."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class CaptureStatus(str, Enum):
    CAPTURED = "captured"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class CaptureMode(str, Enum):
    CAPTURE_AND_OCR = "capture_and_ocr"
    CAPTURE_ONLY = "capture_only"


class DisplayMode(str, Enum):
    CONTINUOUS = "continuous"
    LINES = "lines"
    STRUCTURED = "structured"
    JSON = "json"

    @classmethod
    def parse(cls, value: str | DisplayMode | None) -> DisplayMode:
        """Unknown or empty values fall back to continuous."""
        if isinstance(value, DisplayMode):
            return value
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.CONTINUOUS


class ExportFormat(str, Enum):
    JSON = "json"
    CSV = "csv"


class MetadataFieldType(str, Enum):
    TEXT = "text"
    MULTILINE_TEXT = "multiline_text"
    NUMBER = "number"
    DATE = "date"
    DROPDOWN = "dropdown"
    CHECKBOX = "checkbox"
    EMAIL = "email"
    URL = "url"
    CURRENCY = "currency"
    MULTI_SELECT = "multi_select"


# -- OCR --


@dataclass(frozen=True)
class BoundingBox:
    x: int = 0
    y: int = 0
    width: int = 0
    height: int = 0

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height


@dataclass(frozen=True)
class OCRWord:
    text: str = ""
    bounding_box: BoundingBox = field(default_factory=BoundingBox)


@dataclass(frozen=True)
class OCRLine:
    text: str = ""
    confidence: float = 0.0
    line_number: int = 0
    bounding_box: BoundingBox = field(default_factory=BoundingBox)
    words: tuple[OCRWord, ...] = ()


@dataclass(frozen=True)
class OCRResult:
    text: str = ""
    confidence: float = 0.0
    engine_name: str = ""
    processing_time_ms: float = 0.0
    lines: tuple[OCRLine, ...] = ()
    fallback_used: bool = False

    @property
    def word_count(self) -> int:
        return len(self.text.split())


# -- Templates --


@dataclass
class MetadataField:
    name: str = ""
    label: str = ""
    field_type: MetadataFieldType = MetadataFieldType.TEXT
    is_required: bool = False
    default_value: str | None = None
    dropdown_options: list[str] | None = None
    placeholder: str | None = None
    help_text: str | None = None
    display_order: int = 0
    id: str = field(default_factory=new_id)

    def clone(self) -> MetadataField:
        return MetadataField(
            name=self.name,
            label=self.label,
            field_type=self.field_type,
            is_required=self.is_required,
            default_value=self.default_value,
            dropdown_options=list(self.dropdown_options) if self.dropdown_options is not None else None,
            placeholder=self.placeholder,
            help_text=self.help_text,
            display_order=self.display_order,
        )


@dataclass
class MetadataTemplate:
    name: str = ""
    description: str = ""
    category: str = ""
    fields: list[MetadataField] = field(default_factory=list)
    is_built_in: bool = False
    created_at: datetime = field(default_factory=utcnow)
    modified_at: datetime = field(default_factory=utcnow)
    usage_count: int = 0
    id: str = field(default_factory=new_id)

    def clone(self) -> MetadataTemplate:
        """Editable copy with a fresh identity; used to customize built-ins."""
        return MetadataTemplate(
            name=f"{self.name} (Copy)",
            description=self.description,
            category=self.category,
            fields=[f.clone() for f in self.fields],
        )

    def validate(self) -> list[str]:
        errors: list[str] = []
        if not self.name.strip():
            errors.append("Template name is required")
        if not self.fields:
            errors.append("Template must have at least one field")

        seen: set[str] = set()
        for f in self.fields:
            if not f.name.strip():
                errors.append("All fields must have a name")
            key = f.name.lower()
            if key in seen:
                errors.append(f"Duplicate field name: {f.name}")
            else:
                seen.add(key)
        return errors


@dataclass
class CaptureMetadata:
    template_id: str = ""
    template_name: str = ""
    values: dict[str, str] = field(default_factory=dict)
    applied_at: datetime = field(default_factory=utcnow)


# -- Projects --


@dataclass
class ScreenCapture:
    sequence_number: int = 0
    file_name: str = ""
    file_path: str = ""
    timestamp: datetime = field(default_factory=utcnow)
    status: CaptureStatus = CaptureStatus.CAPTURED
    ocr_result: OCRResult | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    template_metadata: CaptureMetadata | None = None
    thumbnail_path: str = ""
    id: str = field(default_factory=new_id)


@dataclass
class CaptureSession:
    name: str = ""
    created: datetime = field(default_factory=utcnow)
    captures: list[ScreenCapture] = field(default_factory=list)
    notes: str = ""
    last_sequence: int = 0
    id: str = field(default_factory=new_id)

    def next_sequence(self) -> int:
        """Sequence numbers are never reused, even after deletions."""
        highest = max((c.sequence_number for c in self.captures), default=0)
        return max(self.last_sequence, highest, len(self.captures)) + 1


@dataclass
class Project:
    name: str = ""
    description: str = ""
    created: datetime = field(default_factory=utcnow)
    modified: datetime = field(default_factory=utcnow)
    save_path: str = ""
    sessions: list[CaptureSession] = field(default_factory=list)
    active_metadata_template: str = "Basic Capture"
    id: str = field(default_factory=new_id)

    @property
    def capture_count(self) -> int:
        return sum(len(s.captures) for s in self.sessions)

    def all_captures(self) -> list[ScreenCapture]:
        return [c for s in self.sessions for c in s.captures]


# -- Capture acquisition --


@dataclass(frozen=True)
class Region:
    x: int
    y: int
    width: int
    height: int


@dataclass
class CaptureResult:
    image: Any = None
    region: Region | None = None
    timestamp: datetime = field(default_factory=utcnow)
    success: bool = False
    error: str | None = None


@dataclass
class LockedRegion:
    x: int
    y: int
    width: int
    height: int
    locked_at: datetime = field(default_factory=utcnow)
    capture_count: int = 0

    def is_valid(self) -> bool:
        return self.width > 0 and self.height > 0

    def coordinates(self) -> str:
        return f"X:{self.x}, Y:{self.y}, W:{self.width}, H:{self.height}"


# -- Export --


@dataclass
class ExportOptions:
    include_ocr: bool = True
    include_metadata: bool = True
    include_bounding_boxes: bool = True
    include_thumbnails: bool = False
    compress_output: bool = False
    format: ExportFormat = ExportFormat.JSON
    ocr_text_format: DisplayMode = DisplayMode.CONTINUOUS


@dataclass
class ExportResult:
    success: bool = False
    file_path: str | None = None
    error: str | None = None
    captures_exported: int = 0
    file_size_bytes: int = 0
    duration_ms: float = 0.0
    warnings: list[str] = field(default_factory=list)


# -- Analytics --


@dataclass
class ConfidenceDistribution:
    high: int = 0
    medium: int = 0
    low: int = 0
    high_percentage: float = 0.0
    medium_percentage: float = 0.0
    low_percentage: float = 0.0


@dataclass
class AnalyticsData:
    total_captures: int = 0
    completed_captures: int = 0
    failed_captures: int = 0
    processing_captures: int = 0
    average_confidence: float = 0.0
    average_processing_time_ms: float = 0.0
    confidence_breakdown: ConfidenceDistribution = field(default_factory=ConfidenceDistribution)
    engine_usage: dict[str, int] = field(default_factory=dict)
    status_breakdown: dict[str, int] = field(default_factory=dict)
    earliest_capture: datetime | None = None
    latest_capture: datetime | None = None
    total_words: int = 0
    total_lines: int = 0

    @property
    def success_rate(self) -> float:
        if not self.total_captures:
            return 0.0
        return self.completed_captures / self.total_captures * 100
