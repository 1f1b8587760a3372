"""JSON-ready dict encoding for projects and templates."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from ..models import (
    BoundingBox,
    CaptureMetadata,
    CaptureSession,
    CaptureStatus,
    MetadataField,
    MetadataFieldType,
    MetadataTemplate,
    OCRLine,
    OCRResult,
    OCRWord,
    Project,
    ScreenCapture,
)


def _dt(value: datetime) -> str:
    return value.isoformat()


def _parse_dt(value: str | None) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# -- OCR --


def box_to_dict(box: BoundingBox) -> dict[str, int]:
    return {"x": box.x, "y": box.y, "width": box.width, "height": box.height}


def box_from_dict(data: dict | None) -> BoundingBox:
    data = data or {}
    return BoundingBox(
        x=int(data.get("x", 0)),
        y=int(data.get("y", 0)),
        width=int(data.get("width", 0)),
        height=int(data.get("height", 0)),
    )


def ocr_result_to_dict(result: OCRResult) -> dict[str, Any]:
    return {
        "text": result.text,
        "confidence": result.confidence,
        "engine_name": result.engine_name,
        "processing_time_ms": result.processing_time_ms,
        "fallback_used": result.fallback_used,
        "lines": [
            {
                "text": line.text,
                "confidence": line.confidence,
                "line_number": line.line_number,
                "bounding_box": box_to_dict(line.bounding_box),
                "words": [
                    {"text": w.text, "bounding_box": box_to_dict(w.bounding_box)}
                    for w in line.words
                ],
            }
            for line in result.lines
        ],
    }


def ocr_result_from_dict(data: dict) -> OCRResult:
    return OCRResult(
        text=data.get("text", ""),
        confidence=float(data.get("confidence", 0.0)),
        engine_name=data.get("engine_name", ""),
        processing_time_ms=float(data.get("processing_time_ms", 0.0)),
        fallback_used=bool(data.get("fallback_used", False)),
        lines=tuple(
            OCRLine(
                text=ln.get("text", ""),
                confidence=float(ln.get("confidence", 0.0)),
                line_number=int(ln.get("line_number", 0)),
                bounding_box=box_from_dict(ln.get("bounding_box")),
                words=tuple(
                    OCRWord(text=w.get("text", ""), bounding_box=box_from_dict(w.get("bounding_box")))
                    for w in ln.get("words", [])
                ),
            )
            for ln in data.get("lines", [])
        ),
    )


# -- Templates --


def field_to_dict(f: MetadataField) -> dict[str, Any]:
    return {
        "id": f.id,
        "name": f.name,
        "label": f.label,
        "field_type": f.field_type.value,
        "is_required": f.is_required,
        "default_value": f.default_value,
        "dropdown_options": f.dropdown_options,
        "placeholder": f.placeholder,
        "help_text": f.help_text,
        "display_order": f.display_order,
    }


def field_from_dict(data: dict) -> MetadataField:
    f = MetadataField(
        name=data.get("name", ""),
        label=data.get("label", ""),
        field_type=MetadataFieldType(data.get("field_type", "text")),
        is_required=bool(data.get("is_required", False)),
        default_value=data.get("default_value"),
        dropdown_options=data.get("dropdown_options"),
        placeholder=data.get("placeholder"),
        help_text=data.get("help_text"),
        display_order=int(data.get("display_order", 0)),
    )
    if data.get("id"):
        f.id = data["id"]
    return f


def template_to_dict(t: MetadataTemplate) -> dict[str, Any]:
    return {
        "id": t.id,
        "name": t.name,
        "description": t.description,
        "category": t.category,
        "is_built_in": t.is_built_in,
        "created_at": _dt(t.created_at),
        "modified_at": _dt(t.modified_at),
        "usage_count": t.usage_count,
        "fields": [field_to_dict(f) for f in t.fields],
    }


def template_from_dict(data: dict) -> MetadataTemplate:
    t = MetadataTemplate(
        name=data.get("name", ""),
        description=data.get("description", ""),
        category=data.get("category", ""),
        fields=[field_from_dict(f) for f in data.get("fields", [])],
        is_built_in=bool(data.get("is_built_in", False)),
        created_at=_parse_dt(data.get("created_at")),
        modified_at=_parse_dt(data.get("modified_at")),
        usage_count=int(data.get("usage_count", 0)),
    )
    if data.get("id"):
        t.id = data["id"]
    return t


# -- Projects --


def capture_metadata_to_dict(m: CaptureMetadata) -> dict[str, Any]:
    return {
        "template_id": m.template_id,
        "template_name": m.template_name,
        "values": dict(m.values),
        "applied_at": _dt(m.applied_at),
    }


def capture_to_dict(c: ScreenCapture) -> dict[str, Any]:
    return {
        "id": c.id,
        "sequence_number": c.sequence_number,
        "file_name": c.file_name,
        "file_path": c.file_path,
        "timestamp": _dt(c.timestamp),
        "status": c.status.value,
        "ocr_result": ocr_result_to_dict(c.ocr_result) if c.ocr_result else None,
        "metadata": dict(c.metadata),
        "template_metadata": (
            capture_metadata_to_dict(c.template_metadata) if c.template_metadata else None
        ),
        "thumbnail_path": c.thumbnail_path,
    }


def capture_from_dict(data: dict) -> ScreenCapture:
    tm = data.get("template_metadata")
    return ScreenCapture(
        id=data["id"],
        sequence_number=int(data.get("sequence_number", 0)),
        file_name=data.get("file_name", ""),
        file_path=data.get("file_path", ""),
        timestamp=_parse_dt(data.get("timestamp")),
        status=CaptureStatus(data.get("status", CaptureStatus.CAPTURED.value)),
        ocr_result=ocr_result_from_dict(data["ocr_result"]) if data.get("ocr_result") else None,
        metadata=dict(data.get("metadata") or {}),
        template_metadata=(
            CaptureMetadata(
                template_id=tm.get("template_id", ""),
                template_name=tm.get("template_name", ""),
                values=dict(tm.get("values") or {}),
                applied_at=_parse_dt(tm.get("applied_at")),
            )
            if tm
            else None
        ),
        thumbnail_path=data.get("thumbnail_path", ""),
    )


def session_to_dict(s: CaptureSession) -> dict[str, Any]:
    return {
        "id": s.id,
        "name": s.name,
        "created": _dt(s.created),
        "notes": s.notes,
        "last_sequence": s.last_sequence,
        "captures": [capture_to_dict(c) for c in s.captures],
    }


def session_from_dict(data: dict) -> CaptureSession:
    return CaptureSession(
        id=data["id"],
        name=data.get("name", ""),
        created=_parse_dt(data.get("created")),
        notes=data.get("notes", ""),
        last_sequence=int(data.get("last_sequence", 0)),
        captures=[capture_from_dict(c) for c in data.get("captures", [])],
    )


def project_to_dict(p: Project) -> dict[str, Any]:
    return {
        "id": p.id,
        "name": p.name,
        "description": p.description,
        "created": _dt(p.created),
        "modified": _dt(p.modified),
        "save_path": p.save_path,
        "active_metadata_template": p.active_metadata_template,
        "sessions": [session_to_dict(s) for s in p.sessions],
    }


def project_from_dict(data: dict) -> Project:
    return Project(
        id=data["id"],
        name=data.get("name", ""),
        description=data.get("description", ""),
        created=_parse_dt(data.get("created")),
        modified=_parse_dt(data.get("modified")),
        save_path=data.get("save_path", ""),
        active_metadata_template=data.get("active_metadata_template", ""),
        sessions=[session_from_dict(s) for s in data.get("sessions", [])],
    )
