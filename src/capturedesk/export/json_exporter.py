"""JSON export with optional layout analysis and gzip compression."""

from __future__ import annotations

import base64
import gzip
import json
from pathlib import Path
from typing import Any

from ..layout import analyze_layout
from ..models import CaptureSession, ExportOptions, Project, ScreenCapture, utcnow
from ..storage.codec import box_to_dict, capture_metadata_to_dict
from .base import Exporter, note_incomplete


def _options_dict(options: ExportOptions) -> dict[str, Any]:
    return {
        "include_ocr": options.include_ocr,
        "include_metadata": options.include_metadata,
        "include_bounding_boxes": options.include_bounding_boxes,
        "include_thumbnails": options.include_thumbnails,
        "compress_output": options.compress_output,
        "format": options.format.value,
        "ocr_text_format": options.ocr_text_format.value,
    }


def _envelope(options: ExportOptions) -> dict[str, Any]:
    return {
        "exported_at": utcnow().isoformat(),
        "format": "JSON",
        "version": "1.0",
        "options": _options_dict(options),
    }


def compressed_path(path: Path) -> Path:
    """Sibling ``<stem>.json.gz``, whatever extension was requested."""
    if path.name.endswith(".json.gz"):
        return path
    return path.with_name(f"{path.stem}.json.gz")


class JsonExporter(Exporter):
    file_extension = ".json"

    def _write_project(
        self, project: Project, path: Path, options: ExportOptions, warnings: list[str]
    ) -> Path:
        data = {
            "export_info": _envelope(options),
            "project": {
                "id": project.id,
                "name": project.name,
                "description": project.description,
                "created": project.created.isoformat(),
                "save_path": project.save_path,
                "session_count": len(project.sessions),
                "total_captures": project.capture_count,
            },
            "sessions": [self._session_data(s, options, warnings) for s in project.sessions],
        }
        return self._write(data, path, options.compress_output)

    def _write_session(
        self, session: CaptureSession, path: Path, options: ExportOptions, warnings: list[str]
    ) -> Path:
        data = {
            "export_info": _envelope(options),
            "session": self._session_data(session, options, warnings),
        }
        return self._write(data, path, options.compress_output)

    def _session_data(
        self, session: CaptureSession, options: ExportOptions, warnings: list[str]
    ) -> dict[str, Any]:
        return {
            "id": session.id,
            "name": session.name,
            "created": session.created.isoformat(),
            "capture_count": len(session.captures),
            "captures": [self._capture_data(c, options, warnings) for c in session.captures],
        }

    def _capture_data(
        self, capture: ScreenCapture, options: ExportOptions, warnings: list[str]
    ) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": capture.id,
            "sequence_number": capture.sequence_number,
            "file_name": capture.file_name,
            "file_path": capture.file_path,
            "timestamp": capture.timestamp.isoformat(),
            "status": capture.status.value,
        }
        note_incomplete(capture, warnings)

        if options.include_ocr and capture.ocr_result is not None:
            data["ocr_result"] = self._ocr_data(capture, options)

        if options.include_metadata:
            if capture.metadata:
                data["metadata"] = dict(capture.metadata)
            if capture.template_metadata is not None:
                data["template_metadata"] = capture_metadata_to_dict(capture.template_metadata)

        if options.include_thumbnails and capture.thumbnail_path:
            try:
                raw = Path(capture.thumbnail_path).read_bytes()
            except OSError:
                raw = None  # thumbnails are best-effort
            if raw is not None:
                data["thumbnail_base64"] = base64.b64encode(raw).decode("ascii")

        return data

    @staticmethod
    def _ocr_data(capture: ScreenCapture, options: ExportOptions) -> dict[str, Any]:
        result = capture.ocr_result
        ocr: dict[str, Any] = {
            "text": result.text,
            "confidence": result.confidence,
            "engine_name": result.engine_name,
        }
        if not options.include_bounding_boxes:
            ocr["lines"] = [
                {"text": ln.text, "confidence": ln.confidence, "line_number": ln.line_number}
                for ln in result.lines
            ]
            return ocr

        layout = analyze_layout(result)
        lines = []
        for index, ln in enumerate(result.lines):
            entry: dict[str, Any] = {
                "text": ln.text,
                "confidence": ln.confidence,
                "line_number": ln.line_number,
                "bounding_box": box_to_dict(ln.bounding_box),
                "words": [
                    {"text": w.text, "bounding_box": box_to_dict(w.bounding_box)} for w in ln.words
                ],
                "spatial_relationship": None,
            }
            if index < len(layout.lines):
                entry["spatial_relationship"] = {
                    "relative_position": layout.lines[index].relative_position,
                    "vertical_gap": layout.lines[index].vertical_gap,
                }
            lines.append(entry)
        ocr["lines"] = lines
        ocr["layout"] = {
            "canvas_bounds": box_to_dict(layout.canvas_bounds),
            "total_lines": len(result.lines),
            "total_words": sum(len(ln.words) for ln in result.lines),
        }
        return ocr

    @staticmethod
    def _write(data: dict[str, Any], path: Path, compress: bool) -> Path:
        text = json.dumps(data, indent=2, ensure_ascii=False)
        path.parent.mkdir(parents=True, exist_ok=True)
        if compress:
            gz_path = compressed_path(path)
            with gzip.open(gz_path, "wt", encoding="utf-8") as f:
                f.write(text)
            return gz_path
        path.write_text(text, encoding="utf-8")
        return path
