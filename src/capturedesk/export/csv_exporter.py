"""CSV export: one row per capture, dynamic template-field columns."""

from __future__ import annotations

import csv
from collections.abc import Iterable
from pathlib import Path

from ..formatting import format_ocr_text
from ..models import CaptureSession, ExportOptions, Project, ScreenCapture
from .base import Exporter, note_incomplete

BASE_COLUMNS = ["Project", "Session", "Sequence", "FileName", "FilePath", "Timestamp", "Status"]
OCR_COLUMNS = ["OCR_Text", "OCR_Confidence", "OCR_EngineName", "OCR_WordCount", "OCR_LineCount"]


def template_field_names(captures: Iterable[ScreenCapture]) -> list[str]:
    names: set[str] = set()
    for capture in captures:
        if capture.template_metadata is not None:
            names.update(capture.template_metadata.values)
    return sorted(names)


class CsvExporter(Exporter):
    file_extension = ".csv"

    def _write_project(
        self, project: Project, path: Path, options: ExportOptions, warnings: list[str]
    ) -> Path:
        rows = [(project.name, s.name, c) for s in project.sessions for c in s.captures]
        return self._write(rows, path, options, warnings)

    def _write_session(
        self, session: CaptureSession, path: Path, options: ExportOptions, warnings: list[str]
    ) -> Path:
        rows = [("", session.name, c) for c in session.captures]
        return self._write(rows, path, options, warnings)

    def _write(
        self,
        rows: list[tuple[str, str, ScreenCapture]],
        path: Path,
        options: ExportOptions,
        warnings: list[str],
    ) -> Path:
        fields = template_field_names(c for _, _, c in rows)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8", newline="") as f:
            writer = csv.writer(f)
            writer.writerow(self._header(options, fields))
            for project_name, session_name, capture in rows:
                note_incomplete(capture, warnings)
                writer.writerow(self._row(project_name, session_name, capture, options, fields))
        return path

    @staticmethod
    def _header(options: ExportOptions, fields: list[str]) -> list[str]:
        header = list(BASE_COLUMNS)
        if options.include_ocr:
            header += OCR_COLUMNS
        if options.include_metadata:
            header.append("Template_Name")
            header += [f"Field_{name}" for name in fields]
        return header

    @staticmethod
    def _row(
        project_name: str,
        session_name: str,
        capture: ScreenCapture,
        options: ExportOptions,
        fields: list[str],
    ) -> list[str]:
        row = [
            project_name,
            session_name,
            str(capture.sequence_number),
            capture.file_name,
            capture.file_path,
            capture.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            capture.status.value,
        ]

        if options.include_ocr:
            result = capture.ocr_result
            if result is not None:
                row += [
                    format_ocr_text(result, options.ocr_text_format),
                    f"{result.confidence:.4f}",
                    result.engine_name or "",
                    str(result.word_count),
                    str(len(result.lines)),
                ]
            else:
                row += ["", "", "", "0", "0"]

        if options.include_metadata:
            tm = capture.template_metadata
            row.append(tm.template_name if tm else "")
            for name in fields:
                if tm is not None and name in tm.values:
                    row.append(tm.values[name])
                else:
                    row.append(capture.metadata.get(name, ""))
        return row
