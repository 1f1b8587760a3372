"""Exporter contract shared by the JSON and CSV writers."""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from pathlib import Path

import structlog

from ..models import (
    CaptureSession,
    CaptureStatus,
    ExportFormat,
    ExportOptions,
    ExportResult,
    Project,
    ScreenCapture,
)

log = structlog.get_logger()

INCOMPLETE_WARNING = "Some captures are incomplete"


class Exporter(ABC):
    """Writes a project or a single session to one file.

    Subclasses implement ``_write_project`` / ``_write_session`` and return the
    path actually written. Any exception is turned into a failed result.
    """

    file_extension: str = ""

    def export_project(
        self, project: Project, output_path: str | Path, options: ExportOptions
    ) -> ExportResult:
        return self._run(
            lambda warnings: self._write_project(project, Path(output_path), options, warnings),
            project.capture_count,
            output_path,
        )

    def export_session(
        self, session: CaptureSession, output_path: str | Path, options: ExportOptions
    ) -> ExportResult:
        return self._run(
            lambda warnings: self._write_session(session, Path(output_path), options, warnings),
            len(session.captures),
            output_path,
        )

    def _run(self, write, count: int, output_path: str | Path) -> ExportResult:
        start = time.perf_counter()
        result = ExportResult()
        try:
            written: Path = write(result.warnings)
            result.success = True
            result.file_path = str(written)
            result.captures_exported = count
            result.file_size_bytes = written.stat().st_size
            log.info(
                "export_written",
                exporter=type(self).__name__,
                path=str(written),
                captures=count,
                bytes=result.file_size_bytes,
            )
        except Exception as e:
            result.success = False
            result.error = str(e)
            log.error("export_failed", exporter=type(self).__name__, path=str(output_path), error=str(e))
        finally:
            result.duration_ms = (time.perf_counter() - start) * 1000
        return result

    @abstractmethod
    def _write_project(
        self, project: Project, path: Path, options: ExportOptions, warnings: list[str]
    ) -> Path: ...

    @abstractmethod
    def _write_session(
        self, session: CaptureSession, path: Path, options: ExportOptions, warnings: list[str]
    ) -> Path: ...


def note_incomplete(capture: ScreenCapture, warnings: list[str]) -> None:
    if capture.status is not CaptureStatus.COMPLETED and INCOMPLETE_WARNING not in warnings:
        warnings.append(INCOMPLETE_WARNING)


def get_exporter(fmt: ExportFormat | str) -> Exporter:
    from .csv_exporter import CsvExporter
    from .json_exporter import JsonExporter

    fmt = ExportFormat(fmt.lower() if isinstance(fmt, str) else fmt)
    if fmt is ExportFormat.CSV:
        return CsvExporter()
    return JsonExporter()
