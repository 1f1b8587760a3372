"""Batch OCR over a folder of images, and the report formats for its results."""

from __future__ import annotations

import csv
import io
import json
from collections.abc import Iterable
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path

import structlog
import yaml

from .processing.ocr import OCREngine, load_image

log = structlog.get_logger()

REPORT_FORMATS = ("json", "yaml", "markdown", "csv", "text")


@dataclass
class BatchOCRResult:
    file_name: str
    file_path: str
    text: str = ""
    confidence: float = 0.0
    processing_time_ms: float = 0.0
    success: bool = False
    error: str | None = None

    def preview(self, width: int = 50) -> str:
        if not self.success:
            return self.error or "Failed"
        return self.text if len(self.text) <= width else self.text[:width] + "..."


def find_images(folder: str | Path, pattern: str = "*.png", recursive: bool = False) -> list[Path]:
    folder = Path(folder)
    if not folder.is_dir():
        raise FileNotFoundError(f"Folder not found: {folder}")
    matches = folder.rglob(pattern) if recursive else folder.glob(pattern)
    return sorted(p for p in matches if p.is_file())


def run_batch(engine: OCREngine, files: Iterable[Path]) -> list[BatchOCRResult]:
    """OCR each file; a failure is recorded and the batch moves on."""
    results: list[BatchOCRResult] = []
    for path in files:
        try:
            ocr = engine.recognize(load_image(path))
        except Exception as e:
            log.error("batch_ocr_failed", file=str(path), error=str(e))
            results.append(
                BatchOCRResult(file_name=path.name, file_path=str(path), error=str(e))
            )
            continue
        results.append(
            BatchOCRResult(
                file_name=path.name,
                file_path=str(path),
                text=ocr.text or "",
                confidence=ocr.confidence,
                processing_time_ms=ocr.processing_time_ms,
                success=bool(ocr.text.strip()),
            )
        )
    return results


def render_markdown(results: list[BatchOCRResult], now: datetime | None = None) -> str:
    now = now or datetime.now()
    ok = sum(1 for r in results if r.success)
    out = [
        "# OCR Batch Results",
        "",
        f"**Processed:** {len(results)} images",
        f"**Successful:** {ok}",
        f"**Failed:** {len(results) - ok}",
        f"**Date:** {now:%Y-%m-%d %H:%M:%S}",
        "",
        "---",
        "",
    ]
    for r in results:
        out += [f"## {r.file_name}", ""]
        if r.success:
            out += [f"**Confidence:** {r.confidence:.0%}", "", "```", r.text, "```"]
        else:
            out += ["**Status:** Failed", f"**Error:** {r.error}"]
        out.append("")
    return "\n".join(out)


def render_csv(results: list[BatchOCRResult]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(["FileName", "Success", "Confidence", "Text", "Error"])
    for r in results:
        writer.writerow([r.file_name, r.success, r.confidence, r.text, r.error or ""])
    return buf.getvalue()


def render_text(results: list[BatchOCRResult]) -> str:
    separator = "\n\n" + "=" * 80 + "\n\n"
    return separator.join(f"File: {r.file_name}\nText:\n{r.text}" for r in results)


def render_report(results: list[BatchOCRResult], fmt: str) -> str:
    fmt = fmt.lower()
    if fmt == "json":
        return json.dumps([asdict(r) for r in results], indent=2, ensure_ascii=False)
    if fmt == "yaml":
        return yaml.safe_dump([asdict(r) for r in results], sort_keys=False, allow_unicode=True)
    if fmt == "markdown":
        return render_markdown(results)
    if fmt == "csv":
        return render_csv(results)
    if fmt == "text":
        return render_text(results)
    raise ValueError(f"Unknown format: {fmt}")


def write_report(results: list[BatchOCRResult], path: str | Path, fmt: str) -> Path:
    content = render_report(results, fmt)
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    log.info("batch_report_written", path=str(path), format=fmt, results=len(results))
    return path
