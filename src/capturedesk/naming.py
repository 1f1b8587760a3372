"""Capture file naming: default patterns and OCR-derived smart filenames."""

from __future__ import annotations

import re
from datetime import datetime
from pathlib import Path

from .config import NamingConfig
from .models import OCRResult

# Characters rejected by at least one supported filesystem (Windows is the strictest)
_INVALID_CHARS = frozenset('<>:"/\\|?*') | frozenset(chr(i) for i in range(32))
_COLLAPSE = re.compile(r"[_\s]+")

# .NET-style format tokens, longest first so "yyyy" wins over "yy"
_TOKEN = re.compile(r"yyyy|yy|MM|dd|HH|hh|mm|ss|fff|tt")


def format_timestamp(ts: datetime, fmt: str) -> str:
    """Render ``ts`` with a ``yyyyMMdd_HHmmss``-style pattern."""

    def _sub(m: re.Match) -> str:
        tok = m.group(0)
        if tok == "yyyy":
            return f"{ts.year:04d}"
        if tok == "yy":
            return f"{ts.year % 100:02d}"
        if tok == "MM":
            return f"{ts.month:02d}"
        if tok == "dd":
            return f"{ts.day:02d}"
        if tok == "HH":
            return f"{ts.hour:02d}"
        if tok == "hh":
            return f"{(ts.hour % 12) or 12:02d}"
        if tok == "mm":
            return f"{ts.minute:02d}"
        if tok == "ss":
            return f"{ts.second:02d}"
        if tok == "fff":
            return f"{ts.microsecond // 1000:03d}"
        return "AM" if ts.hour < 12 else "PM"

    return _TOKEN.sub(_sub, fmt)


def sanitize_filename(text: str) -> str:
    """Replace invalid filename characters with ``_`` and collapse runs of ``_``/whitespace."""
    if not text or not text.strip():
        return ""
    replaced = "".join("_" if ch in _INVALID_CHARS else ch for ch in text)
    return _COLLAPSE.sub("_", replaced)


def _fill_pattern(pattern: str, timestamp: datetime, naming: NamingConfig, sequence: str) -> str:
    return (
        pattern.replace("{timestamp}", format_timestamp(timestamp, naming.timestamp_format))
        .replace("{sequence}", sequence)
    )


def fallback_filename(timestamp: datetime, extension: str, naming: NamingConfig) -> str:
    name = _fill_pattern(
        naming.fallback_pattern, timestamp, naming, f"{timestamp.microsecond // 1000:03d}"
    )
    return f"{name}.{extension}"


def _first_line(result: OCRResult) -> str:
    if result.lines:
        return result.lines[0].text
    lines = [ln for ln in re.split(r"[\r\n]+", result.text) if ln]
    return lines[0] if lines else result.text


def generate_smart_filename(
    result: OCRResult | None,
    timestamp: datetime,
    extension: str,
    naming: NamingConfig,
) -> str:
    """Derive a filename from the first recognized line of text.

    Falls back to ``naming.fallback_pattern`` when smart names are disabled,
    there is no text, or nothing survives sanitization. Pure and deterministic.
    """
    extension = extension.lstrip(".")
    if not naming.use_smart_filenames or result is None or not result.text.strip():
        return fallback_filename(timestamp, extension, naming)

    sanitized = sanitize_filename(_first_line(result).strip())
    sanitized = sanitized[: naming.smart_filename_max_length].rstrip("-_").lower()
    if not sanitized.strip():
        return fallback_filename(timestamp, extension, naming)

    return f"{sanitized}_{format_timestamp(timestamp, naming.timestamp_format)}.{extension}"


def build_capture_filename(
    pattern: str,
    session_name: str,
    timestamp: datetime,
    sequence: int,
    extension: str,
    naming: NamingConfig,
) -> str:
    """Initial name for a freshly saved capture (``naming.default_pattern``)."""
    name = _fill_pattern(
        pattern.replace("{session}", session_name.replace(" ", "_")),
        timestamp,
        naming,
        f"{sequence:03d}",
    )
    return f"{sanitize_filename(name) or 'capture'}.{extension.lstrip('.')}"


def ocr_sidecar_path(image_path: str | Path) -> Path:
    """``<dir>/<stem>_ocr.txt`` next to the image."""
    image_path = Path(image_path)
    return image_path.with_name(f"{image_path.stem}_ocr.txt")
