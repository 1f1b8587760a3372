"""Human-readable renderings of OCR results."""

from __future__ import annotations

import json
from collections.abc import Iterable

from .models import DisplayMode, OCRResult, ScreenCapture


def _line_texts(result: OCRResult) -> list[str]:
    return [t for t in (line.text.strip() for line in result.lines) if t]


def format_ocr_text(result: OCRResult, mode: DisplayMode | str = DisplayMode.CONTINUOUS) -> str:
    """Render ``result`` for display.

    continuous: raw text, trimmed.
    lines:      non-empty line texts joined with ", ".
    structured: "[n] text" per non-empty line, n = line_number + 1.
    json:       JSON array literal of the non-empty line texts.
    """
    if not result.text.strip():
        return ""

    mode = DisplayMode.parse(mode)
    if mode is DisplayMode.LINES:
        return ", ".join(_line_texts(result))
    if mode is DisplayMode.STRUCTURED:
        return "\n".join(
            f"[{line.line_number + 1}] {line.text.strip()}"
            for line in result.lines
            if line.text.strip()
        )
    if mode is DisplayMode.JSON:
        return json.dumps(_line_texts(result), ensure_ascii=False)
    return result.text.strip()


def combine_ocr_text(
    captures: Iterable[ScreenCapture],
    mode: DisplayMode | str = DisplayMode.CONTINUOUS,
) -> str:
    """Format each capture independently and join the non-blank, distinct results."""
    seen: list[str] = []
    for capture in captures:
        if capture.ocr_result is None:
            continue
        text = format_ocr_text(capture.ocr_result, mode)
        if text.strip() and text not in seen:
            seen.append(text)
    return ", ".join(seen)
