"""Spatial relationships between OCR lines (JSON export enrichment)."""

from __future__ import annotations

from dataclasses import dataclass, field

from .models import BoundingBox, OCRLine, OCRResult


@dataclass
class LineAnalysis:
    line_number: int
    text: str
    bounding_box: BoundingBox
    relative_position: str | None = None
    vertical_gap: int = 0


@dataclass
class LayoutAnalysis:
    canvas_bounds: BoundingBox = field(default_factory=BoundingBox)
    lines: list[LineAnalysis] = field(default_factory=list)


def canvas_bounds(lines: list[OCRLine] | tuple[OCRLine, ...]) -> BoundingBox:
    if not lines:
        return BoundingBox()
    min_x = min(ln.bounding_box.x for ln in lines)
    min_y = min(ln.bounding_box.y for ln in lines)
    max_x = max(ln.bounding_box.right for ln in lines)
    max_y = max(ln.bounding_box.bottom for ln in lines)
    return BoundingBox(x=min_x, y=min_y, width=max_x - min_x, height=max_y - min_y)


def relative_position(reference: BoundingBox, target: BoundingBox) -> str:
    """Where ``target`` sits relative to ``reference``, by center-point deltas."""
    dy = (target.y + target.height // 2) - (reference.y + reference.height // 2)
    dx = (target.x + target.width // 2) - (reference.x + reference.width // 2)

    if abs(dy) > abs(dx):
        aligned = abs(dx) < reference.width // 4
        if dy > 0:
            return "below" if aligned else "below-offset"
        return "above" if aligned else "above-offset"

    level = abs(dy) < reference.height // 2
    if dx > 0:
        return "right" if level else "diagonal-right"
    return "left" if level else "diagonal-left"


def analyze_layout(result: OCRResult) -> LayoutAnalysis:
    analysis = LayoutAnalysis()
    if not result.lines:
        return analysis

    analysis.canvas_bounds = canvas_bounds(result.lines)
    prev: OCRLine | None = None
    for line in result.lines:
        entry = LineAnalysis(
            line_number=line.line_number,
            text=line.text,
            bounding_box=line.bounding_box,
        )
        if prev is not None:
            entry.relative_position = relative_position(prev.bounding_box, line.bounding_box)
            # negative when the boxes overlap vertically
            entry.vertical_gap = line.bounding_box.y - prev.bounding_box.bottom
        analysis.lines.append(entry)
        prev = line
    return analysis
