"""Project and session statistics."""

from __future__ import annotations

from collections import Counter
from collections.abc import Sequence
from typing import Any

from .models import (
    AnalyticsData,
    CaptureSession,
    CaptureStatus,
    ConfidenceDistribution,
    Project,
    ScreenCapture,
)

HIGH_CONFIDENCE = 0.9
MEDIUM_CONFIDENCE = 0.7


def calculate(captures: Sequence[ScreenCapture]) -> AnalyticsData:
    data = AnalyticsData(total_captures=len(captures))
    if not captures:
        return data

    statuses = Counter(c.status for c in captures)
    data.completed_captures = statuses[CaptureStatus.COMPLETED]
    data.failed_captures = statuses[CaptureStatus.FAILED]
    data.processing_captures = statuses[CaptureStatus.PROCESSING]
    data.status_breakdown = {status.value: count for status, count in statuses.items()}

    data.earliest_capture = min(c.timestamp for c in captures)
    data.latest_capture = max(c.timestamp for c in captures)

    results = [c.ocr_result for c in captures if c.ocr_result is not None]
    if not results:
        return data

    n = len(results)
    confidences = [r.confidence for r in results]
    data.average_confidence = sum(confidences) / n

    high = sum(1 for c in confidences if c >= HIGH_CONFIDENCE)
    medium = sum(1 for c in confidences if MEDIUM_CONFIDENCE <= c < HIGH_CONFIDENCE)
    low = n - high - medium
    data.confidence_breakdown = ConfidenceDistribution(
        high=high,
        medium=medium,
        low=low,
        high_percentage=high / n * 100,
        medium_percentage=medium / n * 100,
        low_percentage=low / n * 100,
    )

    data.total_words = sum(r.word_count for r in results)
    data.total_lines = sum(len(r.lines) for r in results)
    data.engine_usage = dict(Counter(r.engine_name or "unknown" for r in results))
    data.average_processing_time_ms = sum(r.processing_time_ms for r in results) / n
    return data


def project_analytics(project: Project) -> AnalyticsData:
    return calculate(project.all_captures())


def session_analytics(session: CaptureSession) -> AnalyticsData:
    return calculate(session.captures)


def summary(data: AnalyticsData) -> str:
    cb = data.confidence_breakdown
    lines = [
        f"Total Captures: {data.total_captures}",
        f"Success Rate: {data.success_rate:.1f}%",
        (
            f"Completed: {data.completed_captures}, Failed: {data.failed_captures}, "
            f"Processing: {data.processing_captures}"
        ),
        "",
    ]
    if data.total_captures:
        lines += [
            f"Average OCR Confidence: {data.average_confidence:.1%}",
            "Confidence Distribution:",
            f"  High (>=90%): {cb.high} ({cb.high_percentage:.1f}%)",
            f"  Medium (70-89%): {cb.medium} ({cb.medium_percentage:.1f}%)",
            f"  Low (<70%): {cb.low} ({cb.low_percentage:.1f}%)",
            "",
            f"Total Words Extracted: {data.total_words:,}",
            f"Total Lines Extracted: {data.total_lines:,}",
            "",
        ]
        if data.earliest_capture and data.latest_capture:
            lines.append(
                f"Date Range: {data.earliest_capture:%Y-%m-%d} to {data.latest_capture:%Y-%m-%d}"
            )
    return "\n".join(lines).rstrip() + "\n"


def to_dict(data: AnalyticsData) -> dict[str, Any]:
    cb = data.confidence_breakdown
    return {
        "total_captures": data.total_captures,
        "completed_captures": data.completed_captures,
        "failed_captures": data.failed_captures,
        "processing_captures": data.processing_captures,
        "success_rate": round(data.success_rate, 2),
        "average_confidence": data.average_confidence,
        "average_processing_time_ms": data.average_processing_time_ms,
        "confidence_breakdown": {
            "high": cb.high,
            "medium": cb.medium,
            "low": cb.low,
            "high_percentage": cb.high_percentage,
            "medium_percentage": cb.medium_percentage,
            "low_percentage": cb.low_percentage,
        },
        "engine_usage": dict(data.engine_usage),
        "status_breakdown": dict(data.status_breakdown),
        "earliest_capture": data.earliest_capture.isoformat() if data.earliest_capture else None,
        "latest_capture": data.latest_capture.isoformat() if data.latest_capture else None,
        "total_words": data.total_words,
        "total_lines": data.total_lines,
    }
