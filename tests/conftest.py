"""Shared fixtures: temp data dir, stores, a fake OCR engine and a fake screen grabber."""

from __future__ import annotations

import threading
import time
from datetime import datetime, timezone
from pathlib import Path

import pytest
from PIL import Image

from capturedesk.config import AppSettings, CaptureConfig, Config, OCRConfig
from capturedesk.models import BoundingBox, CaptureResult, OCRLine, OCRResult, OCRWord, Region
from capturedesk.storage.projects import ProjectStore
from capturedesk.storage.templates import TemplateStore

FIXED_TS = datetime(2024, 3, 9, 14, 5, 7, 123000, tzinfo=timezone.utc)


def make_result(*lines: str, confidence: float = 0.95, engine: str = "Fake") -> OCRResult:
    """OCRResult with one line per argument, stacked 30px apart."""
    ocr_lines = []
    for i, text in enumerate(lines):
        words = []
        x = 10
        for word in text.split():
            words.append(OCRWord(text=word, bounding_box=BoundingBox(x, 10 + i * 30, 10 * len(word), 20)))
            x += 10 * len(word) + 5
        ocr_lines.append(
            OCRLine(
                text=text,
                confidence=confidence,
                line_number=i,
                bounding_box=BoundingBox(10, 10 + i * 30, max(x - 15, 1), 20),
                words=tuple(words),
            )
        )
    return OCRResult(
        text="\n".join(lines),
        confidence=confidence,
        engine_name=engine,
        processing_time_ms=12.0,
        lines=tuple(ocr_lines),
    )


def write_png(path: Path, size: tuple[int, int] = (40, 20)) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", size, "white").save(path, "PNG")
    return path


class FakeEngine:
    """Returns queued results in call order and records concurrency."""

    name = "Fake"

    def __init__(self, results=None, delay: float = 0.0, fail_on: set[int] | None = None):
        self.results = list(results or [])
        self.delay = delay
        self.fail_on = fail_on or set()
        self.calls = 0
        self.sizes: list[tuple[int, int]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def is_available(self) -> bool:
        return True

    def recognize(self, image: Image.Image) -> OCRResult:
        with self._lock:
            index = self.calls
            self.calls += 1
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
            self.sizes.append(image.size)
        try:
            if self.delay:
                time.sleep(self.delay)
            if index in self.fail_on:
                raise RuntimeError(f"engine exploded on call {index}")
            if index < len(self.results):
                return self.results[index]
            return make_result(f"text {index}")
        finally:
            with self._lock:
                self.in_flight -= 1


class FakeGrabber:
    def __init__(self, success: bool = True, timestamp: datetime = FIXED_TS):
        self.success = success
        self.timestamp = timestamp
        self.regions: list[Region | None] = []

    def capture_fullscreen(self) -> CaptureResult:
        self.regions.append(None)
        return self._result(Region(0, 0, 64, 48))

    def capture_region(self, x: int, y: int, width: int, height: int) -> CaptureResult:
        region = Region(x, y, width, height)
        self.regions.append(region)
        return self._result(region)

    def _result(self, region: Region) -> CaptureResult:
        if not self.success:
            return CaptureResult(region=region, timestamp=self.timestamp, success=False, error="no display")
        image = Image.new("RGB", (region.width, region.height), "white")
        return CaptureResult(image=image, region=region, timestamp=self.timestamp, success=True)


@pytest.fixture
def data_dir(tmp_path):
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture
def config(data_dir):
    return Config(
        app=AppSettings(data_dir=str(data_dir)),
        capture=CaptureConfig(hide_delay_ms=0),
        ocr=OCRConfig(queue_delay_ms=5, rename_settle_ms=0),
    )


@pytest.fixture
def store(data_dir):
    return ProjectStore(data_dir)


@pytest.fixture
def templates(data_dir):
    return TemplateStore(data_dir)


@pytest.fixture
def project(store):
    return store.create_project("Test Project", "fixture")


@pytest.fixture
def session(store, project):
    return store.create_session(project, "Session 1")


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def grabber():
    return FakeGrabber()
