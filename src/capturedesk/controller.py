"""Capture controller: ties acquisition, persistence and the OCR queue together.

This is the layer a UI or the CLI drives. It owns the queue, tracks the
selected project/session, saves captured images under the project's captures
folder and reports user-visible status through a single callback. Capture and
save errors become status messages, never exceptions.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable
from pathlib import Path

import structlog

from .capture.screenshot import MIN_REGION_SIZE, CaptureAdapter, save_image
from .config import Config
from .models import (
    CaptureMode,
    CaptureResult,
    CaptureSession,
    CaptureStatus,
    LockedRegion,
    Project,
    Region,
    ScreenCapture,
)
from .naming import build_capture_filename
from .processing.ocr import OCREngine
from .processing.worker import OCRQueue, QueueEvent
from .storage.projects import ProjectStore

log = structlog.get_logger()

RegionSelector = Callable[[], Region | None]
StatusObserver = Callable[[str], None]


def _unique_path(path: Path) -> Path:
    """Append ``_1``, ``_2``, ... to the stem until the name is free."""
    candidate, n = path, 1
    while candidate.exists():
        candidate = path.with_name(f"{path.stem}_{n}{path.suffix}")
        n += 1
    return candidate


class CaptureController:
    def __init__(
        self,
        config: Config,
        store: ProjectStore,
        engine: OCREngine,
        grabber: CaptureAdapter,
        observer: StatusObserver | None = None,
    ) -> None:
        self.config = config
        self.store = store
        self.grabber = grabber
        self.observer = observer
        self.queue = OCRQueue(store, engine, config, observer=self._on_queue_event)

        self.project: Project | None = None
        self.session: CaptureSession | None = None
        self.capture_mode = (
            CaptureMode.CAPTURE_AND_OCR if config.ocr.auto_process else CaptureMode.CAPTURE_ONLY
        )
        self.status_text = "Ready"

        self.locked_region: LockedRegion | None = None
        self.auto_capture_interval_s = 5.0
        self._auto_timer: threading.Timer | None = None
        self._auto_lock = threading.Lock()

    # -- Lifecycle --

    def start(self) -> None:
        self.queue.start()

    def stop(self, timeout: float | None = 10.0) -> None:
        self.stop_continuous()
        self.queue.stop(timeout)

    # -- Status --

    def _status(self, message: str) -> None:
        self.status_text = message
        log.debug("status", message=message)
        if self.observer is not None:
            try:
                self.observer(message)
            except Exception as e:
                log.error("status_observer_error", error=str(e))

    def _on_queue_event(self, event: QueueEvent) -> None:
        self._status(event.message)

    # -- Selection --

    def select_project(self, project: Project | None) -> None:
        self.project = project
        self.session = project.sessions[0] if project and project.sessions else None

    def select_session(self, session: CaptureSession | None) -> None:
        self.session = session

    def create_session(self, name: str) -> CaptureSession:
        if self.project is None:
            raise ValueError("No project selected")
        session = self.store.create_session(self.project, name)
        self.session = session
        self._status(f"Created session: {session.name}")
        return session

    def delete_session(self, session: CaptureSession) -> bool:
        if self.project is None or not self.store.delete_session(self.project, session):
            return False
        if self.session is not None and self.session.id == session.id:
            self.session = self.project.sessions[0] if self.project.sessions else None
        self._status(f"Deleted session: {session.name}")
        return True

    def toggle_capture_mode(self) -> CaptureMode:
        self.capture_mode = (
            CaptureMode.CAPTURE_ONLY
            if self.capture_mode is CaptureMode.CAPTURE_AND_OCR
            else CaptureMode.CAPTURE_AND_OCR
        )
        self._status(f"Capture mode: {self.capture_mode.value}")
        return self.capture_mode

    # -- Capturing --

    def capture_fullscreen(self) -> ScreenCapture | None:
        if not self._ready():
            return None
        self._status("Capturing fullscreen...")
        time.sleep(self.config.capture.hide_delay_ms / 1000)
        return self.save_capture(self.grabber.capture_fullscreen())

    def capture_region(self, selector: RegionSelector) -> ScreenCapture | None:
        """Capture the rectangle returned by ``selector``; None or a tiny region cancels."""
        if not self._ready():
            return None
        region = self._select(selector)
        if region is None:
            self._status("Region capture cancelled")
            return None
        result = self.grabber.capture_region(region.x, region.y, region.width, region.height)
        return self.save_capture(result)

    def save_capture(self, result: CaptureResult, sequence: int | None = None) -> ScreenCapture | None:
        """Write the image, register it with the session, and queue it for OCR."""
        if not self._ready():
            return None
        if not result.success or result.image is None:
            self._status(f"Capture failed: {result.error}")
            return None

        project, session = self.project, self.session
        local_ts = result.timestamp.astimezone()
        ext = self.config.capture.image_format
        file_name = build_capture_filename(
            self.config.naming.default_pattern,
            session.name,
            local_ts,
            local_ts.microsecond // 1000 if sequence is None else sequence,
            ext,
            self.config.naming,
        )
        path = _unique_path(self.store.captures_dir(project) / file_name)

        try:
            save_image(result.image, path, ext, self.config.capture.jpeg_quality)
            capture = self.store.add_capture(project, session, path, timestamp=result.timestamp)
        except Exception as e:
            log.error("capture_save_failed", path=str(path), error=str(e))
            self._status(f"Capture error: {e}")
            return None

        if self.capture_mode is CaptureMode.CAPTURE_AND_OCR:
            with self.store.lock(project):
                capture.status = CaptureStatus.PROCESSING
            self.queue.enqueue(project, session, capture)
            self._status(f"Captured {path.name}, queued for OCR processing")
        else:
            self._status(f"Captured {path.name} (OCR disabled in Capture Only mode)")
        return capture

    def _ready(self) -> bool:
        if self.project is None or self.session is None:
            self._status("Select a project and session first")
            return False
        return True

    @staticmethod
    def _select(selector: RegionSelector) -> Region | None:
        region = selector()
        if region is None or region.width < MIN_REGION_SIZE or region.height < MIN_REGION_SIZE:
            return None
        return region

    # -- OCR queue --

    def process_selected(self, captures: Iterable[ScreenCapture]) -> int:
        """Queue every capture that is neither completed nor already processing."""
        if not self._ready():
            return 0
        queued = 0
        for capture in captures:
            if capture.status in (CaptureStatus.COMPLETED, CaptureStatus.PROCESSING):
                continue
            with self.store.lock(self.project):
                capture.status = CaptureStatus.PROCESSING
            self.queue.enqueue(self.project, self.session, capture)
            queued += 1
        self._status(f"Queued {queued} captures for OCR processing")
        return queued

    def process_queue_message(self) -> str:
        message = self.queue.describe()
        self._status(message)
        return message

    def delete_captures(self, captures: Iterable[ScreenCapture]) -> int:
        if not self._ready():
            return 0
        removed = self.store.delete_captures(self.project, self.session, captures)
        self._status(f"Deleted {removed} capture(s)")
        return removed

    # -- Continuous mode --

    @property
    def in_continuous_mode(self) -> bool:
        return self.locked_region is not None

    @property
    def is_auto_capturing(self) -> bool:
        return self._auto_timer is not None

    def start_continuous(self, selector: RegionSelector) -> LockedRegion | None:
        if not self._ready():
            return None
        region = self._select(selector)
        if region is None:
            self._status("Continuous mode cancelled")
            return None
        self.locked_region = LockedRegion(region.x, region.y, region.width, region.height)
        self._status(
            f"Continuous mode active - Region locked at {self.locked_region.coordinates()}"
        )
        return self.locked_region

    def capture_locked_region(self) -> ScreenCapture | None:
        locked = self.locked_region
        if locked is None or not self._ready():
            return None
        self._status("Capturing locked region...")
        result = self.grabber.capture_region(locked.x, locked.y, locked.width, locked.height)
        capture = self.save_capture(result, sequence=locked.capture_count)
        if capture is not None:
            locked.capture_count += 1
            suffix = "queued for OCR" if capture.status is CaptureStatus.PROCESSING else "OCR disabled"
            self._status(f"Captured locked region ({locked.capture_count} total), {suffix}")
        return capture

    def start_auto_capture(self, interval_s: float | None = None) -> None:
        if self.locked_region is None or not self.locked_region.is_valid():
            raise ValueError("Continuous mode is not active")
        if interval_s is not None:
            if interval_s <= 0:
                raise ValueError("Auto-capture interval must be positive")
            self.auto_capture_interval_s = interval_s
        self.stop_auto_capture(quiet=True)
        with self._auto_lock:
            self._arm()
        self._status(
            f"Auto-capture started - capturing every {self.auto_capture_interval_s:g} seconds"
        )

    def _arm(self) -> None:
        timer = threading.Timer(self.auto_capture_interval_s, self._auto_tick)
        timer.daemon = True
        self._auto_timer = timer
        timer.start()

    def _auto_tick(self) -> None:
        try:
            self.capture_locked_region()
        except Exception as e:
            log.error("auto_capture_error", error=str(e))
        with self._auto_lock:
            # stop_auto_capture clears the timer; only re-arm while still running
            if self._auto_timer is not None and self.locked_region is not None:
                self._arm()

    def stop_auto_capture(self, quiet: bool = False) -> None:
        with self._auto_lock:
            timer, self._auto_timer = self._auto_timer, None
        if timer is None:
            return
        timer.cancel()
        if not quiet:
            self._status("Auto-capture stopped")

    def stop_continuous(self) -> int:
        """Leave continuous mode; already-queued captures keep processing."""
        self.stop_auto_capture()
        if self.locked_region is None:
            return 0
        count = self.locked_region.capture_count
        self.locked_region = None
        self._status(f"Continuous mode stopped - {count} captures taken")
        return count

