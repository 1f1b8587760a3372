"""Background OCR queue: a single worker thread drains captures in FIFO order."""

from __future__ import annotations

import queue
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import structlog

from ..config import Config
from ..models import CaptureSession, CaptureStatus, OCRResult, Project, ScreenCapture
from ..naming import generate_smart_filename, ocr_sidecar_path
from ..storage.projects import ProjectStore
from .ocr import OCREngine, load_image

log = structlog.get_logger()


@dataclass
class QueueItem:
    project: Project
    session: CaptureSession
    capture: ScreenCapture


@dataclass
class QueueEvent:
    """What the worker reports after each item."""

    kind: str  # "completed" | "failed" | "orphaned"
    item: QueueItem
    message: str
    remaining: int
    result: OCRResult | None = None
    error: str | None = None


QueueObserver = Callable[[QueueEvent], None]


class OCRQueue:
    """Unbounded FIFO of captures awaiting OCR, drained by one worker thread.

    At most one engine call is in flight at any time. ``stop`` lets the
    in-flight item finish and discards everything still waiting; discarded
    captures go back to ``captured`` so they can be queued again later.
    """

    def __init__(
        self,
        store: ProjectStore,
        engine: OCREngine,
        config: Config,
        observer: QueueObserver | None = None,
    ) -> None:
        self.store = store
        self.engine = engine
        self.config = config
        self.observer = observer
        self._queue: queue.Queue[QueueItem] = queue.Queue()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._depth = 0
        self._depth_cond = threading.Condition()

    # -- Lifecycle --

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            if not self._stop.is_set():
                return
            # a stopped worker still finishing its item; never run two at once
            log.info("ocr_worker_awaiting_previous")
            self._thread.join()
        # one stop event per run
        stop = threading.Event()
        self._stop = stop
        self._thread = threading.Thread(
            target=self._worker, args=(stop,), name="ocr-worker", daemon=True
        )
        self._thread.start()
        log.info("ocr_queue_started", engine=self.engine.name)

    def stop(self, timeout: float | None = 10.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                log.warning("ocr_worker_still_running", timeout=timeout)
            else:
                self._thread = None
        discarded = self._discard_pending()
        log.info("ocr_queue_stopped", discarded=discarded)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stop.is_set()

    # -- Producer side --

    def enqueue(self, project: Project, session: CaptureSession, capture: ScreenCapture) -> int:
        """Add a capture to the tail of the queue. Returns the new depth."""
        with self._depth_cond:
            self._depth += 1
            depth = self._depth
        self._queue.put(QueueItem(project, session, capture))
        log.debug("ocr_enqueued", capture_id=capture.id, depth=depth)
        return depth

    @property
    def depth(self) -> int:
        """Captures not yet fully processed, the in-flight one included."""
        with self._depth_cond:
            return self._depth

    @property
    def is_processing(self) -> bool:
        return self.depth > 0

    def describe(self) -> str:
        return (
            "Queue is being processed automatically in background - "
            f"{self.depth} items remaining"
        )

    def drain(self, timeout: float | None = None) -> bool:
        """Block until every enqueued capture has been handled. False on timeout."""
        with self._depth_cond:
            return self._depth_cond.wait_for(lambda: self._depth == 0, timeout)

    # -- Worker --

    def _worker(self, stop: threading.Event) -> None:
        log.info("ocr_worker_started")
        delay = self.config.ocr.queue_delay_ms / 1000
        while not stop.is_set():
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                stop.wait(delay)
                continue

            try:
                self._process(item)
            except Exception as e:
                log.error("ocr_queue_process_error", error=str(e), capture_id=item.capture.id)
            finally:
                self._item_done()
        log.info("ocr_worker_stopped")

    def _item_done(self, count: int = 1) -> None:
        with self._depth_cond:
            self._depth = max(0, self._depth - count)
            self._depth_cond.notify_all()

    def _discard_pending(self) -> int:
        discarded: list[QueueItem] = []
        while True:
            try:
                discarded.append(self._queue.get_nowait())
            except queue.Empty:
                break

        projects: dict[str, Project] = {}
        for item in discarded:
            if item.capture.status is CaptureStatus.PROCESSING:
                item.capture.status = CaptureStatus.CAPTURED
            projects[item.project.id] = item.project
        for project in projects.values():
            try:
                self.store.save_project(project)
            except OSError as e:
                log.error("ocr_discard_save_failed", project_id=project.id, error=str(e))

        if discarded:
            self._item_done(len(discarded))
        return len(discarded)

    def _attached(self, item: QueueItem) -> bool:
        session = next((s for s in item.project.sessions if s.id == item.session.id), None)
        if session is None:
            return False
        return any(c.id == item.capture.id for c in session.captures)

    def _process(self, item: QueueItem) -> None:
        capture = item.capture
        log.info("ocr_started", capture_id=capture.id, file=capture.file_name)

        try:
            image = load_image(capture.file_path)
            result = self.engine.recognize(image)
        except Exception as e:
            self._fail(item, e)
            return

        with self.store.lock(item.project):
            attached = self._attached(item)
            if attached:
                self._write_sidecar(capture, result)
        if not attached:
            self._orphaned(item)
            return

        if self.config.naming.use_smart_filenames:
            self._smart_rename(item, result)

        # result and status land together, under the project lock
        if not self.store.update_capture_ocr(item.project, capture.id, result):
            self._orphaned(item)
            return

        words = result.word_count
        remaining = self._queue.qsize()
        log.info(
            "ocr_completed",
            capture_id=capture.id,
            words=words,
            confidence=round(result.confidence, 3),
            remaining=remaining,
        )
        self._emit(
            QueueEvent(
                kind="completed",
                item=item,
                message=(
                    f"✓ Completed OCR - {words} words extracted "
                    f"({result.confidence:.0%} confidence) - {remaining} remaining"
                ),
                remaining=remaining,
                result=result,
            )
        )

    def _fail(self, item: QueueItem, error: Exception) -> None:
        log.error("ocr_failed", capture_id=item.capture.id, file=item.capture.file_path, error=str(error))
        with self.store.lock(item.project):
            item.capture.status = CaptureStatus.FAILED
            if self._attached(item):
                self.store.save_project(item.project)
        self._emit(
            QueueEvent(
                kind="failed",
                item=item,
                message=f"OCR processing error: {error}",
                remaining=self._queue.qsize(),
                error=str(error),
            )
        )

    def _orphaned(self, item: QueueItem) -> None:
        log.warning("ocr_result_orphaned", capture_id=item.capture.id, project_id=item.project.id)
        self._emit(
            QueueEvent(
                kind="orphaned",
                item=item,
                message="OCR result discarded - capture was deleted",
                remaining=self._queue.qsize(),
            )
        )

    def _write_sidecar(self, capture: ScreenCapture, result: OCRResult) -> None:
        sidecar = ocr_sidecar_path(capture.file_path)
        try:
            sidecar.write_text(result.text, encoding="utf-8")
        except OSError as e:
            log.warning("ocr_sidecar_write_failed", path=str(sidecar), error=str(e))

    def _smart_rename(self, item: QueueItem, result: OCRResult) -> None:
        capture = item.capture
        current = Path(capture.file_path)
        new_name = generate_smart_filename(
            result, capture.timestamp.astimezone(), current.suffix.lstrip("."), self.config.naming
        )
        if new_name == current.name:
            return

        new_image = current.with_name(new_name)
        old_sidecar = ocr_sidecar_path(current)
        new_sidecar = ocr_sidecar_path(new_image)

        # give the capture writer time to release its handle
        time.sleep(self.config.ocr.rename_settle_ms / 1000)

        with self.store.lock(item.project):
            if current.exists() and not new_image.exists():
                try:
                    current.rename(new_image)
                except OSError as e:
                    log.warning("smart_rename_failed", src=str(current), error=str(e))
                    return
                capture.file_path = str(new_image)
                capture.file_name = new_image.name
                log.info("capture_renamed", capture_id=capture.id, name=new_image.name)
            else:
                log.info("smart_rename_skipped", capture_id=capture.id, target=new_name)
                return

            if old_sidecar.exists() and not new_sidecar.exists():
                try:
                    old_sidecar.rename(new_sidecar)
                except OSError as e:
                    log.warning("smart_rename_failed", src=str(old_sidecar), error=str(e))

    def _emit(self, event: QueueEvent) -> None:
        if self.observer is None:
            return
        try:
            self.observer(event)
        except Exception as e:
            log.error("ocr_observer_error", kind=event.kind, error=str(e))
