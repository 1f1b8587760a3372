"""OCRQueue: ordering, failure isolation, smart rename and shutdown."""

import threading
import time
from pathlib import Path

import pytest

from capturedesk.models import CaptureStatus
from capturedesk.naming import format_timestamp
from capturedesk.processing.worker import OCRQueue
from capturedesk.storage.projects import ProjectStore
from conftest import FIXED_TS, FakeEngine, make_result, write_png


def _capture(store, project, session, name, size=(40, 20)):
    path = write_png(store.captures_dir(project) / name, size)
    capture = store.add_capture(project, session, path, timestamp=FIXED_TS)
    capture.status = CaptureStatus.PROCESSING
    return capture


@pytest.fixture
def events():
    return []


@pytest.fixture
def make_queue(store, config, events):
    queues = []

    def _make(engine):
        q = OCRQueue(store, engine, config, observer=events.append)
        queues.append(q)
        return q

    yield _make
    for q in queues:
        q.stop(timeout=5)


class TestOrdering:
    def test_fifo_single_worker(self, store, project, session, make_queue):
        engine = FakeEngine(delay=0.02)
        q = make_queue(engine)
        captures = [
            _capture(store, project, session, f"c{i}.png", size=(40 + i, 20)) for i in range(4)
        ]
        for c in captures:
            q.enqueue(project, session, c)

        q.start()
        assert q.drain(timeout=10)

        assert engine.sizes == [(40, 20), (41, 20), (42, 20), (43, 20)]
        assert engine.max_in_flight == 1
        assert all(c.status is CaptureStatus.COMPLETED for c in captures)

    def test_fifo_with_concurrent_producers(self, store, project, session, make_queue, events):
        engine = FakeEngine(delay=0.005)
        q = make_queue(engine)
        q.start()
        enqueued = []
        order_lock = threading.Lock()

        def produce(producer):
            for i in range(5):
                capture = _capture(store, project, session, f"p{producer}_{i}.png")
                with order_lock:
                    q.enqueue(project, session, capture)
                    enqueued.append(capture.id)

        producers = [threading.Thread(target=produce, args=(n,)) for n in range(4)]
        for t in producers:
            t.start()
        for t in producers:
            t.join()
        assert q.drain(timeout=20)

        assert [e.item.capture.id for e in events if e.kind == "completed"] == enqueued
        assert engine.calls == 20
        assert engine.max_in_flight == 1

    def test_depth_counts_pending(self, store, project, session, make_queue):
        q = make_queue(FakeEngine())
        for i in range(2):
            assert q.enqueue(project, session, _capture(store, project, session, f"{i}.png")) == i + 1

        assert q.depth == 2
        assert q.is_processing
        assert q.describe() == (
            "Queue is being processed automatically in background - 2 items remaining"
        )
        assert q.drain(timeout=0.05) is False

    def test_empty_queue_is_idle(self, make_queue):
        q = make_queue(FakeEngine())
        q.start()
        assert q.running
        assert q.drain(timeout=1)
        assert not q.is_processing


class TestFailures:
    def test_failure_does_not_stop_the_queue(self, store, project, session, make_queue, events):
        engine = FakeEngine(fail_on={0})
        q = make_queue(engine)
        first = _capture(store, project, session, "a.png")
        second = _capture(store, project, session, "b.png")
        q.enqueue(project, session, first)
        q.enqueue(project, session, second)

        q.start()
        assert q.drain(timeout=10)

        assert first.status is CaptureStatus.FAILED
        assert first.ocr_result is None
        assert second.status is CaptureStatus.COMPLETED
        assert [e.kind for e in events] == ["failed", "completed"]
        assert events[0].message == "OCR processing error: engine exploded on call 0"

    def test_unreadable_image_fails(self, store, project, session, make_queue, events):
        q = make_queue(FakeEngine())
        capture = _capture(store, project, session, "a.png")
        Path(capture.file_path).write_bytes(b"not an image")
        q.enqueue(project, session, capture)

        q.start()
        assert q.drain(timeout=10)

        assert capture.status is CaptureStatus.FAILED
        assert events[0].kind == "failed"

    def test_observer_errors_are_contained(self, store, project, session, config):
        def boom(event):
            raise RuntimeError("ui gone")

        q = OCRQueue(store, FakeEngine(), config, observer=boom)
        capture = _capture(store, project, session, "a.png")
        q.enqueue(project, session, capture)
        q.start()
        try:
            assert q.drain(timeout=10)
        finally:
            q.stop(timeout=5)
        assert capture.status is CaptureStatus.COMPLETED


class TestCompletion:
    def test_rename_sidecar_and_persist(self, data_dir, store, project, session, make_queue, events):
        engine = FakeEngine(results=[make_result("Hello World", "more text", confidence=0.9)])
        q = make_queue(engine)
        capture = _capture(store, project, session, "capture_Session_1.png")
        q.enqueue(project, session, capture)

        q.start()
        assert q.drain(timeout=10)

        stamp = format_timestamp(FIXED_TS.astimezone(), "yyyyMMdd_HHmmss")
        expected = f"hello_world_{stamp}.png"
        captures_dir = store.captures_dir(project)
        assert capture.file_name == expected
        assert (captures_dir / expected).is_file()
        assert not (captures_dir / "capture_Session_1.png").exists()
        assert (captures_dir / f"hello_world_{stamp}_ocr.txt").read_text(encoding="utf-8") == (
            "Hello World\nmore text"
        )

        saved = ProjectStore(data_dir).load_project(project.id).sessions[0].captures[0]
        assert saved.file_name == expected
        assert saved.status is CaptureStatus.COMPLETED
        assert saved.ocr_result.text == "Hello World\nmore text"

        assert events[0].kind == "completed"
        assert events[0].message == "✓ Completed OCR - 4 words extracted (90% confidence) - 0 remaining"

    def test_rename_skipped_when_target_exists(self, store, project, session, make_queue):
        q = make_queue(FakeEngine(results=[make_result("Taken")]))
        stamp = format_timestamp(FIXED_TS.astimezone(), "yyyyMMdd_HHmmss")
        write_png(store.captures_dir(project) / f"taken_{stamp}.png")
        capture = _capture(store, project, session, "original.png")
        q.enqueue(project, session, capture)

        q.start()
        assert q.drain(timeout=10)

        assert capture.file_name == "original.png"
        assert capture.status is CaptureStatus.COMPLETED
        assert (store.captures_dir(project) / "original_ocr.txt").is_file()

    def test_no_rename_when_smart_names_disabled(self, store, project, session, config, make_queue):
        config.naming.use_smart_filenames = False
        q = make_queue(FakeEngine(results=[make_result("Hello")]))
        capture = _capture(store, project, session, "keep.png")
        q.enqueue(project, session, capture)

        q.start()
        assert q.drain(timeout=10)

        assert capture.file_name == "keep.png"
        assert capture.ocr_result.text == "Hello"

    def test_deleted_capture_result_is_discarded(self, store, project, session, make_queue, events):
        q = make_queue(FakeEngine(results=[make_result("Orphan")]))
        capture = _capture(store, project, session, "gone.png")
        q.enqueue(project, session, capture)
        session.captures.remove(capture)

        q.start()
        assert q.drain(timeout=10)

        assert capture.ocr_result is None
        assert capture.file_name == "gone.png"
        assert not (store.captures_dir(project) / "gone_ocr.txt").exists()
        assert [e.kind for e in events] == ["orphaned"]

    def test_delete_while_result_pending_leaves_no_sidecar(
        self, store, project, session, make_queue, events
    ):
        recognized = threading.Event()

        class SignallingEngine(FakeEngine):
            def recognize(self, image):
                result = super().recognize(image)
                recognized.set()
                return result

        q = make_queue(SignallingEngine(results=[make_result("Late")]))
        capture = _capture(store, project, session, "late.png")
        q.enqueue(project, session, capture)

        with store.lock(project):
            q.start()
            assert recognized.wait(timeout=5)
            time.sleep(0.05)
            assert store.delete_captures(project, session, [capture]) == 1
        assert q.drain(timeout=10)

        assert list(store.captures_dir(project).iterdir()) == []
        assert [e.kind for e in events] == ["orphaned"]


class TestStop:
    def test_stop_discards_pending(self, data_dir, store, project, session, make_queue):
        engine = FakeEngine(delay=0.3)
        q = make_queue(engine)
        captures = [_capture(store, project, session, f"{i}.png") for i in range(3)]
        for c in captures:
            q.enqueue(project, session, c)

        q.start()
        deadline = time.monotonic() + 5
        while engine.calls == 0 and time.monotonic() < deadline:
            time.sleep(0.01)
        q.stop(timeout=5)

        assert engine.calls == 1
        assert captures[0].status is CaptureStatus.COMPLETED
        assert [c.status for c in captures[1:]] == [CaptureStatus.CAPTURED] * 2
        assert q.depth == 0
        assert not q.running

        saved = ProjectStore(data_dir).load_project(project.id).sessions[0].captures
        assert [c.status for c in saved[1:]] == [CaptureStatus.CAPTURED] * 2

    def test_restart_while_previous_item_runs(self, store, project, session, make_queue):
        engine = FakeEngine(delay=0.5)
        q = make_queue(engine)
        first = _capture(store, project, session, "first.png")
        q.enqueue(project, session, first)

        q.start()
        deadline = time.monotonic() + 5
        while engine.calls == 0 and time.monotonic() < deadline:
            time.sleep(0.01)
        q.stop(timeout=0.05)

        later = [_capture(store, project, session, f"later{i}.png") for i in range(3)]
        for c in later:
            q.enqueue(project, session, c)
        q.start()
        assert q.drain(timeout=10)

        assert engine.max_in_flight == 1
        assert engine.calls == 4
        assert first.status is CaptureStatus.COMPLETED
        assert all(c.status is CaptureStatus.COMPLETED for c in later)

    def test_restart_after_stop(self, store, project, session, make_queue):
        q = make_queue(FakeEngine())
        q.start()
        q.stop(timeout=5)

        capture = _capture(store, project, session, "later.png")
        q.enqueue(project, session, capture)
        q.start()
        assert q.drain(timeout=10)
        assert capture.status is CaptureStatus.COMPLETED
