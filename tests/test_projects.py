"""ProjectStore persistence, lookup and capture bookkeeping."""

import json
import threading
from pathlib import Path

import pytest

from capturedesk.models import CaptureStatus
from capturedesk.storage.projects import PROJECT_FILE, ProjectStore
from conftest import FIXED_TS, make_result, write_png


class TestProjects:
    def test_create_writes_document_and_capture_folder(self, store, project):
        doc = store.project_dir(project) / PROJECT_FILE
        assert doc.is_file()
        assert json.loads(doc.read_text(encoding="utf-8"))["name"] == "Test Project"
        assert Path(project.save_path) == store.projects_dir / "Test_Project"
        assert Path(project.save_path).is_dir()

    def test_empty_name_rejected(self, store):
        with pytest.raises(ValueError):
            store.create_project("   ")

    def test_reload_matches_saved_graph(self, data_dir, store, project, session):
        write_png(store.captures_dir(project) / "a.png")
        capture = store.add_capture(project, session, store.captures_dir(project) / "a.png", FIXED_TS)
        store.update_capture_ocr(project, capture.id, make_result("Hello", "World"))

        loaded = ProjectStore(data_dir).load_project(project.id)

        assert loaded.name == project.name
        assert [s.name for s in loaded.sessions] == ["Session 1"]
        reloaded = loaded.sessions[0].captures[0]
        assert reloaded.timestamp == FIXED_TS
        assert reloaded.status is CaptureStatus.COMPLETED
        assert reloaded.ocr_result == make_result("Hello", "World")

    def test_all_projects_newest_first(self, store):
        older = store.create_project("Older")
        newer = store.create_project("Newer")
        store.save_project(older)

        names = [p.name for p in store.get_all_projects()]
        assert names == ["Older", "Newer"]
        assert newer.id in {p.id for p in store.get_all_projects()}

    def test_corrupted_document_is_skipped(self, store, project):
        other = store.create_project("Other")
        (store.project_dir(other) / PROJECT_FILE).write_text("{not json", encoding="utf-8")

        assert [p.id for p in store.get_all_projects()] == [project.id]
        assert store.load_project(other.id) is None

    def test_corrupted_document_can_be_rewritten(self, store, project):
        (store.project_dir(project) / PROJECT_FILE).write_text("garbage", encoding="utf-8")
        store.save_project(project)
        assert store.load_project(project.id).name == "Test Project"

    def test_save_leaves_no_temp_files(self, store, project):
        store.save_project(project)
        assert [p.name for p in store.project_dir(project).iterdir()] == [PROJECT_FILE]

    def test_find_by_id_then_name(self, store, project):
        assert store.find_project(project.id).id == project.id
        assert store.find_project("test project").id == project.id
        assert store.find_project("missing") is None

    def test_delete_removes_folders(self, store, project):
        captures = store.captures_dir(project)
        write_png(captures / "a.png")

        assert store.delete_project(project.id) is True
        assert not store.project_dir(project).exists()
        assert not Path(project.save_path).exists()
        assert store.load_project(project.id) is None
        assert store.delete_project(project.id) is False

    def test_colliding_names_get_separate_capture_folders(self, store):
        first = store.create_project("A:B")
        second = store.create_project("A*B")
        same = store.create_project("A:B")

        assert Path(first.save_path).name == "A_B"
        assert Path(second.save_path).name == "A_B_2"
        assert Path(same.save_path).name == "A_B_3"

        keep = write_png(store.captures_dir(first) / "keep.png")
        assert store.delete_project(second) is True
        assert keep.is_file()
        assert not Path(second.save_path).exists()

    def test_delete_keeps_folder_still_used_by_another_project(self, store, project):
        other = store.create_project("Other")
        other.save_path = project.save_path
        store.save_project(other)
        keep = write_png(store.captures_dir(project) / "keep.png")

        store.delete_project(other)

        assert keep.is_file()
        assert store.load_project(project.id) is not None

    def test_concurrent_saves_leave_valid_document(self, store, project, session):
        errors = []

        def save(n):
            try:
                for i in range(10):
                    with store.lock(project):
                        project.description = f"writer {n} pass {i}"
                        store.save_project(project)
            except Exception as e:
                errors.append(e)

        writers = [threading.Thread(target=save, args=(n,)) for n in range(5)]
        for t in writers:
            t.start()
        for t in writers:
            t.join()

        assert errors == []
        doc = json.loads((store.project_dir(project) / PROJECT_FILE).read_text(encoding="utf-8"))
        assert doc["id"] == project.id
        assert doc["description"] == project.description
        assert [p.name for p in store.project_dir(project).iterdir()] == [PROJECT_FILE]

    def test_resave_without_changes_is_stable(self, store, project, session):
        write_png(store.captures_dir(project) / "a.png")
        capture = store.add_capture(project, session, store.captures_dir(project) / "a.png", FIXED_TS)
        store.update_capture_ocr(project, capture.id, make_result("Hello"))
        doc = store.project_dir(project) / PROJECT_FILE

        def without_modified():
            lines = doc.read_text(encoding="utf-8").splitlines()
            return [line for line in lines if not line.lstrip().startswith('"modified"')]

        store.save_project(project)
        first = without_modified()
        store.save_project(project)

        assert without_modified() == first

    def test_observers_are_notified(self, store):
        events = []
        store.subscribe(lambda event, p: events.append((event, p.name)))

        project = store.create_project("Watched")
        store.save_project(project)
        store.delete_project(project)

        assert events == [
            ("project_created", "Watched"),
            ("project_updated", "Watched"),
            ("project_deleted", "Watched"),
        ]

    def test_observer_errors_do_not_propagate(self, store):
        def boom(event, project):
            raise RuntimeError("observer failed")

        store.subscribe(boom)
        assert store.create_project("Still Works").name == "Still Works"


class TestSessions:
    def test_create_and_find(self, store, project, session):
        assert store.find_session(project, session.id) is session
        assert store.find_session(project, "SESSION 1") is session
        assert store.find_session(project, "nope") is None

    def test_empty_name_rejected(self, store, project):
        with pytest.raises(ValueError):
            store.create_session(project, "")

    def test_delete(self, store, project, session):
        assert store.delete_session(project, session) is True
        assert project.sessions == []
        assert store.load_project(project.id).sessions == []
        assert store.delete_session(project, session) is False


class TestCaptures:
    def _add(self, store, project, session, name):
        path = write_png(store.captures_dir(project) / name)
        return store.add_capture(project, session, path)

    def test_sequence_numbers_increase(self, store, project, session):
        numbers = [self._add(store, project, session, f"{i}.png").sequence_number for i in range(3)]
        assert numbers == [1, 2, 3]

    def test_sequence_not_reused_after_delete(self, store, project, session):
        captures = [self._add(store, project, session, f"{i}.png") for i in range(3)]
        store.delete_captures(project, session, [captures[1]])

        assert self._add(store, project, session, "new.png").sequence_number == 4

    def test_sequence_survives_reload(self, data_dir, store, project, session):
        captures = [self._add(store, project, session, f"{i}.png") for i in range(3)]
        store.delete_captures(project, session, [captures[2]])

        loaded = ProjectStore(data_dir).load_project(project.id)
        assert loaded.sessions[0].next_sequence() == 4

    def test_new_capture_is_captured(self, store, project, session):
        capture = self._add(store, project, session, "a.png")
        assert capture.status is CaptureStatus.CAPTURED
        assert capture.file_name == "a.png"
        assert capture.ocr_result is None

    def test_delete_removes_image_and_sidecar(self, store, project, session):
        capture = self._add(store, project, session, "shot.png")
        sidecar = store.captures_dir(project) / "shot_ocr.txt"
        sidecar.write_text("text", encoding="utf-8")

        assert store.delete_captures(project, session, [capture]) == 1
        assert not Path(capture.file_path).exists()
        assert not sidecar.exists()
        assert session.captures == []

    def test_delete_with_missing_file(self, store, project, session):
        capture = self._add(store, project, session, "gone.png")
        Path(capture.file_path).unlink()
        assert store.delete_captures(project, session, [capture]) == 1

    def test_update_ocr_on_removed_capture(self, store, project, session):
        capture = self._add(store, project, session, "a.png")
        store.delete_captures(project, session, [capture])

        assert store.update_capture_ocr(project, capture.id, make_result("late")) is False
        assert capture.ocr_result is None
