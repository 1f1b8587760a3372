"""Project persistence - one JSON document per project, rewritten on every save."""

from __future__ import annotations

import json
import os
import shutil
import tempfile
import threading
from collections.abc import Callable, Iterable
from datetime import datetime
from pathlib import Path

import structlog

from ..models import (
    CaptureSession,
    CaptureStatus,
    OCRResult,
    Project,
    ScreenCapture,
    utcnow,
)
from ..naming import ocr_sidecar_path, sanitize_filename
from .codec import project_from_dict, project_to_dict

log = structlog.get_logger()

PROJECT_FILE = "project.json"

ProjectObserver = Callable[[str, Project], None]


class ProjectStore:
    """Loads and saves projects under ``<data_dir>/projects``.

    Layout::

        projects/<id>/project.json       the serialized project graph
        projects/<sanitized name>/captures/   image files and OCR sidecars

    Saves of one project are serialized through a re-entrant lock; hold
    ``lock(project)`` around multi-step mutations that must not interleave
    with a save from another thread.
    """

    def __init__(self, data_dir: str | Path) -> None:
        self.data_dir = Path(data_dir)
        self.projects_dir = self.data_dir / "projects"
        self.projects_dir.mkdir(parents=True, exist_ok=True)
        self._locks: dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()
        self._observers: list[ProjectObserver] = []

    # -- Locking / notifications --

    def lock(self, project: Project | str) -> threading.RLock:
        project_id = project if isinstance(project, str) else project.id
        with self._locks_guard:
            lock = self._locks.get(project_id)
            if lock is None:
                lock = self._locks[project_id] = threading.RLock()
            return lock

    def subscribe(self, callback: ProjectObserver) -> None:
        self._observers.append(callback)

    def _notify(self, event: str, project: Project) -> None:
        for callback in list(self._observers):
            try:
                callback(event, project)
            except Exception as e:
                log.error("project_observer_error", event_name=event, error=str(e))

    # -- Paths --

    def project_dir(self, project: Project | str) -> Path:
        project_id = project if isinstance(project, str) else project.id
        return self.projects_dir / project_id

    def captures_dir(self, project: Project) -> Path:
        path = Path(project.save_path) / "captures"
        path.mkdir(parents=True, exist_ok=True)
        return path

    # -- Projects --

    def create_project(self, name: str, description: str = "") -> Project:
        if not name or not name.strip():
            raise ValueError("Project name must not be empty")

        name = name.strip()
        project = Project(
            name=name,
            description=description,
            save_path=str(self._free_capture_folder(sanitize_filename(name) or "project")),
        )
        Path(project.save_path).mkdir(parents=True)
        self.save_project(project, notify=False)
        log.info("project_created", project_id=project.id, name=name)
        self._notify("project_created", project)
        return project

    def _free_capture_folder(self, folder: str) -> Path:
        """``projects/<folder>``, suffixed ``_2``, ``_3``, ... if already taken."""
        candidate, n = self.projects_dir / folder, 2
        while candidate.exists():
            candidate = self.projects_dir / f"{folder}_{n}"
            n += 1
        return candidate

    def get_all_projects(self) -> list[Project]:
        """All readable projects, most recently modified first."""
        projects: list[Project] = []
        for path in sorted(self.projects_dir.glob(f"*/{PROJECT_FILE}")):
            project = self._read(path)
            if project is not None:
                projects.append(project)
        projects.sort(key=lambda p: p.modified, reverse=True)
        return projects

    def load_project(self, project_id: str) -> Project | None:
        path = self.project_dir(project_id) / PROJECT_FILE
        if not path.is_file():
            return None
        return self._read(path)

    def _read(self, path: Path) -> Project | None:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return project_from_dict(data)
        except (OSError, ValueError, KeyError, TypeError) as e:
            log.warning("project_unreadable", path=str(path), error=str(e))
            return None

    def save_project(self, project: Project, notify: bool = True) -> None:
        """Rewrite the whole project document; the previous file stays intact on failure."""
        with self.lock(project):
            project.modified = utcnow()
            target_dir = self.project_dir(project)
            target_dir.mkdir(parents=True, exist_ok=True)
            payload = json.dumps(project_to_dict(project), indent=2, ensure_ascii=False)

            fd, tmp_name = tempfile.mkstemp(dir=target_dir, prefix=".project-", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                os.replace(tmp_name, target_dir / PROJECT_FILE)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise

        log.debug("project_saved", project_id=project.id)
        if notify:
            self._notify("project_updated", project)

    def delete_project(self, project: Project | str) -> bool:
        if isinstance(project, str):
            loaded = self.load_project(project)
            if loaded is None:
                return False
            project = loaded

        with self.lock(project):
            shutil.rmtree(self.project_dir(project), ignore_errors=True)
            if project.save_path and not self._capture_folder_shared(project):
                save_path = Path(project.save_path)
                # only remove capture folders that live inside our data dir
                if save_path.is_dir() and self.projects_dir.resolve() in save_path.resolve().parents:
                    shutil.rmtree(save_path, ignore_errors=True)

        with self._locks_guard:
            self._locks.pop(project.id, None)
        log.info("project_deleted", project_id=project.id, name=project.name)
        self._notify("project_deleted", project)
        return True

    def _capture_folder_shared(self, project: Project) -> bool:
        mine = Path(project.save_path).resolve()
        for other in self.get_all_projects():
            if other.id != project.id and other.save_path and Path(other.save_path).resolve() == mine:
                log.warning("capture_folder_shared", project_id=project.id, other_id=other.id)
                return True
        return False

    def find_project(self, name_or_id: str) -> Project | None:
        """Lookup by exact id first, then by case-insensitive name."""
        by_id = self.load_project(name_or_id) if name_or_id else None
        if by_id is not None:
            return by_id
        wanted = name_or_id.strip().lower()
        for project in self.get_all_projects():
            if project.name.lower() == wanted:
                return project
        return None

    # -- Sessions --

    def create_session(self, project: Project, name: str) -> CaptureSession:
        if not name or not name.strip():
            raise ValueError("Session name must not be empty")
        session = CaptureSession(name=name.strip())
        with self.lock(project):
            project.sessions.append(session)
            self.save_project(project)
        log.info("session_created", project_id=project.id, session_id=session.id, name=session.name)
        return session

    def delete_session(self, project: Project, session: CaptureSession) -> bool:
        with self.lock(project):
            if not any(s.id == session.id for s in project.sessions):
                return False
            project.sessions = [s for s in project.sessions if s.id != session.id]
            self.save_project(project)
        log.info("session_deleted", project_id=project.id, session_id=session.id)
        return True

    @staticmethod
    def find_session(project: Project, name_or_id: str) -> CaptureSession | None:
        for session in project.sessions:
            if session.id == name_or_id:
                return session
        wanted = name_or_id.strip().lower()
        for session in project.sessions:
            if session.name.lower() == wanted:
                return session
        return None

    # -- Captures --

    def add_capture(
        self,
        project: Project,
        session: CaptureSession,
        file_path: str | Path,
        timestamp: datetime | None = None,
    ) -> ScreenCapture:
        path = Path(file_path)
        with self.lock(project):
            sequence = session.next_sequence()
            capture = ScreenCapture(
                sequence_number=sequence,
                file_name=path.name,
                file_path=str(path),
                timestamp=timestamp or utcnow(),
            )
            session.captures.append(capture)
            session.last_sequence = sequence
            self.save_project(project, notify=False)

        log.info(
            "capture_added",
            project_id=project.id,
            session_id=session.id,
            capture_id=capture.id,
            sequence=sequence,
        )
        self._notify("capture_added", project)
        return capture

    def update_capture_ocr(self, project: Project, capture_id: str, result: OCRResult) -> bool:
        """Attach ``result`` and mark the capture completed in one step.

        Returns False when the capture is no longer part of the project; nothing
        is persisted in that case.
        """
        with self.lock(project):
            capture = next((c for c in project.all_captures() if c.id == capture_id), None)
            if capture is None:
                return False
            capture.ocr_result = result
            capture.status = CaptureStatus.COMPLETED
            self.save_project(project)
        return True

    def delete_captures(
        self, project: Project, session: CaptureSession, captures: Iterable[ScreenCapture]
    ) -> int:
        """Remove captures from the session and delete their image files."""
        doomed = {c.id: c for c in captures}
        removed = 0
        with self.lock(project):
            for capture in [c for c in session.captures if c.id in doomed]:
                for path in (Path(capture.file_path), ocr_sidecar_path(capture.file_path)):
                    try:
                        path.unlink(missing_ok=True)
                    except OSError as e:
                        log.warning("capture_file_delete_failed", path=str(path), error=str(e))
                session.captures.remove(capture)
                removed += 1
            if removed:
                self.save_project(project)
        log.info("captures_deleted", project_id=project.id, session_id=session.id, count=removed)
        return removed

