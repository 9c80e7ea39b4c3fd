"""File + SQLite storage layer.

Task definitions are JSON files (one per task) so they stay human-readable
and hand-editable. SQLite holds the execution history ring and the key/value
settings written by the built-in "setting" action.

Implements the PersistenceService and SettingsService protocols.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel

from core.models.tasks import ExecutionRecord, Task

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

TASKS_DIR = "tasks"


class Store:
    """Unified storage layer for files + SQLite.

    All paths are relative to the home directory (~/.homesched/).
    """

    def __init__(self, home: Path) -> None:
        self._home = home
        self._home.mkdir(parents=True, exist_ok=True)
        self._db_path = home / "db.sqlite"
        self._db: sqlite3.Connection | None = None
        self._init_sqlite()

    @property
    def name(self) -> str:
        return "store"

    # ------------------------------------------------------------------
    # SQLite
    # ------------------------------------------------------------------

    def _init_sqlite(self) -> None:
        """Initialize SQLite database and create tables if needed."""
        self._db = sqlite3.connect(str(self._db_path))
        self._db.row_factory = sqlite3.Row
        self._db.execute("PRAGMA journal_mode=WAL")

        self._db.executescript("""
            CREATE TABLE IF NOT EXISTS execution_history (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                task_id TEXT NOT NULL,
                task_name TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                success INTEGER NOT NULL,
                error_message TEXT,
                duration_ms REAL DEFAULT 0,
                attempt INTEGER DEFAULT 0
            );

            CREATE INDEX IF NOT EXISTS idx_history_task
                ON execution_history(task_id, timestamp);

            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );
        """)
        self._db.commit()
        logger.info("SQLite initialized at %s", self._db_path)

    @property
    def db(self) -> sqlite3.Connection:
        if self._db is None:
            raise RuntimeError("Store not initialized")
        return self._db

    def close(self) -> None:
        """Close the SQLite connection."""
        if self._db:
            self._db.close()
            self._db = None

    # ------------------------------------------------------------------
    # PersistenceService: tasks (JSON files)
    # ------------------------------------------------------------------

    def load_tasks(self) -> list[Task]:
        return self.list_json(TASKS_DIR, Task)

    def save_tasks(self, tasks: list[Task]) -> None:
        for task in tasks:
            self.write_json(TASKS_DIR, f"{task.id}.json", task)

    # ------------------------------------------------------------------
    # PersistenceService: history (SQLite)
    # ------------------------------------------------------------------

    def load_history(self) -> list[ExecutionRecord]:
        rows = self.db.execute(
            "SELECT * FROM execution_history ORDER BY seq ASC"
        ).fetchall()
        return [self._row_to_record(r) for r in rows]

    def save_history(self, records: list[ExecutionRecord]) -> None:
        """Replace the stored history with the given snapshot of the ring."""
        with self.db:
            self.db.execute("DELETE FROM execution_history")
            self.db.executemany(
                """INSERT INTO execution_history
                   (task_id, task_name, timestamp, success, error_message, duration_ms, attempt)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                [
                    (
                        r.task_id,
                        r.task_name,
                        r.timestamp.isoformat(),
                        1 if r.success else 0,
                        r.error_message,
                        r.duration_ms,
                        r.attempt,
                    )
                    for r in records
                ],
            )

    def _row_to_record(self, row: sqlite3.Row) -> ExecutionRecord:
        return ExecutionRecord(
            task_id=row["task_id"],
            task_name=row["task_name"],
            timestamp=datetime.fromisoformat(row["timestamp"]),
            success=bool(row["success"]),
            error_message=row["error_message"],
            duration_ms=row["duration_ms"] or 0.0,
            attempt=row["attempt"] or 0,
        )

    # ------------------------------------------------------------------
    # SettingsService (SQLite)
    # ------------------------------------------------------------------

    def set_setting(self, key: str, value: str | int | float | bool) -> None:
        if not isinstance(value, (str, int, float, bool)):
            raise TypeError("Setting value must be a string, number, or boolean")
        self.db.execute(
            """INSERT OR REPLACE INTO settings (key, value, updated_at)
               VALUES (?, ?, ?)""",
            (key, json.dumps(value), datetime.now(timezone.utc).isoformat()),
        )
        self.db.commit()

    def get_setting(self, key: str, default: Any = None) -> Any:
        row = self.db.execute(
            "SELECT value FROM settings WHERE key = ?", (key,)
        ).fetchone()
        if row is None:
            return default
        return json.loads(row["value"])

    # ------------------------------------------------------------------
    # File operations (JSON)
    # ------------------------------------------------------------------

    def write_json(self, subdir: str, filename: str, model: BaseModel) -> Path:
        """Write a Pydantic model as a JSON file."""
        path = self._home / subdir / filename
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(model.model_dump_json(indent=2))
        return path

    def read_json(self, subdir: str, filename: str, model_class: type[T]) -> T | None:
        """Read a JSON file and parse it as a Pydantic model."""
        path = self._home / subdir / filename
        if not path.exists():
            return None
        try:
            return model_class(**json.loads(path.read_text()))
        except Exception:
            logger.exception("Failed to read %s", path)
            return None

    def list_json(self, subdir: str, model_class: type[T]) -> list[T]:
        """List and parse all JSON files in a subdirectory."""
        dirpath = self._home / subdir
        if not dirpath.exists():
            return []

        results = []
        for filepath in sorted(dirpath.glob("*.json")):
            try:
                results.append(model_class(**json.loads(filepath.read_text())))
            except Exception:
                logger.exception("Failed to parse %s", filepath)
        return results
