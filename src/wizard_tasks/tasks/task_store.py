# src/wizard_tasks/tasks/task_store.py

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import threading
import time
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from ..errors import StorageUnavailable, TaskNotFound, ValidationError
from .task_models import Task, TaskStatus, load_status

logger = logging.getLogger(__name__)

_TASK_COLUMNS = (
    "id",
    "type",
    "data",
    "status",
    "progress",
    "result",
    "error",
    "created_at",
    "started_at",
    "completed_at",
)


class TaskStore:
    """
    SQLite task + credential store.

    The schema is simple and migration-safe:
    - create tables if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Writes are last-writer-wins except put_if_status(), which is the only
    conditional write and is used to claim and finish tasks.

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(self, db_path: str | Path = "tasks.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._opened = False
        self._open_lock = threading.Lock()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def open(self) -> None:
        """Create the schema on first use. Safe to call any number of times."""
        with self._open_lock:
            if self._opened:
                return
            try:
                self._db_path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StorageUnavailable(f"Cannot create store directory for {self._db_path}: {e}") from e
            self._ensure_schema()
            self._opened = True
        logger.info("TaskStore ready db=%s total=%s", self._db_path, self.count_tasks())

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        except sqlite3.Error as e:
            raise StorageUnavailable(f"Cannot open task store {self._db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    def _conn(self) -> sqlite3.Connection:
        if not self._opened:
            self.open()
        return self._get_conn()

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    type TEXT NOT NULL,
                    data TEXT NOT NULL DEFAULT '{}',
                    status TEXT NOT NULL DEFAULT 'queued',
                    progress INTEGER NOT NULL DEFAULT 0,
                    result TEXT,
                    error TEXT,
                    created_at REAL NOT NULL,
                    started_at REAL,
                    completed_at REAL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS credentials (
                    provider TEXT PRIMARY KEY,
                    secret TEXT NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )

            # Migrations (safe): add missing columns.
            cur.execute("PRAGMA table_info(tasks)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE tasks ADD COLUMN {name} {decl}")
                logger.info("TaskStore migration: added column %s", name)

            add_col("progress", "INTEGER NOT NULL DEFAULT 0")
            add_col("result", "TEXT")
            add_col("error", "TEXT")
            add_col("started_at", "REAL")
            add_col("completed_at", "REAL")

            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status, created_at)")

            conn.commit()
        except sqlite3.Error as e:
            raise StorageUnavailable(f"Cannot initialise task store {self._db_path}: {e}") from e
        finally:
            conn.close()

    @staticmethod
    def _to_json(value: Any) -> str | None:
        if value is None:
            return None
        return json.dumps(value, ensure_ascii=False)

    @staticmethod
    def _from_json(s: str | None) -> Any:
        if s is None:
            return None
        try:
            return json.loads(s)
        except ValueError:
            logger.warning("TaskStore: undecodable JSON column, treating as null")
            return None

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        data = self._from_json(row["data"])
        status, error = load_status(row["status"], row["error"])
        return Task(
            id=str(row["id"]),
            type=str(row["type"]),
            data=data if isinstance(data, dict) else {},
            status=status,
            progress=int(row["progress"] or 0),
            result=self._from_json(row["result"]),
            error=error,
            created_at=float(row["created_at"] or 0.0),
            started_at=float(row["started_at"]) if row["started_at"] is not None else None,
            completed_at=float(row["completed_at"]) if row["completed_at"] is not None else None,
        )

    def _task_params(self, task: Task) -> tuple[Any, ...]:
        try:
            data = self._to_json(task.data or {})
            result = self._to_json(task.result)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Task {task.id} payload is not JSON-serialisable: {e}") from e
        return (
            task.id,
            task.type,
            data,
            task.status.value,
            int(task.progress),
            result,
            task.error,
            float(task.created_at),
            task.started_at,
            task.completed_at,
        )

    # ---- tasks ----

    def count_tasks(self) -> int:
        conn = self._conn()
        try:
            (n,) = conn.execute("SELECT COUNT(*) FROM tasks").fetchone()
            return int(n)
        finally:
            conn.close()

    def put(self, task: Task) -> None:
        """Insert or overwrite the whole record (last writer wins)."""
        params = self._task_params(task)
        placeholders = ", ".join("?" for _ in _TASK_COLUMNS)
        conn = self._conn()
        try:
            conn.execute(
                f"INSERT OR REPLACE INTO tasks({', '.join(_TASK_COLUMNS)}) VALUES ({placeholders})",
                params,
            )
            conn.commit()
            logger.debug("Task put id=%s status=%s progress=%s", task.id, task.status.value, task.progress)
        finally:
            conn.close()

    def put_if_status(self, task: Task, *, expected: Iterable[TaskStatus]) -> bool:
        """
        Conditional write.

        Atomically replaces the record only if its stored status is one of expected.
        Returns True if this caller's write happened.
        """
        exp = [e.value for e in expected]
        if not exp:
            return False

        params = self._task_params(task)
        assignments = ", ".join(f"{c} = ?" for c in _TASK_COLUMNS[1:])
        status_placeholders = ",".join("?" for _ in exp)
        conn = self._conn()
        try:
            cur = conn.execute(
                f"""
                UPDATE tasks
                SET {assignments}
                WHERE id = ?
                  AND status IN ({status_placeholders})
                """,
                (*params[1:], task.id, *exp),
            )
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()

    def get(self, task_id: str) -> Task:
        conn = self._conn()
        try:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        finally:
            conn.close()
        if row is None:
            raise TaskNotFound(task_id)
        return self._row_to_task(row)

    def exists(self, task_id: str) -> bool:
        conn = self._conn()
        try:
            row = conn.execute("SELECT 1 FROM tasks WHERE id = ?", (task_id,)).fetchone()
            return row is not None
        finally:
            conn.close()

    def get_all(self) -> list[Task]:
        """All tasks, newest first."""
        conn = self._conn()
        try:
            rows = conn.execute("SELECT * FROM tasks ORDER BY created_at DESC, id ASC").fetchall()
            return [self._row_to_task(r) for r in rows]
        finally:
            conn.close()

    def list_by_status(self, *statuses: TaskStatus, limit: int | None = None) -> list[Task]:
        """Tasks in the given statuses, oldest first (the order a wake cycle runs them)."""
        if not statuses:
            return []
        placeholders = ",".join("?" for _ in statuses)
        sql = f"SELECT * FROM tasks WHERE status IN ({placeholders}) ORDER BY created_at ASC, id ASC"
        params: list[Any] = [s.value for s in statuses]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        conn = self._conn()
        try:
            return [self._row_to_task(r) for r in conn.execute(sql, params).fetchall()]
        finally:
            conn.close()

    def delete(self, task_id: str) -> bool:
        conn = self._conn()
        try:
            cur = conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()

    # ---- credentials ----

    def get_credential(self, provider: str) -> str | None:
        if not provider:
            return None
        conn = self._conn()
        try:
            row = conn.execute(
                "SELECT secret FROM credentials WHERE provider = ?", (provider,)
            ).fetchone()
            return str(row["secret"]) if row else None
        finally:
            conn.close()

    def save_credential(self, provider: str, secret: str) -> None:
        """Overwrite the provider's secret. There is no history."""
        if not provider or not provider.strip():
            raise ValidationError("provider is required")
        if not secret:
            raise ValidationError("secret is required")
        conn = self._conn()
        try:
            conn.execute(
                "INSERT OR REPLACE INTO credentials(provider, secret, updated_at) VALUES (?, ?, ?)",
                (provider.strip(), secret, time.time()),
            )
            conn.commit()
            logger.info("Credential saved provider=%s", provider.strip())
        finally:
            conn.close()
