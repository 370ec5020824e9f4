# src/life_manager/tasks/task_store.py

from __future__ import annotations

import contextlib
import logging
import sqlite3
import time
from collections.abc import Iterable
from datetime import date, datetime
from pathlib import Path
from typing import Any

from .task_models import Domain, EnergyLevel, Task, TaskPriority, TaskStatus

logger = logging.getLogger(__name__)

DEFAULT_IMPORT_DOMAIN = "Google Import"


class TaskStore:
    """
    SQLite store for domains and tasks.

    The schema is intentionally simple and migration-safe:
    - create table if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Thread-safety:
    - each method opens its own SQLite connection

    The sync tables (see sync.sync_store) live in the same database file and
    reference tasks(id) with ON DELETE CASCADE, so foreign keys are enabled on
    every connection.
    """

    def __init__(self, db_path: str | Path = "life_manager.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        try:
            total = self.count_tasks()
        except sqlite3.Error:
            total = -1
        logger.info("TaskStore ready db=%s total=%s", self._db_path, total)

    @property
    def db_path(self) -> Path:
        return self._db_path

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS domains (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    title TEXT NOT NULL,
                    description TEXT,
                    domain_id INTEGER NOT NULL REFERENCES domains(id),
                    priority TEXT NOT NULL DEFAULT 'should-do',
                    estimated_minutes INTEGER NOT NULL DEFAULT 30,
                    due_date TEXT,
                    status TEXT NOT NULL DEFAULT 'todo',
                    energy_level TEXT,
                    scheduled_start TEXT,
                    scheduled_end TEXT,
                    created_at REAL NOT NULL,
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

            add_col("energy_level", "TEXT")
            add_col("scheduled_start", "TEXT")
            add_col("scheduled_end", "TEXT")

            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_status_due ON tasks(status, due_date)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_domain ON tasks(domain_id)")

            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _dt_to_str(value: datetime | None) -> str | None:
        return value.isoformat() if value is not None else None

    @staticmethod
    def _str_to_dt(raw: str | None) -> datetime | None:
        if not raw:
            return None
        try:
            return datetime.fromisoformat(raw)
        except ValueError:
            logger.warning("Unparseable stored datetime %r; ignoring.", raw)
            return None

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        return Task(
            id=int(row["id"]),
            title=str(row["title"] or ""),
            description=row["description"],
            domain_id=int(row["domain_id"]),
            priority=TaskPriority.from_db(row["priority"]),
            estimated_minutes=int(row["estimated_minutes"] or 0),
            due_date=row["due_date"],
            status=TaskStatus.from_db(row["status"]),
            energy_level=EnergyLevel.from_db(row["energy_level"]),
            scheduled_start=self._str_to_dt(row["scheduled_start"]),
            scheduled_end=self._str_to_dt(row["scheduled_end"]),
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
        )

    # ---- domains ----

    def add_domain(self, name: str, description: str = "") -> int:
        if not name or not name.strip():
            raise ValueError("domain name is required")

        now = time.time()
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                "INSERT INTO domains(name, description, created_at, updated_at) VALUES (?, ?, ?, ?)",
                (name.strip(), description, now, now),
            )
            conn.commit()
            if cur.lastrowid is None:
                raise RuntimeError("SQLite did not return lastrowid for domains insert")
            domain_id = int(cur.lastrowid)
            logger.debug("Domain added id=%s name=%s", domain_id, name)
            return domain_id
        finally:
            conn.close()

    def list_domains(self) -> list[Domain]:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT id, name, description FROM domains ORDER BY id ASC")
            return [
                Domain(id=int(r["id"]), name=str(r["name"]), description=str(r["description"] or ""))
                for r in cur.fetchall()
            ]
        finally:
            conn.close()

    def ensure_default_domain(self, preferred_id: int | None = None) -> int:
        """
        Return a domain id that imported tasks can be attached to.

        Order: preferred_id (if it exists) -> first existing domain -> a new "Google Import" domain.
        """
        domains = self.list_domains()
        if preferred_id is not None:
            for d in domains:
                if d.id == preferred_id:
                    return d.id
        if domains:
            return domains[0].id

        domain_id = self.add_domain(DEFAULT_IMPORT_DOMAIN, "Tasks imported from Google Calendar and Tasks")
        logger.info("Created default domain id=%s for imports", domain_id)
        return domain_id

    # ---- tasks ----

    def count_tasks(self) -> int:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT COUNT(*) FROM tasks")
            (n,) = cur.fetchone()
            return int(n)
        finally:
            conn.close()

    def add_task(
        self,
        *,
        title: str,
        domain_id: int,
        description: str | None = None,
        priority: TaskPriority = TaskPriority.SHOULD_DO,
        estimated_minutes: int = 30,
        due_date: str | None = None,
        status: TaskStatus = TaskStatus.TODO,
        energy_level: EnergyLevel | None = None,
        scheduled_start: datetime | None = None,
        scheduled_end: datetime | None = None,
    ) -> int:
        if not title or not title.strip():
            raise ValueError("title is required")

        now = time.time()
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO tasks(
                    title, description, domain_id, priority, estimated_minutes,
                    due_date, status, energy_level, scheduled_start, scheduled_end,
                    created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    title.strip(),
                    description,
                    int(domain_id),
                    priority.value,
                    max(1, int(estimated_minutes)),
                    due_date,
                    status.value,
                    energy_level.value if energy_level is not None else None,
                    self._dt_to_str(scheduled_start),
                    self._dt_to_str(scheduled_end),
                    now,
                    now,
                ),
            )
            conn.commit()
            rowid = cur.lastrowid
            if rowid is None:
                raise RuntimeError("SQLite did not return lastrowid for tasks insert")
            task_id = int(rowid)
            logger.debug(
                "Task added id=%s priority=%s status=%s due=%s",
                task_id,
                priority.value,
                status.value,
                due_date,
            )
            return task_id
        finally:
            conn.close()

    def get_task(self, task_id: int) -> Task | None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT * FROM tasks WHERE id = ?", (int(task_id),))
            row = cur.fetchone()
            return self._row_to_task(row) if row else None
        finally:
            conn.close()

    def update_task_fields(
        self,
        task_id: int,
        *,
        title: str | None = None,
        description: str | None = None,
        priority: TaskPriority | None = None,
        estimated_minutes: int | None = None,
        due_date: str | None = None,
        status: TaskStatus | None = None,
        energy_level: EnergyLevel | None = None,
        scheduled_start: datetime | None = None,
        scheduled_end: datetime | None = None,
    ) -> bool:
        """Update only the provided (non-None) fields. Returns True if the row exists."""
        fields: list[str] = []
        params: list[Any] = []

        if title is not None:
            fields.append("title = ?")
            params.append(title.strip())

        if description is not None:
            fields.append("description = ?")
            params.append(description)

        if priority is not None:
            fields.append("priority = ?")
            params.append(priority.value)

        if estimated_minutes is not None:
            fields.append("estimated_minutes = ?")
            params.append(max(1, int(estimated_minutes)))

        if due_date is not None:
            fields.append("due_date = ?")
            params.append(due_date)

        if status is not None:
            fields.append("status = ?")
            params.append(status.value)

        if energy_level is not None:
            fields.append("energy_level = ?")
            params.append(energy_level.value)

        if scheduled_start is not None:
            fields.append("scheduled_start = ?")
            params.append(self._dt_to_str(scheduled_start))

        if scheduled_end is not None:
            fields.append("scheduled_end = ?")
            params.append(self._dt_to_str(scheduled_end))

        if not fields:
            return self.get_task(task_id) is not None

        fields.append("updated_at = ?")
        params.append(time.time())
        params.append(int(task_id))

        sql = f"UPDATE tasks SET {', '.join(fields)} WHERE id = ?"

        conn = self._get_conn()
        try:
            cur = conn.execute(sql, params)
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()

    def list_tasks(
        self,
        *,
        statuses: Iterable[TaskStatus] | None = None,
        limit: int = 200,
    ) -> list[Task]:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            if statuses is None:
                cur.execute("SELECT * FROM tasks ORDER BY id ASC LIMIT ?", (int(limit),))
            else:
                wanted = [s.value for s in statuses]
                if not wanted:
                    return []
                placeholders = ",".join("?" for _ in wanted)
                cur.execute(
                    f"SELECT * FROM tasks WHERE status IN ({placeholders}) ORDER BY id ASC LIMIT ?",
                    (*wanted, int(limit)),
                )
            return [self._row_to_task(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def list_open_tasks_for_day(self, day: date, *, limit: int = 200) -> list[Task]:
        """
        Open tasks relevant for planning `day`.

        A task is relevant if its status is todo/in-progress and it has no due date
        or is due on/before `day` (overdue tasks stay on the plan).
        """
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT *
                FROM tasks
                WHERE status IN ('todo','in-progress')
                  AND (due_date IS NULL OR substr(due_date, 1, 10) <= ?)
                ORDER BY COALESCE(due_date, '9999-12-31') ASC, id ASC
                LIMIT ?
                """,
                (day.isoformat(), int(limit)),
            )
            return [self._row_to_task(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def delete_task(self, task_id: int) -> bool:
        """Delete a task; its sync metadata goes with it (ON DELETE CASCADE)."""
        conn = self._get_conn()
        try:
            cur = conn.execute("DELETE FROM tasks WHERE id = ?", (int(task_id),))
            conn.commit()
            deleted = cur.rowcount == 1
            if deleted:
                logger.debug("Task deleted id=%s", task_id)
            return deleted
        finally:
            conn.close()
