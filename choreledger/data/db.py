"""
Chore Ledger — SQLite store.

Tables for users, routines, tasks, completions, streaks and the balance
ledger, plus the transaction helper every writer goes through. Integrity
that must survive concurrent writers lives in the schema itself: the
one-completion-per-day UNIQUE index, foreign keys, and triggers that keep
balance_transactions append-only.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import date, datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import ValidationError as PydanticValidationError

from choreledger.core.errors import NotFoundError, ValidationError
from choreledger.core.schedule import is_scheduled, parse_date
from choreledger.data.models import (
    Routine,
    Task,
    TaskDraft,
    TaskType,
    TimeWindow,
    User,
    from_cents,
    to_cents,
)

if TYPE_CHECKING:
    from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    household_id  INTEGER NOT NULL,
    display_name  TEXT    NOT NULL,
    is_admin      INTEGER NOT NULL DEFAULT 0,
    created_at    TEXT    NOT NULL
);

CREATE TABLE IF NOT EXISTS routines (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    household_id  INTEGER NOT NULL,
    name          TEXT    NOT NULL
);

CREATE TABLE IF NOT EXISTS tasks (
    id                 INTEGER PRIMARY KEY AUTOINCREMENT,
    household_id       INTEGER NOT NULL,
    name               TEXT    NOT NULL,
    task_type          TEXT    NOT NULL CHECK (task_type IN ('routine', 'bonus')),
    dollar_value_cents INTEGER NOT NULL DEFAULT 0 CHECK (dollar_value_cents >= 0),
    schedule           TEXT    NOT NULL DEFAULT '[]',
    time_window        TEXT,
    routine_id         INTEGER REFERENCES routines(id),
    description        TEXT,
    created_at         TEXT    NOT NULL
);

CREATE TABLE IF NOT EXISTS task_assignments (
    task_id  INTEGER NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
    user_id  INTEGER NOT NULL REFERENCES users(id),
    PRIMARY KEY (task_id, user_id)
);

CREATE INDEX IF NOT EXISTS idx_task_assignments_user
    ON task_assignments (user_id);

CREATE TABLE IF NOT EXISTS completions (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    task_id          INTEGER NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
    user_id          INTEGER NOT NULL REFERENCES users(id),
    completed_at     TEXT    NOT NULL,
    completion_date  TEXT    NOT NULL,
    UNIQUE (task_id, user_id, completion_date)
);

CREATE INDEX IF NOT EXISTS idx_completions_user_date
    ON completions (user_id, completion_date);

CREATE TABLE IF NOT EXISTS streaks (
    user_id               INTEGER NOT NULL REFERENCES users(id),
    routine_id            INTEGER NOT NULL REFERENCES routines(id),
    current_count         INTEGER NOT NULL DEFAULT 0,
    best_count            INTEGER NOT NULL DEFAULT 0,
    last_completion_date  TEXT,
    PRIMARY KEY (user_id, routine_id),
    CHECK (best_count >= current_count)
);

CREATE TABLE IF NOT EXISTS balances (
    user_id                INTEGER PRIMARY KEY REFERENCES users(id),
    current_balance_cents  INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS balance_transactions (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id       INTEGER NOT NULL REFERENCES users(id),
    amount_cents  INTEGER NOT NULL,
    type          TEXT    NOT NULL CHECK (type IN ('earned', 'adjustment', 'payout')),
    description   TEXT    NOT NULL DEFAULT '',
    created_at    TEXT    NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_balance_transactions_user
    ON balance_transactions (user_id);

CREATE TRIGGER IF NOT EXISTS balance_transactions_no_update
BEFORE UPDATE ON balance_transactions
BEGIN
    SELECT RAISE(ABORT, 'balance_transactions is append-only');
END;

CREATE TRIGGER IF NOT EXISTS balance_transactions_no_delete
BEFORE DELETE ON balance_transactions
BEGIN
    SELECT RAISE(ABORT, 'balance_transactions is append-only');
END;
"""

# Columns added to tasks after the first schema, with their DDL
_TASK_MIGRATIONS = {
    "description": "ALTER TABLE tasks ADD COLUMN description TEXT",
    "time_window": "ALTER TABLE tasks ADD COLUMN time_window TEXT",
    "routine_id": "ALTER TABLE tasks ADD COLUMN routine_id INTEGER REFERENCES routines(id)",
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class LedgerDB:
    """SQLite connection manager and schema owner for the ledger."""

    def __init__(self, db_path: str | None = None, timeout: float | None = None) -> None:
        from choreledger.config import settings

        if db_path is None:
            db_path = settings.DATABASE_PATH
        if timeout is None:
            timeout = settings.DB_TIMEOUT_SECONDS

        self._db_path = db_path
        self._timeout = timeout
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @property
    def path(self) -> str:
        return self._db_path

    def _open(self) -> sqlite3.Connection:
        # Autocommit mode: transactions are opened explicitly below
        conn = sqlite3.connect(
            self._db_path,
            timeout=self._timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    def _init_db(self) -> None:
        """Create all tables if they don't exist, and migrate older schemas."""
        conn = self._open()
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(_SCHEMA)
            existing_cols = {
                row[1] for row in conn.execute("PRAGMA table_info(tasks)").fetchall()
            }
            for column, ddl in _TASK_MIGRATIONS.items():
                if column not in existing_cols:
                    conn.execute(ddl)
                    logger.info("Migrated tasks table: added column %s", column)
        finally:
            conn.close()
        logger.debug("Ledger schema initialized at %s", self._db_path)

    @contextmanager
    def read(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection for read-only queries."""
        conn = self._open()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(
        self, conn: sqlite3.Connection | None = None,
    ) -> Iterator[sqlite3.Connection]:
        """Run the enclosed writes as one atomic unit.

        BEGIN IMMEDIATE takes the database write lock up front, so a
        read-modify-write inside the block cannot interleave with another
        writer. Any exception rolls everything back. When ``conn`` is given
        the caller already owns a transaction and the block joins it.
        """
        if conn is not None:
            yield conn
            return

        conn = self._open()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.execute("COMMIT")
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
        finally:
            conn.close()


class UserDB:
    """Registry of household members."""

    def __init__(self, db: LedgerDB) -> None:
        self._db = db

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            household_id=row["household_id"],
            display_name=row["display_name"],
            is_admin=bool(row["is_admin"]),
            created_at=row["created_at"],
        )

    def add_user(
        self, household_id: int, display_name: str, is_admin: bool = False,
    ) -> User:
        """Register a new household member."""
        if not display_name.strip():
            raise ValidationError("display_name must not be empty")
        now = utc_now().isoformat()
        with self._db.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO users (household_id, display_name, is_admin, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (household_id, display_name.strip(), int(is_admin), now),
            )
            user_id = cursor.lastrowid
        logger.info("User registered: #%d '%s'", user_id, display_name)
        return User(
            id=user_id,
            household_id=household_id,
            display_name=display_name.strip(),
            is_admin=is_admin,
            created_at=now,
        )

    def get_user(self, user_id: int) -> User | None:
        with self._db.read() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def list_users(self, household_id: int | None = None) -> list[User]:
        """Return all users, optionally scoped to a household."""
        query = "SELECT * FROM users"
        params: list = []
        if household_id is not None:
            query += " WHERE household_id = ?"
            params.append(household_id)
        query += " ORDER BY id"
        with self._db.read() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_user(r) for r in rows]


class TaskDB:
    """Tasks and routines, as maintained by the task editor surface."""

    def __init__(self, db: LedgerDB) -> None:
        self._db = db

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        window = json.loads(row["time_window"]) if row["time_window"] else None
        return Task(
            id=row["id"],
            household_id=row["household_id"],
            name=row["name"],
            task_type=TaskType(row["task_type"]),
            dollar_value=from_cents(row["dollar_value_cents"]),
            schedule=frozenset(json.loads(row["schedule"] or "[]")),
            time_window=TimeWindow(**window) if window else None,
            routine_id=row["routine_id"],
            description=row["description"],
            created_at=row["created_at"],
        )

    @staticmethod
    def _validate(fields: dict) -> TaskDraft:
        try:
            return TaskDraft.model_validate(fields)
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid task: {exc}") from exc

    # -- routines ------------------------------------------------------------

    def add_routine(self, household_id: int, name: str) -> Routine:
        if not name.strip():
            raise ValidationError("routine name must not be empty")
        with self._db.transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO routines (household_id, name) VALUES (?, ?)",
                (household_id, name.strip()),
            )
            routine_id = cursor.lastrowid
        logger.info("Routine added: #%d '%s'", routine_id, name)
        return Routine(id=routine_id, household_id=household_id, name=name.strip())

    def get_routine(self, routine_id: int) -> Routine | None:
        with self._db.read() as conn:
            row = conn.execute(
                "SELECT * FROM routines WHERE id = ?", (routine_id,)
            ).fetchone()
        if row is None:
            return None
        return Routine(id=row["id"], household_id=row["household_id"], name=row["name"])

    # -- tasks ---------------------------------------------------------------

    def add_task(
        self,
        household_id: int,
        name: str,
        task_type: TaskType | str,
        dollar_value=0,
        schedule=None,
        time_window: dict[str, str] | None = None,
        routine_id: int | None = None,
        description: str | None = None,
    ) -> Task:
        """Validate and insert a new task."""
        draft = self._validate({
            "name": name,
            "task_type": task_type,
            "dollar_value": dollar_value,
            "schedule": schedule,
            "time_window": time_window,
            "routine_id": routine_id,
            "description": description,
        })
        now = utc_now().isoformat()
        try:
            with self._db.transaction() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO tasks
                        (household_id, name, task_type, dollar_value_cents,
                         schedule, time_window, routine_id, description, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        household_id, draft.name, draft.task_type.value,
                        to_cents(draft.dollar_value), json.dumps(draft.schedule),
                        json.dumps(draft.time_window) if draft.time_window else None,
                        draft.routine_id, draft.description, now,
                    ),
                )
                task_id = cursor.lastrowid
        except sqlite3.IntegrityError as exc:
            raise NotFoundError(f"Routine {routine_id} not found") from exc

        logger.info(
            "Task added: #%d '%s' (%s, %s)",
            task_id, draft.name, draft.task_type.value, draft.dollar_value,
        )
        return self.get_task(task_id)

    def get_task(self, task_id: int) -> Task | None:
        """Fetch a single task by ID."""
        with self._db.read() as conn:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    def update_task(self, task_id: int, **changes) -> Task:
        """Apply attribute changes to a task. Identity never changes."""
        task = self.get_task(task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found")

        current = {
            "name": task.name,
            "task_type": task.task_type,
            "dollar_value": task.dollar_value,
            "schedule": sorted(task.schedule),
            "time_window": (
                {"start": task.time_window.start, "end": task.time_window.end}
                if task.time_window else None
            ),
            "routine_id": task.routine_id,
            "description": task.description,
        }
        unknown = set(changes) - set(current)
        if unknown:
            raise ValidationError(f"Unknown task fields: {sorted(unknown)}")
        draft = self._validate({**current, **changes})

        with self._db.transaction() as conn:
            conn.execute(
                """
                UPDATE tasks
                SET name = ?, task_type = ?, dollar_value_cents = ?, schedule = ?,
                    time_window = ?, routine_id = ?, description = ?
                WHERE id = ?
                """,
                (
                    draft.name, draft.task_type.value, to_cents(draft.dollar_value),
                    json.dumps(draft.schedule),
                    json.dumps(draft.time_window) if draft.time_window else None,
                    draft.routine_id, draft.description, task_id,
                ),
            )
        logger.info("Task #%d updated: %s", task_id, sorted(changes))
        return self.get_task(task_id)

    def list_tasks(
        self, household_id: int | None = None, routine_id: int | None = None,
    ) -> list[Task]:
        """List tasks, optionally filtered by household and/or routine."""
        conditions: list[str] = []
        params: list = []
        if household_id is not None:
            conditions.append("household_id = ?")
            params.append(household_id)
        if routine_id is not None:
            conditions.append("routine_id = ?")
            params.append(routine_id)

        query = "SELECT * FROM tasks"
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY id"

        with self._db.read() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_task(r) for r in rows]

    # -- assignments -----------------------------------------------------------

    def assign_users(self, task_id: int, user_ids: Iterable[int]) -> list[int]:
        """Replace the task's assignees. An empty list opens it to the household."""
        ids = sorted({int(u) for u in user_ids})
        task = self.get_task(task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found")

        with self._db.transaction() as conn:
            if ids:
                placeholders = ", ".join("?" for _ in ids)
                rows = conn.execute(
                    f"SELECT id, household_id FROM users WHERE id IN ({placeholders})",
                    ids,
                ).fetchall()
                missing = sorted(set(ids) - {r["id"] for r in rows})
                if missing:
                    raise NotFoundError(f"Users not found: {missing}")
                outsiders = sorted(
                    r["id"] for r in rows if r["household_id"] != task.household_id
                )
                if outsiders:
                    raise ValidationError(
                        f"Users {outsiders} are not in household {task.household_id}"
                    )

            conn.execute("DELETE FROM task_assignments WHERE task_id = ?", (task_id,))
            conn.executemany(
                "INSERT INTO task_assignments (task_id, user_id) VALUES (?, ?)",
                [(task_id, u) for u in ids],
            )
        logger.info("Task #%d assigned to %s", task_id, ids or "the whole household")
        return ids

    def assigned_users(self, task_id: int) -> list[int]:
        """User IDs assigned to the task; empty means anyone in the household."""
        with self._db.read() as conn:
            rows = conn.execute(
                "SELECT user_id FROM task_assignments WHERE task_id = ? ORDER BY user_id",
                (task_id,),
            ).fetchall()
        return [r["user_id"] for r in rows]

    def tasks_for_user(
        self,
        user_id: int,
        day: date | datetime | str | None = None,
        routine_id: int | None = None,
        tz: ZoneInfo | None = None,
    ) -> list[Task]:
        """Tasks the user is responsible for, optionally only those due on ``day``.

        A task is the user's when it is assigned to them, or when it has no
        assignees and belongs to their household.
        """
        query = """
            SELECT t.* FROM tasks t
            JOIN users u ON u.household_id = t.household_id
            WHERE u.id = ?
              AND (
                EXISTS (SELECT 1 FROM task_assignments a
                        WHERE a.task_id = t.id AND a.user_id = u.id)
                OR NOT EXISTS (SELECT 1 FROM task_assignments a WHERE a.task_id = t.id)
              )
        """
        params: list = [user_id]
        if routine_id is not None:
            query += " AND t.routine_id = ?"
            params.append(routine_id)
        query += " ORDER BY t.id"

        with self._db.read() as conn:
            rows = conn.execute(query, params).fetchall()
        tasks = [self._row_to_task(r) for r in rows]
        if day is None:
            return tasks

        if tz is None:
            from choreledger.config import settings
            tz = settings.tz
        day = parse_date(day, tz)
        return [t for t in tasks if is_scheduled(t, day, tz)]
