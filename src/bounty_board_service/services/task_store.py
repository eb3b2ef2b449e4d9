"""SQLite-backed storage for agents, tasks, bids, and activity."""

from __future__ import annotations

import contextlib
import sqlite3
from datetime import UTC, datetime
from pathlib import Path
from threading import RLock
from typing import TYPE_CHECKING, Any

from bounty_board_service.services.agent_ledger import (
    AGENT_COLUMNS,
    apply_deltas,
    row_to_agent,
    upsert_agent,
)

if TYPE_CHECKING:
    from bounty_board_service.services.lifecycle import (
        ActivityRecord,
        BidStatusUpdate,
        CreationPlan,
        TransitionPlan,
    )


# Largest value an SQLite INTEGER column can hold.
MAX_SQLITE_INT = 2**63 - 1


def now_iso() -> str:
    """Return current UTC time as ISO 8601 string with Z suffix."""
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def join_tags(tags: list[str] | None) -> str | None:
    """Store tags as a comma-joined string (None when empty)."""
    if not tags:
        return None
    return ",".join(tags)


def split_tags(raw: str | None) -> list[str]:
    """Inverse of join_tags."""
    if not raw:
        return []
    return [tag for tag in raw.split(",") if tag]


class TaskStore:
    """
    SQLite-backed storage.

    All writes that belong to one lifecycle step run in a single
    ``BEGIN IMMEDIATE`` transaction: the guarded task update first, the
    dependent bid/ledger/activity writes only after it matched a row.
    """

    _TASK_COLUMNS: tuple[str, ...] = (
        "id",
        "poster",
        "title",
        "description",
        "bounty_sats",
        "status",
        "tags",
        "deadline",
        "worker",
        "proof_url",
        "proof_description",
        "payment_tx",
        "poster_signature",
        "created_at",
        "updated_at",
    )
    _UPDATABLE_TASK_COLUMNS = frozenset(
        {"status", "worker", "bounty_sats", "proof_url", "proof_description", "payment_tx", "updated_at"}
    )
    _GUARD_COLUMNS = frozenset({"poster", "worker"})
    _TASK_SELECT_SQL = (
        "SELECT t.id, t.poster, t.title, t.description, t.bounty_sats, t.status, t.tags, "
        "t.deadline, t.worker, t.proof_url, t.proof_description, t.payment_tx, "
        "t.poster_signature, t.created_at, t.updated_at, "
        "pa.display_name AS poster_name, wa.display_name AS worker_name, "
        "(SELECT COUNT(*) FROM bids b WHERE b.task_id = t.id AND b.status = 'pending') "
        "AS bid_count "
        "FROM tasks t "
        "LEFT JOIN agents pa ON t.poster = pa.address "
        "LEFT JOIN agents wa ON t.worker = wa.address"
    )
    _BID_SELECT_SQL = (
        "SELECT b.id, b.task_id, b.bidder, b.amount_sats, b.message, b.status, "
        "b.bidder_signature, b.created_at, a.display_name AS bidder_name "
        "FROM bids b LEFT JOIN agents a ON b.bidder = a.address"
    )
    _AGENT_SELECT_SQL = "SELECT " + ", ".join(AGENT_COLUMNS) + " FROM agents"

    def __init__(self, db_path: str) -> None:
        self._lock = RLock()
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(db_path, check_same_thread=False, isolation_level=None)
        self._db.row_factory = sqlite3.Row
        self._db.execute("PRAGMA journal_mode=WAL")
        self._db.execute("PRAGMA foreign_keys=ON")
        self._db.execute("PRAGMA busy_timeout=5000")
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self._db.executescript(
                """
                CREATE TABLE IF NOT EXISTS agents (
                    address TEXT PRIMARY KEY,
                    secondary_address TEXT,
                    display_name TEXT,
                    reputation INTEGER NOT NULL DEFAULT 0 CHECK (reputation >= 0),
                    tasks_posted INTEGER NOT NULL DEFAULT 0,
                    tasks_completed INTEGER NOT NULL DEFAULT 0,
                    total_earned_sats INTEGER NOT NULL DEFAULT 0,
                    total_spent_sats INTEGER NOT NULL DEFAULT 0,
                    first_seen TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS tasks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    poster TEXT NOT NULL REFERENCES agents(address),
                    title TEXT NOT NULL,
                    description TEXT NOT NULL,
                    bounty_sats INTEGER NOT NULL CHECK (bounty_sats >= 1),
                    status TEXT NOT NULL DEFAULT 'open' CHECK (status IN (
                        'open', 'assigned', 'submitted', 'verified', 'paid',
                        'disputed', 'cancelled'
                    )),
                    tags TEXT,
                    deadline TEXT,
                    worker TEXT REFERENCES agents(address),
                    proof_url TEXT,
                    proof_description TEXT,
                    payment_tx TEXT,
                    poster_signature TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS bids (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    task_id INTEGER NOT NULL REFERENCES tasks(id),
                    bidder TEXT NOT NULL REFERENCES agents(address),
                    amount_sats INTEGER NOT NULL CHECK (amount_sats >= 1),
                    message TEXT,
                    status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN (
                        'pending', 'accepted', 'rejected', 'withdrawn'
                    )),
                    bidder_signature TEXT,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS activity (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    task_id INTEGER NOT NULL REFERENCES tasks(id),
                    actor TEXT NOT NULL,
                    action TEXT NOT NULL,
                    details TEXT,
                    created_at TEXT NOT NULL
                );

                CREATE UNIQUE INDEX IF NOT EXISTS ux_bids_one_accepted
                    ON bids(task_id) WHERE status = 'accepted';

                CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);
                CREATE INDEX IF NOT EXISTS idx_tasks_poster ON tasks(poster);
                CREATE INDEX IF NOT EXISTS idx_tasks_worker ON tasks(worker);
                CREATE INDEX IF NOT EXISTS idx_tasks_created ON tasks(created_at DESC);
                CREATE INDEX IF NOT EXISTS idx_bids_task ON bids(task_id);
                CREATE INDEX IF NOT EXISTS idx_bids_bidder ON bids(bidder);
                CREATE INDEX IF NOT EXISTS idx_activity_task ON activity(task_id);
                CREATE INDEX IF NOT EXISTS idx_agents_secondary ON agents(secondary_address);
                """
            )

    # ------------------------------------------------------------------
    # Row conversion
    # ------------------------------------------------------------------

    def _row_to_task(self, row: sqlite3.Row) -> dict[str, Any]:
        task = {column: row[column] for column in self._TASK_COLUMNS}
        task["tags"] = split_tags(row["tags"])
        task["poster_name"] = row["poster_name"]
        task["worker_name"] = row["worker_name"]
        task["bid_count"] = int(row["bid_count"])
        return task

    @staticmethod
    def _row_to_bid(row: sqlite3.Row) -> dict[str, Any]:
        return {
            "id": row["id"],
            "task_id": row["task_id"],
            "bidder": row["bidder"],
            "bidder_name": row["bidder_name"],
            "amount_sats": row["amount_sats"],
            "message": row["message"],
            "status": row["status"],
            "bidder_signature": row["bidder_signature"],
            "created_at": row["created_at"],
        }

    def _insert_activity(self, task_id: int, activity: ActivityRecord, now: str) -> None:
        self._db.execute(
            "INSERT INTO activity (task_id, actor, action, details, created_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (task_id, activity.actor, activity.action, activity.details, now),
        )

    def _apply_bid_update(self, task_id: int, update: BidStatusUpdate) -> int:
        query = "UPDATE bids SET status = ? WHERE task_id = ? AND status = ?"
        params: list[object] = [update.status, task_id, update.from_status]
        if update.bid_id is not None:
            query += " AND id = ?"
            params.append(update.bid_id)
        if update.exclude_bid_id is not None:
            query += " AND id != ?"
            params.append(update.exclude_bid_id)
        return int(self._db.execute(query, params).rowcount)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert_task(
        self,
        task_data: dict[str, Any],
        plan: CreationPlan,
        *,
        poster_name: str | None,
        poster_secondary: str | None,
    ) -> int:
        """Insert a task with its poster upsert, ledger deltas and activity. Returns the id."""
        now = now_iso()
        with self._lock:
            try:
                self._db.execute("BEGIN IMMEDIATE")
                upsert_agent(self._db, task_data["poster"], poster_name, poster_secondary, now)
                cursor = self._db.execute(
                    "INSERT INTO tasks (poster, title, description, bounty_sats, status, tags, "
                    "deadline, poster_signature, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?, 'open', ?, ?, ?, ?, ?)",
                    (
                        task_data["poster"],
                        task_data["title"],
                        task_data["description"],
                        task_data["bounty_sats"],
                        join_tags(task_data.get("tags")),
                        task_data.get("deadline"),
                        task_data.get("poster_signature"),
                        now,
                        now,
                    ),
                )
                task_id = cursor.lastrowid
                if task_id is None:
                    msg = "Task insert did not return a row id"
                    raise RuntimeError(msg)
                apply_deltas(self._db, plan.ledger_deltas)
                self._insert_activity(task_id, plan.activity, now)
                self._db.execute("COMMIT")
            except Exception:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise
        return int(task_id)

    def insert_bid(
        self,
        bid_data: dict[str, Any],
        activity: ActivityRecord,
        *,
        bidder_name: str | None,
        bidder_secondary: str | None,
    ) -> int | None:
        """
        Insert a pending bid, guarded on the task still being open.

        Returns the new bid id, or None when the task left 'open' before the
        write (nothing is written in that case).
        """
        now = now_iso()
        task_id = bid_data["task_id"]
        with self._lock:
            try:
                self._db.execute("BEGIN IMMEDIATE")
                upsert_agent(self._db, bid_data["bidder"], bidder_name, bidder_secondary, now)
                cursor = self._db.execute(
                    "INSERT INTO bids (task_id, bidder, amount_sats, message, status, "
                    "bidder_signature, created_at) "
                    "SELECT ?, ?, ?, ?, 'pending', ?, ? "
                    "WHERE EXISTS (SELECT 1 FROM tasks WHERE id = ? AND status = 'open')",
                    (
                        task_id,
                        bid_data["bidder"],
                        bid_data["amount_sats"],
                        bid_data.get("message"),
                        bid_data.get("bidder_signature"),
                        now,
                        task_id,
                    ),
                )
                if cursor.rowcount == 0:
                    self._db.execute("ROLLBACK")
                    return None
                bid_id = cursor.lastrowid
                self._insert_activity(task_id, activity, now)
                self._db.execute("COMMIT")
            except Exception:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise
        return int(bid_id) if bid_id is not None else None

    def commit_transition(self, plan: TransitionPlan) -> bool:
        """
        Apply a transition plan atomically.

        The guarded task update runs first; if it matches no row (status or
        owner changed underneath us) nothing else runs and False is returned.
        A required bid update that matches no row aborts the same way.
        """
        if any(column not in self._UPDATABLE_TASK_COLUMNS for column in plan.task_updates):
            msg = "Attempted to update unknown task column"
            raise ValueError(msg)
        if plan.guard_column is not None and plan.guard_column not in self._GUARD_COLUMNS:
            msg = f"Unsupported guard column: {plan.guard_column}"
            raise ValueError(msg)

        set_clause = ", ".join(f"{column} = ?" for column in plan.task_updates)
        query = "UPDATE tasks SET " + set_clause + " WHERE id = ? AND status = ?"  # nosec B608
        params: list[object] = [*plan.task_updates.values(), plan.task_id, plan.expected_status]
        if plan.guard_column is not None:
            query += f" AND {plan.guard_column} = ?"
            params.append(plan.guard_value)

        now = now_iso()
        with self._lock:
            try:
                self._db.execute("BEGIN IMMEDIATE")
                if self._db.execute(query, params).rowcount == 0:
                    self._db.execute("ROLLBACK")
                    return False

                for update in plan.bid_updates:
                    changed = self._apply_bid_update(plan.task_id, update)
                    if update.required and changed == 0:
                        self._db.execute("ROLLBACK")
                        return False

                apply_deltas(self._db, plan.ledger_deltas)
                self._insert_activity(plan.task_id, plan.activity, now)
                self._db.execute("COMMIT")
            except Exception:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise
        return True

    def upsert_agent(
        self,
        address: str,
        display_name: str | None,
        secondary_address: str | None,
    ) -> None:
        """Standalone agent upsert."""
        with self._lock:
            try:
                self._db.execute("BEGIN IMMEDIATE")
                upsert_agent(self._db, address, display_name, secondary_address, now_iso())
                self._db.execute("COMMIT")
            except Exception:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_task(self, task_id: int) -> dict[str, Any] | None:
        """Fetch a task by id."""
        with self._lock:
            row = self._db.execute(self._TASK_SELECT_SQL + " WHERE t.id = ?", (task_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    @staticmethod
    def _task_filters(
        status: str | None,
        poster: str | None,
        tag: str | None,
    ) -> tuple[str, list[object]]:
        clauses: list[str] = []
        params: list[object] = []
        if status is not None:
            clauses.append("t.status = ?")
            params.append(status)
        if poster is not None:
            clauses.append("t.poster = ?")
            params.append(poster)
        if tag is not None:
            clauses.append("instr(',' || COALESCE(t.tags, '') || ',', ?) > 0")
            params.append(f",{tag},")
        where = " WHERE " + " AND ".join(clauses) if clauses else ""
        return where, params

    def list_tasks(
        self,
        status: str | None,
        poster: str | None,
        tag: str | None,
        limit: int,
        offset: int,
    ) -> tuple[list[dict[str, Any]], int]:
        """List tasks newest first with optional AND-ed filters. Returns (page, total)."""
        where, params = self._task_filters(status, poster, tag)
        query = self._TASK_SELECT_SQL + where + " ORDER BY t.created_at DESC, t.id DESC LIMIT ? OFFSET ?"
        count_query = "SELECT COUNT(*) FROM tasks t" + where  # nosec B608

        with self._lock:
            rows = self._db.execute(query, [*params, limit, offset]).fetchall()
            count_row = self._db.execute(count_query, params).fetchone()
        total = int(count_row[0]) if count_row is not None else 0
        return [self._row_to_task(row) for row in rows], total

    def list_agent_tasks(self, role: str, address: str, limit: int) -> list[dict[str, Any]]:
        """Most recent tasks where ``address`` holds ``role`` (poster or worker)."""
        if role not in self._GUARD_COLUMNS:
            msg = f"Unsupported role: {role}"
            raise ValueError(msg)
        query = (
            self._TASK_SELECT_SQL
            + f" WHERE t.{role} = ? ORDER BY t.created_at DESC, t.id DESC LIMIT ?"
        )
        with self._lock:
            rows = self._db.execute(query, (address, limit)).fetchall()
        return [self._row_to_task(row) for row in rows]

    def count_tasks_by_status(self) -> dict[str, int]:
        """Count tasks grouped by status."""
        with self._lock:
            rows = self._db.execute("SELECT status, COUNT(*) FROM tasks GROUP BY status").fetchall()
        return {str(row[0]): int(row[1]) for row in rows}

    def get_bid(self, bid_id: int) -> dict[str, Any] | None:
        """Fetch a bid by id."""
        with self._lock:
            row = self._db.execute(self._BID_SELECT_SQL + " WHERE b.id = ?", (bid_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_bid(row)

    def get_bids_for_task(self, task_id: int) -> list[dict[str, Any]]:
        """Fetch all bids for a task, oldest first."""
        with self._lock:
            rows = self._db.execute(
                self._BID_SELECT_SQL + " WHERE b.task_id = ? ORDER BY b.created_at, b.id",
                (task_id,),
            ).fetchall()
        return [self._row_to_bid(row) for row in rows]

    def get_activity(self, task_id: int) -> list[dict[str, Any]]:
        """Fetch the activity log of a task, oldest first."""
        with self._lock:
            rows = self._db.execute(
                "SELECT act.id, act.task_id, act.actor, act.action, act.details, act.created_at, "
                "a.display_name AS actor_name "
                "FROM activity act LEFT JOIN agents a ON act.actor = a.address "
                "WHERE act.task_id = ? ORDER BY act.created_at, act.id",
                (task_id,),
            ).fetchall()
        return [
            {
                "id": row["id"],
                "task_id": row["task_id"],
                "actor": row["actor"],
                "actor_name": row["actor_name"],
                "action": row["action"],
                "details": row["details"],
                "created_at": row["created_at"],
            }
            for row in rows
        ]

    def get_agent(self, address: str) -> dict[str, Any] | None:
        """Fetch an agent by primary address, falling back to secondary address."""
        with self._lock:
            row = self._db.execute(
                self._AGENT_SELECT_SQL + " WHERE address = ? OR secondary_address = ? "
                "ORDER BY address = ? DESC LIMIT 1",
                (address, address, address),
            ).fetchone()
        if row is None:
            return None
        return row_to_agent(row)

    def list_agents(self) -> list[dict[str, Any]]:
        """All agents ordered for the leaderboard."""
        with self._lock:
            rows = self._db.execute(
                self._AGENT_SELECT_SQL
                + " ORDER BY reputation DESC, tasks_completed DESC, first_seen ASC"
            ).fetchall()
        return [row_to_agent(row) for row in rows]

    def get_stats(self) -> dict[str, int]:
        """Board-wide aggregate counts and sums."""
        with self._lock:
            task_row = self._db.execute(
                "SELECT COUNT(*) AS total_tasks, "
                "COALESCE(SUM(status = 'open'), 0) AS open_tasks, "
                "COALESCE(SUM(status = 'assigned'), 0) AS assigned_tasks, "
                "COALESCE(SUM(status IN ('verified', 'paid')), 0) AS completed_tasks, "
                "COALESCE(SUM(bounty_sats), 0) AS total_bounty_sats, "
                "COALESCE(SUM(CASE WHEN status = 'paid' THEN bounty_sats ELSE 0 END), 0) "
                "AS paid_out_sats "
                "FROM tasks"
            ).fetchone()
            agent_row = self._db.execute("SELECT COUNT(*) FROM agents").fetchone()
            bid_row = self._db.execute("SELECT COUNT(*) FROM bids").fetchone()
        return {
            "total_tasks": int(task_row["total_tasks"]),
            "open_tasks": int(task_row["open_tasks"]),
            "assigned_tasks": int(task_row["assigned_tasks"]),
            "completed_tasks": int(task_row["completed_tasks"]),
            "total_bounty_sats": int(task_row["total_bounty_sats"]),
            "paid_out_sats": int(task_row["paid_out_sats"]),
            "total_agents": int(agent_row[0]),
            "total_bids": int(bid_row[0]),
        }

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()
