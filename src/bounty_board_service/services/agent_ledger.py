"""Agent ledger: reputation and sats counters, mutated only by task transitions."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from bounty_board_service.core.exceptions import ServiceError

if TYPE_CHECKING:
    from bounty_board_service.services.task_store import TaskStore

AGENT_COLUMNS: tuple[str, ...] = (
    "address",
    "secondary_address",
    "display_name",
    "reputation",
    "tasks_posted",
    "tasks_completed",
    "total_earned_sats",
    "total_spent_sats",
    "first_seen",
)

_UPSERT_SQL = (
    "INSERT INTO agents (address, display_name, secondary_address, first_seen) "
    "VALUES (?, ?, ?, ?) "
    "ON CONFLICT(address) DO UPDATE SET "
    "display_name = COALESCE(excluded.display_name, agents.display_name), "
    "secondary_address = COALESCE(excluded.secondary_address, agents.secondary_address)"
)

_APPLY_DELTA_SQL = (
    "UPDATE agents SET "
    "reputation = reputation + ?, "
    "tasks_posted = tasks_posted + ?, "
    "tasks_completed = tasks_completed + ?, "
    "total_earned_sats = total_earned_sats + ?, "
    "total_spent_sats = total_spent_sats + ? "
    "WHERE address = ?"
)


class UnknownAgentError(Exception):
    """Raised when a ledger delta targets an agent row that does not exist."""


@dataclass(frozen=True)
class LedgerDelta:
    """Counter changes for one agent, produced by a lifecycle transition."""

    address: str
    reputation: int = 0
    tasks_posted: int = 0
    tasks_completed: int = 0
    total_earned_sats: int = 0
    total_spent_sats: int = 0

    def __post_init__(self) -> None:
        if self.reputation < 0:
            msg = "Reputation can only increase"
            raise ValueError(msg)


def _blank_to_none(value: str | None) -> str | None:
    if value is None or value == "":
        return None
    return value


def upsert_agent(
    db: sqlite3.Connection,
    address: str,
    display_name: str | None,
    secondary_address: str | None,
    now: str,
) -> None:
    """
    Create the agent row or merge into it.

    Known display name and secondary address are never overwritten by an
    absent value. Must run inside the caller's transaction.
    """
    db.execute(
        _UPSERT_SQL,
        (address, _blank_to_none(display_name), _blank_to_none(secondary_address), now),
    )


def apply_deltas(db: sqlite3.Connection, deltas: tuple[LedgerDelta, ...]) -> None:
    """Apply ledger deltas inside the caller's transaction."""
    for delta in deltas:
        cursor = db.execute(
            _APPLY_DELTA_SQL,
            (
                delta.reputation,
                delta.tasks_posted,
                delta.tasks_completed,
                delta.total_earned_sats,
                delta.total_spent_sats,
                delta.address,
            ),
        )
        if cursor.rowcount == 0:
            msg = f"No agent row for address {delta.address}"
            raise UnknownAgentError(msg)


def row_to_agent(row: sqlite3.Row) -> dict[str, Any]:
    """Convert an agents row to a response dict."""
    return {column: row[column] for column in AGENT_COLUMNS}


class AgentLedger:
    """
    Read side and identity upsert for agents.

    Counter mutations have no public entry point here; they arrive as
    LedgerDelta values inside a TaskStore transition transaction.
    """

    def __init__(self, store: TaskStore, profile_task_limit: int) -> None:
        self._store = store
        self._profile_task_limit = profile_task_limit

    def upsert(
        self,
        address: str,
        display_name: str | None = None,
        secondary_address: str | None = None,
    ) -> dict[str, Any]:
        """Get or create an agent, merging in any newly supplied identity fields."""
        self._store.upsert_agent(address, display_name, secondary_address)
        agent = self._store.get_agent(address)
        if agent is None:
            msg = f"Agent {address} not found after upsert"
            raise RuntimeError(msg)
        return agent

    def get_agent(self, address: str) -> dict[str, Any]:
        """
        Agent profile by primary or secondary address.

        Raises:
            ServiceError: AGENT_NOT_FOUND
        """
        agent = self._store.get_agent(address)
        if agent is None:
            raise ServiceError("AGENT_NOT_FOUND", "Agent not found", 404, {})

        primary = str(agent["address"])
        return {
            "agent": agent,
            "tasks_posted": self._store.list_agent_tasks(
                "poster", primary, self._profile_task_limit
            ),
            "tasks_worked": self._store.list_agent_tasks(
                "worker", primary, self._profile_task_limit
            ),
        }

    def list_agents(self) -> list[dict[str, Any]]:
        """Leaderboard: reputation desc, then completed tasks desc."""
        return self._store.list_agents()
