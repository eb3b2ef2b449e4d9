"""Task board facade: the operations the HTTP layer calls."""

from __future__ import annotations

from typing import Any

from bounty_board_service.core.exceptions import ServiceError
from bounty_board_service.logging import get_logger
from bounty_board_service.services.agent_ledger import AgentLedger
from bounty_board_service.services.lifecycle import (
    TASK_STATUSES,
    AcceptBid,
    CancelTask,
    SubmitWork,
    TransitionEvent,
    VerifyWork,
    WithdrawBid,
    apply_transition,
    plan_bid,
    plan_creation,
)
from bounty_board_service.services.task_store import MAX_SQLITE_INT, TaskStore, now_iso


def _is_positive_int(value: object) -> bool:
    """Check if value is a positive integer that fits an SQLite INTEGER (not float, not bool)."""
    return (
        isinstance(value, int)
        and not isinstance(value, bool)
        and 0 < value <= MAX_SQLITE_INT
    )


def _optional_str(value: object, field_name: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ServiceError("INVALID_PAYLOAD", f"Field '{field_name}' must be a string", 400, {})
    return value or None


def _required_str(value: object, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ServiceError(
            "MISSING_FIELD", f"Field '{field_name}' must be a non-empty string", 400, {}
        )
    return value


def normalize_tags(tags: object) -> list[str]:
    """Accept a list of strings or a comma-separated string; drop blanks."""
    if tags is None:
        return []
    if isinstance(tags, str):
        raw = tags.split(",")
    elif isinstance(tags, list) and all(isinstance(tag, str) for tag in tags):
        raw = [part for tag in tags for part in tag.split(",")]
    else:
        raise ServiceError(
            "INVALID_PAYLOAD", "tags must be a list of strings or a comma-separated string", 400, {}
        )
    return [tag.strip() for tag in raw if tag.strip()]


class TaskBoard:
    """
    Coordinates the task lifecycle.

    Each write loads the current task, asks the lifecycle engine for a plan,
    and hands the plan to TaskStore for one atomic guarded commit. A plan
    whose guard no longer matches is reported as TASK_CONFLICT.
    """

    def __init__(
        self,
        store: TaskStore,
        default_limit: int,
        max_limit: int,
        profile_task_limit: int,
    ) -> None:
        self._store = store
        self._ledger = AgentLedger(store, profile_task_limit)
        self._default_limit = default_limit
        self._max_limit = max_limit
        self._logger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _load_task(self, task_id: int) -> dict[str, Any]:
        task = self._store.get_task(task_id)
        if task is None:
            raise ServiceError("TASK_NOT_FOUND", "Task not found", 404, {})
        return task

    def _transition(self, task_id: int, event: TransitionEvent) -> dict[str, Any]:
        task = self._load_task(task_id)
        plan = apply_transition(task, event, now_iso())
        if not self._store.commit_transition(plan):
            current = self._store.get_task(task_id)
            self._logger.warning(
                "Transition lost race",
                extra={
                    "task_id": task_id,
                    "actor": event.actor,
                    "event": type(event).__name__,
                    "current_status": current["status"] if current else None,
                },
            )
            raise ServiceError(
                "TASK_CONFLICT",
                "Task was modified concurrently, please retry",
                409,
                {"current_status": current["status"] if current else None},
            )
        self._logger.info(
            "Task transitioned",
            extra={
                "task_id": task_id,
                "actor": event.actor,
                "action": plan.activity.action,
                "from_status": plan.expected_status,
                "to_status": plan.task_updates.get("status", plan.expected_status),
            },
        )
        return plan.task_updates

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def create_task(
        self,
        poster: str,
        title: object,
        description: object,
        bounty_sats: object,
        *,
        tags: object = None,
        deadline: object = None,
        poster_name: object = None,
        poster_secondary: object = None,
        signature: str | None = None,
    ) -> dict[str, Any]:
        """
        Post a new open task.

        Raises:
            ServiceError: MISSING_FIELD, INVALID_BOUNTY, INVALID_PAYLOAD
        """
        title_value = _required_str(title, "title")
        description_value = _required_str(description, "description")
        if not _is_positive_int(bounty_sats):
            raise ServiceError(
                "INVALID_BOUNTY", "bounty_sats must be a positive integer", 400, {}
            )
        bounty = int(bounty_sats)  # type: ignore[call-overload]

        plan = plan_creation(poster, bounty)
        task_id = self._store.insert_task(
            {
                "poster": poster,
                "title": title_value,
                "description": description_value,
                "bounty_sats": bounty,
                "tags": normalize_tags(tags),
                "deadline": _optional_str(deadline, "deadline"),
                "poster_signature": signature,
            },
            plan,
            poster_name=_optional_str(poster_name, "poster_name"),
            poster_secondary=_optional_str(poster_secondary, "poster_stx"),
        )
        self._logger.info(
            "Task created",
            extra={"task_id": task_id, "poster": poster, "bounty_sats": bounty},
        )
        return {"task_id": task_id, "status": "open"}

    def list_tasks(
        self,
        *,
        status: str | None = None,
        poster: str | None = None,
        tag: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> dict[str, Any]:
        """
        List tasks newest first.

        ``limit`` defaults to the configured default and is clamped to the
        configured maximum.

        Raises:
            ServiceError: INVALID_PAYLOAD
        """
        if status is not None and status not in TASK_STATUSES:
            raise ServiceError(
                "INVALID_PAYLOAD",
                f"Invalid status filter: {status}",
                400,
                {"allowed": list(TASK_STATUSES)},
            )
        effective_limit = self._default_limit if limit is None else limit
        if effective_limit < 1:
            raise ServiceError("INVALID_PAYLOAD", "limit must be >= 1", 400, {})
        if not 0 <= offset <= MAX_SQLITE_INT:
            raise ServiceError("INVALID_PAYLOAD", "offset must be >= 0", 400, {})
        effective_limit = min(effective_limit, self._max_limit)

        tasks, total = self._store.list_tasks(status, poster, tag, effective_limit, offset)
        return {
            "tasks": tasks,
            "pagination": {
                "total": total,
                "limit": effective_limit,
                "offset": offset,
                "has_more": offset + len(tasks) < total,
            },
        }

    def get_task(self, task_id: int) -> dict[str, Any]:
        """Task detail with its bids and activity log."""
        task = self._load_task(task_id)
        return {
            "task": task,
            "bids": self._store.get_bids_for_task(task_id),
            "activity": self._store.get_activity(task_id),
        }

    # ------------------------------------------------------------------
    # Bids
    # ------------------------------------------------------------------

    def list_bids(self, task_id: int) -> dict[str, Any]:
        """All bids on a task, oldest first."""
        self._load_task(task_id)
        return {"task_id": task_id, "bids": self._store.get_bids_for_task(task_id)}

    def place_bid(
        self,
        task_id: int,
        bidder: str,
        amount_sats: object,
        *,
        message: object = None,
        bidder_name: object = None,
        bidder_secondary: object = None,
        signature: str | None = None,
    ) -> dict[str, Any]:
        """
        Place a pending bid on an open task.

        Raises:
            ServiceError: INVALID_AMOUNT, TASK_NOT_FOUND, SELF_BID,
                          INVALID_STATUS, TASK_CONFLICT
        """
        if not _is_positive_int(amount_sats):
            raise ServiceError(
                "INVALID_AMOUNT", "amount_sats must be a positive integer", 400, {}
            )
        amount = int(amount_sats)  # type: ignore[call-overload]
        message_value = _optional_str(message, "message")

        task = self._load_task(task_id)
        activity = plan_bid(task, bidder, amount, message_value)
        bid_id = self._store.insert_bid(
            {
                "task_id": task_id,
                "bidder": bidder,
                "amount_sats": amount,
                "message": message_value,
                "bidder_signature": signature,
            },
            activity,
            bidder_name=_optional_str(bidder_name, "bidder_name"),
            bidder_secondary=_optional_str(bidder_secondary, "bidder_stx"),
        )
        if bid_id is None:
            self._logger.warning(
                "Bid lost race with task transition",
                extra={"task_id": task_id, "bidder": bidder},
            )
            raise ServiceError(
                "TASK_CONFLICT", "Task is no longer accepting bids", 409, {}
            )
        self._logger.info(
            "Bid placed",
            extra={"task_id": task_id, "bid_id": bid_id, "bidder": bidder, "amount_sats": amount},
        )
        return {"bid_id": bid_id, "task_id": task_id, "status": "pending"}

    def withdraw_bid(self, task_id: int, bid_id: int, bidder: str) -> dict[str, Any]:
        """
        Withdraw a pending bid.

        Raises:
            ServiceError: TASK_NOT_FOUND, BID_NOT_FOUND, FORBIDDEN,
                          INVALID_STATUS, BID_NOT_PENDING, TASK_CONFLICT
        """
        bid = self._store.get_bid(bid_id)
        self._transition(task_id, WithdrawBid(actor=bidder, bid=bid))
        return {"bid_id": bid_id, "task_id": task_id, "status": "withdrawn"}

    def accept_bid(self, task_id: int, bid_id: object, poster: str) -> dict[str, Any]:
        """
        Accept one pending bid; every other pending bid is rejected.

        Raises:
            ServiceError: INVALID_PAYLOAD, TASK_NOT_FOUND, FORBIDDEN,
                          INVALID_STATUS, BID_NOT_FOUND, BID_NOT_PENDING,
                          TASK_CONFLICT
        """
        if not _is_positive_int(bid_id):
            raise ServiceError("INVALID_PAYLOAD", "bid_id must be a positive integer", 400, {})
        bid = self._store.get_bid(int(bid_id))  # type: ignore[call-overload]
        updates = self._transition(task_id, AcceptBid(actor=poster, bid=bid))
        return {
            "task_id": task_id,
            "status": updates["status"],
            "worker": updates["worker"],
            "bounty_sats": updates["bounty_sats"],
        }

    # ------------------------------------------------------------------
    # Work
    # ------------------------------------------------------------------

    def submit_work(
        self,
        task_id: int,
        worker: str,
        proof_url: object,
        description: object = None,
    ) -> dict[str, Any]:
        """
        Submit proof of work for an assigned task.

        Raises:
            ServiceError: MISSING_FIELD, TASK_NOT_FOUND, FORBIDDEN,
                          INVALID_STATUS, TASK_CONFLICT
        """
        event = SubmitWork(
            actor=worker,
            proof_url=_required_str(proof_url, "proof_url"),
            description=_optional_str(description, "proof_description"),
        )
        updates = self._transition(task_id, event)
        return {"task_id": task_id, "status": updates["status"]}

    def verify_work(
        self,
        task_id: int,
        poster: str,
        approved: object,
        *,
        payment_tx: object = None,
        reason: object = None,
    ) -> dict[str, Any]:
        """
        Approve or reject submitted work.

        Raises:
            ServiceError: INVALID_PAYLOAD, TASK_NOT_FOUND, FORBIDDEN,
                          INVALID_STATUS, TASK_CONFLICT
        """
        if not isinstance(approved, bool):
            raise ServiceError("INVALID_PAYLOAD", "approved must be a boolean", 400, {})
        event = VerifyWork(
            actor=poster,
            approved=approved,
            payment_tx=_optional_str(payment_tx, "payment_tx"),
            reason=_optional_str(reason, "reason"),
        )
        updates = self._transition(task_id, event)
        return {"task_id": task_id, "status": updates["status"]}

    def cancel_task(self, task_id: int, poster: str) -> dict[str, Any]:
        """
        Cancel an open task.

        Raises:
            ServiceError: TASK_NOT_FOUND, FORBIDDEN, INVALID_STATUS, TASK_CONFLICT
        """
        updates = self._transition(task_id, CancelTask(actor=poster))
        return {"task_id": task_id, "status": updates["status"]}

    # ------------------------------------------------------------------
    # Agents & statistics
    # ------------------------------------------------------------------

    def list_agents(self) -> dict[str, Any]:
        return {"agents": self._ledger.list_agents()}

    def get_agent(self, address: str) -> dict[str, Any]:
        return self._ledger.get_agent(address)

    def get_stats(self) -> dict[str, int]:
        return self._store.get_stats()

    def count_tasks_by_status(self) -> dict[str, int]:
        return self._store.count_tasks_by_status()

    def close(self) -> None:
        """Close the underlying store."""
        self._store.close()
