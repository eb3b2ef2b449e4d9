"""
Task lifecycle state machine.

Pure planning logic: given the current task row and a requested event, check
the actor and source state and return the full set of effects (guarded task
update, bid status changes, ledger deltas, activity record). Nothing here
touches storage; TaskStore commits a TransitionPlan as one transaction.

    open ──accept──> assigned ──submit──> submitted ──verify──> verified | paid
      │                                        └──────reject──> disputed
      └──cancel──> cancelled
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from bounty_board_service.core.exceptions import ServiceError
from bounty_board_service.services.agent_ledger import LedgerDelta

OPEN = "open"
ASSIGNED = "assigned"
SUBMITTED = "submitted"
VERIFIED = "verified"
PAID = "paid"
DISPUTED = "disputed"
CANCELLED = "cancelled"

TASK_STATUSES: tuple[str, ...] = (OPEN, ASSIGNED, SUBMITTED, VERIFIED, PAID, DISPUTED, CANCELLED)

BID_PENDING = "pending"
BID_ACCEPTED = "accepted"
BID_REJECTED = "rejected"
BID_WITHDRAWN = "withdrawn"


@dataclass(frozen=True)
class ActivityRecord:
    """Audit-log entry written with a transition."""

    actor: str
    action: str
    details: str


@dataclass(frozen=True)
class BidStatusUpdate:
    """
    Move bids of a task from ``from_status`` to ``status``.

    ``bid_id`` narrows to one bid, ``exclude_bid_id`` skips one bid. When
    ``required`` is set, the whole transition aborts if no row matched.
    """

    status: str
    from_status: str
    bid_id: int | None = None
    exclude_bid_id: int | None = None
    required: bool = False


@dataclass(frozen=True)
class TransitionPlan:
    """Everything one transition writes, applied all-or-nothing."""

    task_id: int
    expected_status: str
    guard_column: str | None
    guard_value: str | None
    task_updates: dict[str, Any]
    activity: ActivityRecord
    bid_updates: tuple[BidStatusUpdate, ...] = field(default=())
    ledger_deltas: tuple[LedgerDelta, ...] = field(default=())


@dataclass(frozen=True)
class CreationPlan:
    """Ledger and activity effects of posting a new task."""

    ledger_deltas: tuple[LedgerDelta, ...]
    activity: ActivityRecord


# --- events -----------------------------------------------------------------


@dataclass(frozen=True)
class AcceptBid:
    actor: str
    bid: dict[str, Any] | None


@dataclass(frozen=True)
class WithdrawBid:
    actor: str
    bid: dict[str, Any] | None


@dataclass(frozen=True)
class SubmitWork:
    actor: str
    proof_url: str
    description: str | None = None


@dataclass(frozen=True)
class VerifyWork:
    actor: str
    approved: bool
    payment_tx: str | None = None
    reason: str | None = None


@dataclass(frozen=True)
class CancelTask:
    actor: str


TransitionEvent = AcceptBid | WithdrawBid | SubmitWork | VerifyWork | CancelTask


# --- guards -----------------------------------------------------------------


def _require_actor(actual: str, expected: str | None, message: str) -> None:
    if expected is None or actual != expected:
        raise ServiceError("FORBIDDEN", message, 403, {})


def _require_status(task: dict[str, Any], expected: str, verb: str) -> None:
    current = task["status"]
    if current != expected:
        raise ServiceError(
            "INVALID_STATUS",
            f"Cannot {verb} task in '{current}' status, must be '{expected}'",
            409,
            {"current_status": current},
        )


def _require_bid_on_task(task: dict[str, Any], bid: dict[str, Any] | None) -> dict[str, Any]:
    if bid is None or bid["task_id"] != task["id"]:
        raise ServiceError("BID_NOT_FOUND", "Bid not found", 404, {})
    return bid


def _require_pending_bid(bid: dict[str, Any]) -> None:
    if bid["status"] != BID_PENDING:
        raise ServiceError(
            "BID_NOT_PENDING",
            f"Bid is '{bid['status']}', must be '{BID_PENDING}'",
            409,
            {"bid_status": bid["status"]},
        )


# --- planners ---------------------------------------------------------------


def plan_creation(poster: str, bounty_sats: int) -> CreationPlan:
    """Effects of posting a task: count it and book the bounty as spent."""
    return CreationPlan(
        ledger_deltas=(LedgerDelta(poster, tasks_posted=1, total_spent_sats=bounty_sats),),
        activity=ActivityRecord(poster, "created", f"Bounty: {bounty_sats} sats"),
    )


def plan_bid(
    task: dict[str, Any],
    bidder: str,
    amount_sats: int,
    message: str | None,
) -> ActivityRecord:
    """Check that ``bidder`` may bid on ``task`` and return the activity entry."""
    if bidder == task["poster"]:
        raise ServiceError("SELF_BID", "Cannot bid on your own task", 400, {})
    _require_status(task, OPEN, "bid on")
    return ActivityRecord(bidder, "bid", f"{amount_sats} sats: {message or ''}")


def _plan_accept(task: dict[str, Any], event: AcceptBid, now: str) -> TransitionPlan:
    _require_actor(event.actor, task["poster"], "Only the poster can accept bids")
    _require_status(task, OPEN, "accept bid on")
    bid = _require_bid_on_task(task, event.bid)
    _require_pending_bid(bid)

    bid_id = int(bid["id"])
    bidder = str(bid["bidder"])
    amount = int(bid["amount_sats"])
    return TransitionPlan(
        task_id=task["id"],
        expected_status=OPEN,
        guard_column="poster",
        guard_value=event.actor,
        task_updates={
            "status": ASSIGNED,
            "worker": bidder,
            "bounty_sats": amount,
            "updated_at": now,
        },
        bid_updates=(
            BidStatusUpdate(BID_ACCEPTED, BID_PENDING, bid_id=bid_id, required=True),
            BidStatusUpdate(BID_REJECTED, BID_PENDING, exclude_bid_id=bid_id),
        ),
        activity=ActivityRecord(
            event.actor, "accepted_bid", f"Assigned to {bidder} for {amount} sats"
        ),
    )


def _plan_withdraw(task: dict[str, Any], event: WithdrawBid, now: str) -> TransitionPlan:
    bid = _require_bid_on_task(task, event.bid)
    _require_actor(event.actor, bid["bidder"], "Only the bidder can withdraw this bid")
    _require_status(task, OPEN, "withdraw bid on")
    _require_pending_bid(bid)

    return TransitionPlan(
        task_id=task["id"],
        expected_status=OPEN,
        guard_column=None,
        guard_value=None,
        task_updates={"updated_at": now},
        bid_updates=(
            BidStatusUpdate(BID_WITHDRAWN, BID_PENDING, bid_id=int(bid["id"]), required=True),
        ),
        activity=ActivityRecord(event.actor, "withdrew_bid", f"Bid {bid['id']} withdrawn"),
    )


def _plan_submit(task: dict[str, Any], event: SubmitWork, now: str) -> TransitionPlan:
    _require_actor(event.actor, task["worker"], "Only the assigned worker can submit")
    _require_status(task, ASSIGNED, "submit work for")

    return TransitionPlan(
        task_id=task["id"],
        expected_status=ASSIGNED,
        guard_column="worker",
        guard_value=event.actor,
        task_updates={
            "status": SUBMITTED,
            "proof_url": event.proof_url,
            "proof_description": event.description,
            "updated_at": now,
        },
        activity=ActivityRecord(event.actor, "submitted", event.proof_url),
    )


def _plan_verify(task: dict[str, Any], event: VerifyWork, now: str) -> TransitionPlan:
    _require_actor(event.actor, task["poster"], "Only the poster can verify")
    _require_status(task, SUBMITTED, "verify")

    if not event.approved:
        return TransitionPlan(
            task_id=task["id"],
            expected_status=SUBMITTED,
            guard_column="poster",
            guard_value=event.actor,
            task_updates={"status": DISPUTED, "updated_at": now},
            activity=ActivityRecord(
                event.actor, "disputed", event.reason or "Work not satisfactory"
            ),
        )

    bounty = int(task["bounty_sats"])
    worker = str(task["worker"])
    new_status = PAID if event.payment_tx else VERIFIED
    details = f"Paid: {event.payment_tx}" if event.payment_tx else "Awaiting payment."
    return TransitionPlan(
        task_id=task["id"],
        expected_status=SUBMITTED,
        guard_column="poster",
        guard_value=event.actor,
        task_updates={
            "status": new_status,
            "payment_tx": event.payment_tx or None,
            "updated_at": now,
        },
        ledger_deltas=(
            LedgerDelta(worker, reputation=1, tasks_completed=1, total_earned_sats=bounty),
            LedgerDelta(event.actor, reputation=1),
        ),
        activity=ActivityRecord(event.actor, "verified", f"Approved. {details}"),
    )


def _plan_cancel(task: dict[str, Any], event: CancelTask, now: str) -> TransitionPlan:
    _require_actor(event.actor, task["poster"], "Only the poster can cancel")
    _require_status(task, OPEN, "cancel")

    return TransitionPlan(
        task_id=task["id"],
        expected_status=OPEN,
        guard_column="poster",
        guard_value=event.actor,
        task_updates={"status": CANCELLED, "updated_at": now},
        ledger_deltas=(LedgerDelta(event.actor, total_spent_sats=-int(task["bounty_sats"])),),
        activity=ActivityRecord(event.actor, "cancelled", "Task cancelled"),
    )


_PLANNERS: dict[type, Any] = {
    AcceptBid: _plan_accept,
    WithdrawBid: _plan_withdraw,
    SubmitWork: _plan_submit,
    VerifyWork: _plan_verify,
    CancelTask: _plan_cancel,
}


def apply_transition(task: dict[str, Any], event: TransitionEvent, now: str) -> TransitionPlan:
    """
    Plan the effects of ``event`` on ``task``.

    Raises:
        ServiceError: FORBIDDEN, INVALID_STATUS, BID_NOT_FOUND, BID_NOT_PENDING
    """
    planner = _PLANNERS.get(type(event))
    if planner is None:
        msg = f"Unsupported lifecycle event: {type(event).__name__}"
        raise TypeError(msg)
    plan: TransitionPlan = planner(task, event, now)
    return plan
