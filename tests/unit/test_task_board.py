"""Unit tests for TaskBoard lifecycle flows."""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from bounty_board_service.core.exceptions import ServiceError
from bounty_board_service.services.task_board import normalize_tags
from bounty_board_service.services.task_store import MAX_SQLITE_INT
from tests.helpers import POSTER, STRANGER, WORKER_A, WORKER_B, WORKER_C


def _post(board, bounty: int = 10000, **kwargs) -> int:
    result = board.create_task(POSTER, "Build a scraper", "Scrape and summarise", bounty, **kwargs)
    return int(result["task_id"])


def _assert_error(exc_info: pytest.ExceptionInfo[ServiceError], code: str, status: int) -> None:
    assert exc_info.value.error == code
    assert exc_info.value.status_code == status


@pytest.mark.unit
class TestCreateTask:
    def test_create_task_opens_and_books_spent(self, board) -> None:
        task_id = _post(board, tags="python, scraping,,")

        detail = board.get_task(task_id)
        assert detail["task"]["status"] == "open"
        assert detail["task"]["tags"] == ["python", "scraping"]
        assert [entry["action"] for entry in detail["activity"]] == ["created"]

        agent = board.get_agent(POSTER)["agent"]
        assert agent["tasks_posted"] == 1
        assert agent["total_spent_sats"] == 10000

    @pytest.mark.parametrize("bounty", [0, -5, 1.5, "100", True, None, 2**63, 10**20])
    def test_invalid_bounty_rejected(self, board, bounty) -> None:
        with pytest.raises(ServiceError) as exc_info:
            board.create_task(POSTER, "t", "d", bounty)
        _assert_error(exc_info, "INVALID_BOUNTY", 400)

    def test_blank_title_rejected(self, board) -> None:
        with pytest.raises(ServiceError) as exc_info:
            board.create_task(POSTER, "   ", "d", 10)
        _assert_error(exc_info, "MISSING_FIELD", 400)

    def test_normalize_tags_rejects_non_strings(self) -> None:
        assert normalize_tags(["a,b", " c "]) == ["a", "b", "c"]
        with pytest.raises(ServiceError):
            normalize_tags([1, 2])


@pytest.mark.unit
class TestBidding:
    def test_self_bid_rejected(self, board) -> None:
        task_id = _post(board)
        with pytest.raises(ServiceError) as exc_info:
            board.place_bid(task_id, POSTER, 100)
        _assert_error(exc_info, "SELF_BID", 400)

    def test_bid_on_missing_task(self, board) -> None:
        with pytest.raises(ServiceError) as exc_info:
            board.place_bid(404, WORKER_A, 100)
        _assert_error(exc_info, "TASK_NOT_FOUND", 404)

    @pytest.mark.parametrize("amount", [0, 2**63, 10**20])
    def test_invalid_amount(self, board, amount) -> None:
        task_id = _post(board)
        with pytest.raises(ServiceError) as exc_info:
            board.place_bid(task_id, WORKER_A, amount)
        _assert_error(exc_info, "INVALID_AMOUNT", 400)

    def test_largest_storable_amount_accepted(self, board) -> None:
        task_id = _post(board)
        board.place_bid(task_id, WORKER_A, MAX_SQLITE_INT)
        assert board.list_bids(task_id)["bids"][0]["amount_sats"] == MAX_SQLITE_INT

    def test_bid_count_and_listing(self, board) -> None:
        task_id = _post(board)
        board.place_bid(task_id, WORKER_A, 8000, message="fast", bidder_name="Alice")
        board.place_bid(task_id, WORKER_B, 7000)

        listing = board.list_tasks()
        assert listing["tasks"][0]["bid_count"] == 2

        bids = board.list_bids(task_id)["bids"]
        assert [bid["bidder"] for bid in bids] == [WORKER_A, WORKER_B]
        assert bids[0]["bidder_name"] == "Alice"
        assert bids[0]["message"] == "fast"

    def test_withdraw_bid(self, board) -> None:
        task_id = _post(board)
        bid_id = board.place_bid(task_id, WORKER_A, 8000)["bid_id"]

        with pytest.raises(ServiceError) as forbidden:
            board.withdraw_bid(task_id, bid_id, WORKER_B)
        _assert_error(forbidden, "FORBIDDEN", 403)

        result = board.withdraw_bid(task_id, bid_id, WORKER_A)
        assert result["status"] == "withdrawn"

        with pytest.raises(ServiceError) as again:
            board.withdraw_bid(task_id, bid_id, WORKER_A)
        _assert_error(again, "BID_NOT_PENDING", 409)

        activity = board.get_task(task_id)["activity"]
        assert activity[-1]["action"] == "withdrew_bid"


@pytest.mark.unit
class TestLifecycle:
    def test_accept_rejects_pending_and_leaves_withdrawn(self, board) -> None:
        task_id = _post(board)
        bid_a = board.place_bid(task_id, WORKER_A, 8000)["bid_id"]
        bid_b = board.place_bid(task_id, WORKER_B, 7000)["bid_id"]
        bid_c = board.place_bid(task_id, WORKER_C, 9000)["bid_id"]
        board.withdraw_bid(task_id, bid_c, WORKER_C)

        result = board.accept_bid(task_id, bid_b, POSTER)
        assert result == {
            "task_id": task_id,
            "status": "assigned",
            "worker": WORKER_B,
            "bounty_sats": 7000,
        }

        detail = board.get_task(task_id)
        assert detail["task"]["worker"] == WORKER_B
        assert detail["task"]["bounty_sats"] == 7000
        statuses = {bid["id"]: bid["status"] for bid in detail["bids"]}
        assert statuses == {bid_a: "rejected", bid_b: "accepted", bid_c: "withdrawn"}

    def test_accept_by_stranger_forbidden(self, board) -> None:
        task_id = _post(board)
        bid_id = board.place_bid(task_id, WORKER_A, 8000)["bid_id"]
        with pytest.raises(ServiceError) as exc_info:
            board.accept_bid(task_id, bid_id, STRANGER)
        _assert_error(exc_info, "FORBIDDEN", 403)

    def test_accept_bid_from_other_task(self, board) -> None:
        first = _post(board)
        second = _post(board)
        foreign_bid = board.place_bid(second, WORKER_A, 100)["bid_id"]
        with pytest.raises(ServiceError) as exc_info:
            board.accept_bid(first, foreign_bid, POSTER)
        _assert_error(exc_info, "BID_NOT_FOUND", 404)

    @pytest.mark.parametrize("bid_id", [0, 2**63, 10**20, "1"])
    def test_accept_rejects_unstorable_bid_id(self, board, bid_id) -> None:
        task_id = _post(board)
        with pytest.raises(ServiceError) as exc_info:
            board.accept_bid(task_id, bid_id, POSTER)
        _assert_error(exc_info, "INVALID_PAYLOAD", 400)

    def test_submit_by_non_worker_forbidden(self, board) -> None:
        task_id = _post(board)
        bid_id = board.place_bid(task_id, WORKER_B, 7000)["bid_id"]
        board.accept_bid(task_id, bid_id, POSTER)

        with pytest.raises(ServiceError) as exc_info:
            board.submit_work(task_id, WORKER_A, "https://example.com/proof")
        _assert_error(exc_info, "FORBIDDEN", 403)

    def test_full_flow_verify_then_reverify_conflicts(self, board) -> None:
        task_id = _post(board)
        board.place_bid(task_id, WORKER_A, 8000)
        bid_id = board.place_bid(task_id, WORKER_B, 7000)["bid_id"]
        board.accept_bid(task_id, bid_id, POSTER)

        submitted = board.submit_work(
            task_id, WORKER_B, "https://example.com/proof", "All done"
        )
        assert submitted["status"] == "submitted"

        verified = board.verify_work(task_id, POSTER, True)
        assert verified["status"] == "verified"

        worker = board.get_agent(WORKER_B)
        assert worker["agent"]["reputation"] == 1
        assert worker["agent"]["tasks_completed"] == 1
        assert worker["agent"]["total_earned_sats"] == 7000
        assert [task["id"] for task in worker["tasks_worked"]] == [task_id]
        assert board.get_agent(POSTER)["agent"]["reputation"] == 1

        with pytest.raises(ServiceError) as exc_info:
            board.verify_work(task_id, POSTER, True)
        _assert_error(exc_info, "INVALID_STATUS", 409)
        assert exc_info.value.details["current_status"] == "verified"

        actions = [entry["action"] for entry in board.get_task(task_id)["activity"]]
        assert actions == ["created", "bid", "bid", "accepted_bid", "submitted", "verified"]

    def test_verify_with_payment_tx_is_paid(self, board) -> None:
        task_id = _post(board, bounty=500)
        bid_id = board.place_bid(task_id, WORKER_A, 400)["bid_id"]
        board.accept_bid(task_id, bid_id, POSTER)
        board.submit_work(task_id, WORKER_A, "https://example.com/proof")

        result = board.verify_work(task_id, POSTER, True, payment_tx="txid-1")
        assert result["status"] == "paid"

        stats = board.get_stats()
        assert stats["completed_tasks"] == 1
        assert stats["paid_out_sats"] == 400

    def test_reject_is_disputed_and_ledger_untouched(self, board) -> None:
        task_id = _post(board)
        bid_id = board.place_bid(task_id, WORKER_A, 400)["bid_id"]
        board.accept_bid(task_id, bid_id, POSTER)
        board.submit_work(task_id, WORKER_A, "https://example.com/proof")

        result = board.verify_work(task_id, POSTER, False, reason="Incomplete")
        assert result["status"] == "disputed"
        assert board.get_agent(WORKER_A)["agent"]["reputation"] == 0
        assert board.get_task(task_id)["activity"][-1]["details"] == "Incomplete"

    def test_verify_requires_boolean(self, board) -> None:
        task_id = _post(board)
        with pytest.raises(ServiceError) as exc_info:
            board.verify_work(task_id, POSTER, "yes")
        _assert_error(exc_info, "INVALID_PAYLOAD", 400)

    def test_cancel_assigned_conflicts_and_open_refunds(self, board) -> None:
        assigned = _post(board, bounty=1000)
        bid_id = board.place_bid(assigned, WORKER_A, 900)["bid_id"]
        board.accept_bid(assigned, bid_id, POSTER)
        with pytest.raises(ServiceError) as exc_info:
            board.cancel_task(assigned, POSTER)
        _assert_error(exc_info, "INVALID_STATUS", 409)

        open_task = _post(board, bounty=3000)
        assert board.get_agent(POSTER)["agent"]["total_spent_sats"] == 4000
        assert board.cancel_task(open_task, POSTER)["status"] == "cancelled"
        assert board.get_agent(POSTER)["agent"]["total_spent_sats"] == 1000

        with pytest.raises(ServiceError) as bid_exc:
            board.place_bid(open_task, WORKER_B, 100)
        _assert_error(bid_exc, "INVALID_STATUS", 409)


@pytest.mark.unit
class TestListing:
    def test_limit_clamped_and_pagination(self, board) -> None:
        for _ in range(3):
            _post(board)

        page = board.list_tasks(limit=2, offset=0)
        assert page["pagination"] == {"total": 3, "limit": 2, "offset": 0, "has_more": True}

        clamped = board.list_tasks(limit=10_000)
        assert clamped["pagination"]["limit"] == 200
        assert clamped["pagination"]["has_more"] is False

    @pytest.mark.parametrize(
        ("kwargs", "message"),
        [
            ({"limit": 0}, "limit"),
            ({"offset": -1}, "offset"),
            ({"offset": 2**63}, "offset"),
            ({"status": "bogus"}, "status"),
        ],
    )
    def test_invalid_listing_arguments(self, board, kwargs, message) -> None:
        with pytest.raises(ServiceError) as exc_info:
            board.list_tasks(**kwargs)
        _assert_error(exc_info, "INVALID_PAYLOAD", 400)
        assert message in exc_info.value.message

    def test_leaderboard_order(self, board) -> None:
        task_id = _post(board)
        bid_id = board.place_bid(task_id, WORKER_A, 100)["bid_id"]
        board.place_bid(task_id, WORKER_B, 100)
        board.accept_bid(task_id, bid_id, POSTER)
        board.submit_work(task_id, WORKER_A, "https://example.com/p")
        board.verify_work(task_id, POSTER, True)

        agents = board.list_agents()["agents"]
        assert [agent["address"] for agent in agents][:2] == [WORKER_A, POSTER]
        assert agents[-1]["address"] == WORKER_B


@pytest.mark.unit
def test_concurrent_accepts_exactly_one_wins(board) -> None:
    task_id = _post(board)
    bid_a = board.place_bid(task_id, WORKER_A, 8000)["bid_id"]
    bid_b = board.place_bid(task_id, WORKER_B, 7000)["bid_id"]

    barrier = threading.Barrier(2)

    def accept(bid_id: int) -> str:
        barrier.wait()
        try:
            board.accept_bid(task_id, bid_id, POSTER)
        except ServiceError as exc:
            return exc.error
        return "ok"

    with ThreadPoolExecutor(max_workers=2) as pool:
        outcomes = list(pool.map(accept, [bid_a, bid_b]))

    assert outcomes.count("ok") == 1
    assert set(outcomes) - {"ok"} <= {"TASK_CONFLICT", "INVALID_STATUS"}

    detail = board.get_task(task_id)
    accepted = [bid for bid in detail["bids"] if bid["status"] == "accepted"]
    assert len(accepted) == 1
    assert detail["task"]["worker"] == accepted[0]["bidder"]
    actions = [entry["action"] for entry in detail["activity"]]
    assert actions.count("accepted_bid") == 1


@pytest.mark.unit
class TestStaleTransitions:
    """A plan built from a task snapshot must not commit once the task has moved on."""

    def test_accept_loses_to_cancel(self, board, monkeypatch) -> None:
        task_id = _post(board)
        bid_id = board.place_bid(task_id, WORKER_A, 8000)["bid_id"]
        snapshot = board.get_task(task_id)["task"]

        board.cancel_task(task_id, POSTER)
        monkeypatch.setattr(board, "_load_task", lambda _task_id: snapshot)
        with pytest.raises(ServiceError) as exc_info:
            board.accept_bid(task_id, bid_id, POSTER)
        _assert_error(exc_info, "TASK_CONFLICT", 409)
        assert exc_info.value.details["current_status"] == "cancelled"
        monkeypatch.undo()

        detail = board.get_task(task_id)
        assert detail["task"]["status"] == "cancelled"
        assert detail["task"]["worker"] is None
        assert detail["task"]["bounty_sats"] == 10000
        assert [bid["status"] for bid in detail["bids"]] == ["pending"]
        assert [entry["action"] for entry in detail["activity"]] == ["created", "bid", "cancelled"]
        assert board.get_agent(POSTER)["agent"]["total_spent_sats"] == 0

    def test_cancel_loses_to_accept(self, board, monkeypatch) -> None:
        task_id = _post(board)
        bid_id = board.place_bid(task_id, WORKER_A, 8000)["bid_id"]
        snapshot = board.get_task(task_id)["task"]

        board.accept_bid(task_id, bid_id, POSTER)
        monkeypatch.setattr(board, "_load_task", lambda _task_id: snapshot)
        with pytest.raises(ServiceError) as exc_info:
            board.cancel_task(task_id, POSTER)
        _assert_error(exc_info, "TASK_CONFLICT", 409)
        assert exc_info.value.details["current_status"] == "assigned"
        monkeypatch.undo()

        detail = board.get_task(task_id)
        assert detail["task"]["status"] == "assigned"
        assert detail["task"]["worker"] == WORKER_A
        assert [bid["status"] for bid in detail["bids"]] == ["accepted"]
        actions = [entry["action"] for entry in detail["activity"]]
        assert actions == ["created", "bid", "accepted_bid"]
        assert board.get_agent(POSTER)["agent"]["total_spent_sats"] == 10000
