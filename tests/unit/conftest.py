"""Unit test fixtures: auto-clear caches between tests."""

import pytest

from bounty_board_service.config import clear_settings_cache
from bounty_board_service.core.state import reset_app_state
from bounty_board_service.services.task_board import TaskBoard
from bounty_board_service.services.task_store import TaskStore


@pytest.fixture(autouse=True)
def _clear_caches():
    """Clear settings cache and app state between tests."""
    clear_settings_cache()
    reset_app_state()
    yield
    clear_settings_cache()
    reset_app_state()


@pytest.fixture
def store(tmp_path):
    """A TaskStore on a fresh temp database."""
    task_store = TaskStore(db_path=str(tmp_path / "bounty-board.db"))
    yield task_store
    task_store.close()


@pytest.fixture
def board(tmp_path):
    """A TaskBoard on a fresh temp database."""
    task_board = TaskBoard(
        store=TaskStore(db_path=str(tmp_path / "bounty-board.db")),
        default_limit=50,
        max_limit=200,
        profile_task_limit=20,
    )
    yield task_board
    task_board.close()
