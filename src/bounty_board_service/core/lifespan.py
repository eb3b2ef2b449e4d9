"""Application lifecycle management."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from bounty_board_service.config import get_settings
from bounty_board_service.core.state import init_app_state
from bounty_board_service.logging import get_logger, setup_logging
from bounty_board_service.services.envelope_validator import EnvelopeValidator
from bounty_board_service.services.task_board import TaskBoard
from bounty_board_service.services.task_store import TaskStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle."""
    # === STARTUP ===
    settings = get_settings()

    setup_logging(settings.logging.level, settings.service.name, settings.logging.directory)
    logger = get_logger(__name__)

    state = init_app_state()

    store = TaskStore(db_path=settings.database.path)
    task_board = TaskBoard(
        store=store,
        default_limit=settings.listing.default_limit,
        max_limit=settings.listing.max_limit,
        profile_task_limit=settings.listing.profile_task_limit,
    )
    state.task_board = task_board

    state.envelope_validator = EnvelopeValidator(
        namespace=settings.auth.namespace,
        signature_min_length=settings.auth.signature_min_length,
        signature_max_length=settings.auth.signature_max_length,
        timestamp_window_seconds=settings.auth.timestamp_window_seconds,
    )

    logger.info(
        "Service starting",
        extra={
            "service": settings.service.name,
            "version": settings.service.version,
            "port": settings.server.port,
            "db_path": settings.database.path,
        },
    )

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Service shutting down", extra={"uptime_seconds": state.uptime_seconds})

    # Closes the SQLite connection
    task_board.close()
