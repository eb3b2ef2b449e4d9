"""Agent leaderboard, profile, and board statistics endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter
from starlette.concurrency import run_in_threadpool

from bounty_board_service.routers.validation import get_task_board
from bounty_board_service.schemas import StatsResponse

router = APIRouter()


@router.get("/agents")
async def list_agents() -> dict[str, Any]:
    """Leaderboard ordered by reputation, then completed tasks."""
    board = get_task_board()
    return await run_in_threadpool(board.list_agents)


@router.get("/agents/{address}")
async def get_agent(address: str) -> dict[str, Any]:
    """Agent profile with recent posted and worked tasks."""
    board = get_task_board()
    return await run_in_threadpool(board.get_agent, address)


@router.get("/stats", response_model=StatsResponse)
async def get_stats() -> StatsResponse:
    """Board-wide counters."""
    board = get_task_board()
    stats = await run_in_threadpool(board.get_stats)
    return StatsResponse(**stats)
