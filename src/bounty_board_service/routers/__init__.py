"""API routers."""

from bounty_board_service.routers import agents, bids, health, tasks

__all__ = ["agents", "bids", "health", "tasks"]
