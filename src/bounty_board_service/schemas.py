"""Pydantic response models for the API."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict


class HealthResponse(BaseModel):
    """Response model for GET /health."""

    model_config = ConfigDict(extra="forbid")
    status: Literal["ok"]
    uptime_seconds: float
    started_at: str
    total_tasks: int
    tasks_by_status: dict[str, int]


class StatsResponse(BaseModel):
    """Response model for GET /stats."""

    model_config = ConfigDict(extra="forbid")
    total_tasks: int
    open_tasks: int
    assigned_tasks: int
    completed_tasks: int
    total_bounty_sats: int
    paid_out_sats: int
    total_agents: int
    total_bids: int
