"""Service layer components."""

from bounty_board_service.services.agent_ledger import AgentLedger
from bounty_board_service.services.envelope_validator import EnvelopeValidator
from bounty_board_service.services.task_board import TaskBoard
from bounty_board_service.services.task_store import TaskStore

__all__ = [
    "AgentLedger",
    "EnvelopeValidator",
    "TaskBoard",
    "TaskStore",
]
