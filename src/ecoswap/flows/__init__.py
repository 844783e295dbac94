"""Multi-phase transaction flows."""

from ecoswap.flows.kinds import FlowDefinition, get_flow_definition
from ecoswap.flows.orchestrator import (
    CancelResult,
    CommitRetry,
    FlowHandle,
    TransactionOrchestrator,
    TransferRetry,
)
from ecoswap.flows.state import (
    FlowFailure,
    FlowKind,
    FlowOutcome,
    FlowParams,
    FlowPhase,
    FlowStage,
    FlowState,
)

__all__ = [
    "CancelResult",
    "CommitRetry",
    "FlowDefinition",
    "FlowFailure",
    "FlowHandle",
    "FlowKind",
    "FlowOutcome",
    "FlowParams",
    "FlowPhase",
    "FlowStage",
    "FlowState",
    "TransactionOrchestrator",
    "TransferRetry",
    "get_flow_definition",
]
