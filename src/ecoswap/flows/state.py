"""Flow state model.

A FlowState tracks one logical transaction across its attempts. The phase
only moves forward; an explicit retry resets it to INITIATED while every
signature already spent stays on record for reconciliation.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from ecoswap.errors import EcoswapError, TransferPending


class FlowKind(str, Enum):
    """Supported multi-phase flows."""
    FEE_TRANSFER_AND_MINT = "fee_transfer_and_mint"
    ESCROW_TRANSFER = "escrow_transfer"
    OWNERSHIP_TRANSFER = "ownership_transfer"


class FlowStage(str, Enum):
    """Sub-flow within a flow. Only FEE_TRANSFER_AND_MINT has two."""
    TRANSFER = "transfer"
    MINT = "mint"


class FlowPhase(str, Enum):
    """Phase of the current stage."""
    IDLE = "idle"
    INITIATED = "initiated"
    READY_TO_SIGN = "ready_to_sign"
    ON_LEDGER_SUBMITTED = "on_ledger_submitted"
    ON_LEDGER_CONFIRMED = "on_ledger_confirmed"
    BACKEND_COMMITTED = "backend_committed"
    SUCCEEDED = "succeeded"
    FAILED_AT_INIT = "failed_at_init"
    FAILED_AT_UNLOCK = "failed_at_unlock"
    FAILED_AT_TRANSFER = "failed_at_transfer"
    FAILED_AT_COMMIT = "failed_at_commit"
    CANCELLED = "cancelled"
    NEEDS_RECONCILIATION = "needs_reconciliation"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL

    @property
    def is_failure(self) -> bool:
        return self.is_terminal and self is not FlowPhase.SUCCEEDED

    @property
    def is_retryable(self) -> bool:
        return self in _RETRYABLE


_PROGRESS_ORDER = [
    FlowPhase.IDLE,
    FlowPhase.INITIATED,
    FlowPhase.READY_TO_SIGN,
    FlowPhase.ON_LEDGER_SUBMITTED,
    FlowPhase.ON_LEDGER_CONFIRMED,
    FlowPhase.BACKEND_COMMITTED,
    FlowPhase.SUCCEEDED,
]

_TERMINAL = {
    FlowPhase.SUCCEEDED,
    FlowPhase.FAILED_AT_INIT,
    FlowPhase.FAILED_AT_UNLOCK,
    FlowPhase.FAILED_AT_TRANSFER,
    FlowPhase.FAILED_AT_COMMIT,
    FlowPhase.CANCELLED,
    FlowPhase.NEEDS_RECONCILIATION,
}

_RETRYABLE = {
    FlowPhase.FAILED_AT_INIT,
    FlowPhase.FAILED_AT_UNLOCK,
    FlowPhase.FAILED_AT_TRANSFER,
    FlowPhase.FAILED_AT_COMMIT,
    FlowPhase.CANCELLED,
}


class FlowOutcome(str, Enum):
    """What the caller shows the user."""
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    TRANSFER_FAILED = "transfer_failed"
    MINTING_FAILED = "minting_failed"
    COMMIT_FAILED = "commit_failed"
    CANCELLED = "cancelled"
    NEEDS_RECONCILIATION = "needs_reconciliation"


NO_FUNDS_MOVED_MESSAGE = "Transfer failed, no funds moved. Please try again."
COMMIT_FAILED_MESSAGE = (
    "Transfer succeeded but finalization failed. "
    "Do not send again; retry finalization or contact support."
)
MINTING_FAILED_MESSAGE = (
    "Your fee was received but minting did not complete. "
    "Retry minting; you will not be charged again."
)
RECONCILIATION_MESSAGE = "This transaction needs manual review. Please contact support."


@dataclass
class FlowParams:
    """Caller-supplied parameters for a flow.

    Attributes:
        flow_id: Backend order / NFT identifier; one running flow per id
        amount: Transfer amount (escrow), or requested units (ownership)
        asset_id: Unique asset mint (ownership transfer)
        recipient: Destination wallet (ownership transfer)
        owner: Caller's wallet address, if known up front
        extra: Opaque fields forwarded to the backend
    """
    flow_id: str
    amount: Optional[Decimal] = None
    asset_id: Optional[str] = None
    recipient: Optional[str] = None
    owner: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_backend(self) -> dict[str, Any]:
        data: dict[str, Any] = {"flow_id": self.flow_id}
        if self.amount is not None:
            data["amount"] = self.amount
        if self.asset_id:
            data["mint_address"] = self.asset_id
        if self.recipient:
            data["recipient"] = self.recipient
        data.update(self.extra)
        return data


@dataclass
class FlowFailure:
    """UI-safe description of why a flow stopped."""
    error_type: str
    message: str
    user_message: str
    retryable: bool

    @classmethod
    def from_exception(cls, exc: BaseException) -> "FlowFailure":
        if isinstance(exc, EcoswapError):
            return cls(
                error_type=type(exc).__name__,
                message=str(exc),
                user_message=exc.user_message,
                retryable=exc.retryable,
            )
        return cls(
            error_type=type(exc).__name__,
            message=str(exc),
            user_message="Something went wrong. Please try again.",
            retryable=False,
        )


@dataclass
class PhaseChange:
    stage: FlowStage
    phase: FlowPhase
    attempt: int
    at: datetime


@dataclass
class FlowState:
    """Progress of one logical transaction.

    Attributes:
        last_signature: Most recent signature submitted; kept across retries
        last_signature_stage: Stage that produced last_signature
        last_valid_block_height: Expiry height of last_signature's blockhash
        proof_signature: Committed fee signature handed to the mint stage
        signatures: Every signature ever submitted, in order
    """
    flow_id: str
    kind: FlowKind
    params: FlowParams
    phase: FlowPhase = FlowPhase.IDLE
    stage: FlowStage = FlowStage.TRANSFER
    attempt: int = 1
    rpc_url: Optional[str] = None
    last_signature: Optional[str] = None
    last_signature_stage: Optional[FlowStage] = None
    last_valid_block_height: Optional[int] = None
    proof_signature: Optional[str] = None
    mint_address: Optional[str] = None
    committed_stages: list[FlowStage] = field(default_factory=list)
    signatures: list[str] = field(default_factory=list)
    error: Optional[FlowFailure] = None
    history: list[PhaseChange] = field(default_factory=list)

    def advance(self, phase: FlowPhase) -> None:
        """Move forward to a progress phase.

        Raises:
            RuntimeError: On a backward move or a move out of a terminal phase
        """
        if self.phase.is_terminal:
            raise RuntimeError(f"flow {self.flow_id} is terminal ({self.phase.value})")
        if phase.is_failure:
            raise RuntimeError("use fail() for failure phases")
        if _PROGRESS_ORDER.index(phase) <= _PROGRESS_ORDER.index(self.phase):
            raise RuntimeError(
                f"flow {self.flow_id} cannot move from {self.phase.value} to {phase.value}"
            )
        self._set(phase)

    def fail(self, phase: FlowPhase, exc: BaseException) -> None:
        """Stop in a failure phase."""
        if not phase.is_failure:
            raise RuntimeError(f"{phase.value} is not a failure phase")
        if self.phase.is_terminal:
            raise RuntimeError(f"flow {self.flow_id} is terminal ({self.phase.value})")
        self.error = FlowFailure.from_exception(exc)
        self._set(phase)

    def begin_stage(self, stage: FlowStage) -> None:
        """Start the next stage once the current one is committed."""
        if self.stage not in self.committed_stages:
            raise RuntimeError(f"stage {self.stage.value} is not committed")
        self.stage = stage
        self._set(FlowPhase.INITIATED)

    def reset_for_retry(self) -> None:
        """Explicit retry: back to INITIATED, keeping spent signatures."""
        if not self.phase.is_retryable:
            raise RuntimeError(f"flow {self.flow_id} cannot be retried from {self.phase.value}")
        self.attempt += 1
        self.error = None
        self._set(FlowPhase.INITIATED)

    def record_submission(
        self, signature: str, last_valid_block_height: Optional[int], mint_address: Optional[str]
    ) -> None:
        self.last_signature = signature
        self.last_signature_stage = self.stage
        self.last_valid_block_height = last_valid_block_height
        if mint_address:
            self.mint_address = mint_address
        self.signatures.append(signature)
        self.advance(FlowPhase.ON_LEDGER_SUBMITTED)

    def mark_committed(self) -> None:
        self.committed_stages.append(self.stage)
        if self.stage is FlowStage.TRANSFER:
            self.proof_signature = self.last_signature
        self.advance(FlowPhase.BACKEND_COMMITTED)

    @property
    def has_unsettled_signature(self) -> bool:
        """A signature from the current stage whose fate is not recorded."""
        return (
            self.last_signature is not None
            and self.last_signature_stage is self.stage
            and self.stage not in self.committed_stages
        )

    @property
    def outcome(self) -> FlowOutcome:
        if not self.phase.is_terminal:
            return FlowOutcome.IN_PROGRESS
        if self.phase is FlowPhase.SUCCEEDED:
            return FlowOutcome.SUCCEEDED
        if self.phase is FlowPhase.CANCELLED:
            return FlowOutcome.CANCELLED
        if self.phase is FlowPhase.NEEDS_RECONCILIATION:
            return FlowOutcome.NEEDS_RECONCILIATION
        if self.stage is FlowStage.MINT:
            return FlowOutcome.MINTING_FAILED
        if self.phase is FlowPhase.FAILED_AT_COMMIT:
            return FlowOutcome.COMMIT_FAILED
        return FlowOutcome.TRANSFER_FAILED

    @property
    def user_message(self) -> Optional[str]:
        outcome = self.outcome
        if outcome is FlowOutcome.MINTING_FAILED:
            return MINTING_FAILED_MESSAGE
        if outcome is FlowOutcome.COMMIT_FAILED:
            return COMMIT_FAILED_MESSAGE
        if outcome is FlowOutcome.NEEDS_RECONCILIATION:
            return RECONCILIATION_MESSAGE
        if outcome is FlowOutcome.TRANSFER_FAILED:
            if self.error and (
                self.phase is not FlowPhase.FAILED_AT_TRANSFER
                or self.error.error_type == TransferPending.__name__
            ):
                return self.error.user_message
            return NO_FUNDS_MOVED_MESSAGE
        return None

    def snapshot(self) -> "FlowState":
        return copy.deepcopy(self)

    def _set(self, phase: FlowPhase) -> None:
        self.phase = phase
        self.history.append(
            PhaseChange(self.stage, phase, self.attempt, datetime.now(timezone.utc))
        )
