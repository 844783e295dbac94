"""Flow definitions.

Each FlowKind maps to an ordered list of stages. Every stage is one
backend step (init, then commit) around exactly one ledger transaction.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Optional

from solders.pubkey import Pubkey

from ecoswap.backend.base import BackendStep, InitResponse
from ecoswap.chain.base import AssetMetadata, TransferPlan, UnsignedTransaction
from ecoswap.chain.client import LedgerClient
from ecoswap.config import Settings
from ecoswap.errors import BackendError, InvalidTransferPlan
from ecoswap.flows.state import FlowKind, FlowParams, FlowStage, FlowState


class FlowDefinition(ABC):
    """How one kind of flow talks to the backend and the ledger."""

    kind: FlowKind
    steps: dict[FlowStage, BackendStep]

    def __init__(self, settings: Settings):
        self.settings = settings

    @property
    def stages(self) -> list[FlowStage]:
        return list(self.steps)

    def stages_from(self, stage: FlowStage) -> list[FlowStage]:
        stages = self.stages
        return stages[stages.index(stage):]

    def step_for(self, stage: FlowStage) -> BackendStep:
        return self.steps[stage]

    def validate(self, params: FlowParams) -> None:
        """Reject caller input before anything is sent anywhere.

        Raises:
            InvalidTransferPlan: On invalid parameters
        """
        if not params.flow_id:
            raise InvalidTransferPlan("flow_id is required")

    def init_params(self, state: FlowState) -> dict[str, Any]:
        return state.params.to_backend()

    def commit_params(self, state: FlowState) -> dict[str, Any]:
        return state.params.to_backend()

    @abstractmethod
    async def build(
        self,
        state: FlowState,
        init: InitResponse,
        owner: Pubkey,
        ledger: LedgerClient,
    ) -> UnsignedTransaction:
        """Build the stage's unsigned transaction. Needs no private key."""


def _require(value, name: str, step: BackendStep):
    if not value:
        raise BackendError(f"{step.value} init returned no {name}")
    return value


_METADATA_FIELDS = ("name", "symbol", "uri")


def _caller_metadata(params: FlowParams) -> Optional[AssetMetadata]:
    """Metadata passed in `extra`; all or nothing."""
    if not any(key in params.extra for key in _METADATA_FIELDS):
        return None
    return AssetMetadata(
        name=params.extra.get("name") or "",
        symbol=params.extra.get("symbol") or "",
        uri=params.extra.get("uri") or "",
    )


class FeeTransferAndMint(FlowDefinition):
    """Pay the SwapCoin mint fee to the treasury, then mint a unique asset.

    The committed fee signature is the proof handed to the mint stage, so
    retrying a failed mint never charges the fee twice.
    """

    kind = FlowKind.FEE_TRANSFER_AND_MINT
    steps = {
        FlowStage.TRANSFER: BackendStep.MINT_FEE,
        FlowStage.MINT: BackendStep.MINT,
    }

    def validate(self, params: FlowParams) -> None:
        super().validate(params)
        _caller_metadata(params)

    def init_params(self, state: FlowState) -> dict[str, Any]:
        data = super().init_params(state)
        if state.stage is FlowStage.MINT:
            data["fee_signature"] = state.proof_signature
        return data

    def commit_params(self, state: FlowState) -> dict[str, Any]:
        data = super().commit_params(state)
        if state.stage is FlowStage.MINT:
            data["fee_signature"] = state.proof_signature
            data["mint_address"] = state.mint_address
        return data

    async def build(self, state, init, owner, ledger):
        if state.stage is FlowStage.MINT:
            return await ledger.build_mint(owner, self.asset_metadata(state, init))

        step = self.step_for(state.stage)
        plan = TransferPlan.fungible(
            amount=init.amount if init.amount is not None else self.settings.mint_fee_amount,
            decimals=init.decimals if init.decimals is not None else self.settings.token_decimals,
            source_owner=owner,
            destination_owner=_require(init.destination, "treasury", step),
            asset_id=_require(init.asset_id, "token mint", step),
        )
        return await ledger.build_transfer(plan)

    def asset_metadata(self, state: FlowState, init: InitResponse) -> AssetMetadata:
        """Metadata for the minted asset. The mint init response wins over the caller."""
        caller = _caller_metadata(state.params)
        step = self.step_for(FlowStage.MINT)
        return AssetMetadata(
            name=_require(init.name or (caller and caller.name), "asset name", step),
            symbol=init.symbol or (caller.symbol if caller else ""),
            uri=_require(init.uri or (caller and caller.uri), "metadata uri", step),
        )

class EscrowTransfer(FlowDefinition):
    """Pay an order amount into the escrow account."""

    kind = FlowKind.ESCROW_TRANSFER
    steps = {FlowStage.TRANSFER: BackendStep.ESCROW}

    def validate(self, params: FlowParams) -> None:
        super().validate(params)
        if params.amount is None:
            raise InvalidTransferPlan("escrow transfer needs an amount")
        if Decimal(params.amount) <= 0:
            raise InvalidTransferPlan("amount must be positive")

    async def build(self, state, init, owner, ledger):
        step = self.step_for(state.stage)
        plan = TransferPlan.fungible(
            amount=Decimal(state.params.amount),
            decimals=init.decimals if init.decimals is not None else self.settings.token_decimals,
            source_owner=owner,
            destination_owner=_require(init.destination, "escrow account", step),
            asset_id=_require(init.asset_id, "token mint", step),
        )
        return await ledger.build_transfer(plan)


class OwnershipTransfer(FlowDefinition):
    """Hand a unique asset to its new owner. Always exactly one unit."""

    kind = FlowKind.OWNERSHIP_TRANSFER
    steps = {FlowStage.TRANSFER: BackendStep.OWNERSHIP}

    def validate(self, params: FlowParams) -> None:
        super().validate(params)
        if params.amount is not None and Decimal(params.amount) != 1:
            raise InvalidTransferPlan(
                f"unique asset transfer amount must be 1, got {params.amount}"
            )

    async def build(self, state, init, owner, ledger):
        step = self.step_for(state.stage)
        plan = TransferPlan.unique_asset(
            source_owner=owner,
            destination_owner=_require(
                state.params.recipient or init.destination, "recipient", step
            ),
            asset_id=_require(state.params.asset_id or init.asset_id, "asset", step),
        )
        return await ledger.build_transfer(plan)


FLOW_DEFINITIONS: dict[FlowKind, type[FlowDefinition]] = {
    FlowKind.FEE_TRANSFER_AND_MINT: FeeTransferAndMint,
    FlowKind.ESCROW_TRANSFER: EscrowTransfer,
    FlowKind.OWNERSHIP_TRANSFER: OwnershipTransfer,
}


def get_flow_definition(kind: FlowKind, settings: Settings) -> FlowDefinition:
    return FLOW_DEFINITIONS[FlowKind(kind)](settings)
