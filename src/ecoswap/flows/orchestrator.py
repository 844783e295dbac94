"""Transaction orchestrator.

Drives backend-init -> unlock -> sign -> submit -> confirm -> backend-commit
for each flow stage, recording every step in a FlowState that UI code can
observe. Failures never leak as exceptions from a running flow; they end
the flow in a failure phase carrying a FlowFailure.

Retry is asymmetric:
    - FAILED_AT_INIT / FAILED_AT_UNLOCK / FAILED_AT_TRANSFER: the whole
      stage runs again, after first looking up any signature already
      submitted for it. A signature that landed is committed instead of
      being resubmitted.
    - FAILED_AT_COMMIT: only the backend commit runs again, after the
      recorded signature is verified on the ledger. Nothing is resubmitted.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Callable, Optional

from solders.pubkey import Pubkey

from ecoswap.backend.base import Backend
from ecoswap.chain.base import SignatureStatus, to_pubkey
from ecoswap.chain.client import LedgerClient
from ecoswap.config import Settings, get_settings
from ecoswap.errors import (
    AlreadyConfirmedMismatch,
    AlreadyInProgress,
    CryptoError,
    EcoswapError,
    LedgerError,
    LedgerTimeoutError,
    RetryNotAllowed,
    SecretRequired,
    TransferPending,
)
from ecoswap.flows.kinds import FlowDefinition, get_flow_definition
from ecoswap.flows.state import FlowKind, FlowParams, FlowPhase, FlowStage, FlowState
from ecoswap.logging_config import register_sensitive, unregister_sensitive
from ecoswap.utils.locks import claim_flow, release_flow
from ecoswap.wallet.base import WalletRecord
from ecoswap.wallet.vault import WalletVault

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[FlowState], None]
LedgerFactory = Callable[[str], LedgerClient]


class CancelResult(str, Enum):
    OK = "ok"
    REFUSED = "refused"


@dataclass(frozen=True)
class TransferRetry:
    """Run the stage again. Requires the wallet secret."""
    secret: str


@dataclass(frozen=True)
class CommitRetry:
    """Record an already-confirmed signature with the backend."""
    signature: str


class FlowHandle:
    """Caller's view of a running flow.

    Progress is available three ways: the live `state`, callbacks passed
    as `on_progress`, and the `updates()` async iterator of snapshots.
    """

    def __init__(self, state: FlowState, callbacks: Optional[list[ProgressCallback]] = None):
        self._state = state
        self._callbacks: list[ProgressCallback] = list(callbacks or [])
        self._queues: list[asyncio.Queue] = []
        self._task: Optional[asyncio.Task] = None
        self.submission_dispatched = False

    @property
    def state(self) -> FlowState:
        return self._state

    @property
    def flow_id(self) -> str:
        return self._state.flow_id

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    async def wait(self) -> FlowState:
        """Wait for the flow to stop and return its final state.

        Cancelling the waiter does not cancel the flow.
        """
        if self._task is None:
            return self._state
        try:
            await asyncio.shield(self._task)
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise
        return self._state

    async def updates(self) -> AsyncIterator[FlowState]:
        """Yield a snapshot now and after every phase change until the flow stops."""
        queue: asyncio.Queue = asyncio.Queue()
        self._queues.append(queue)
        try:
            yield self._state.snapshot()
            if self.done:
                return
            while True:
                snapshot = await queue.get()
                if snapshot is None:
                    return
                yield snapshot
        finally:
            self._queues.remove(queue)

    def add_callback(self, callback: ProgressCallback) -> None:
        self._callbacks.append(callback)

    def _publish(self) -> None:
        snapshot = self._state.snapshot()
        for queue in self._queues:
            queue.put_nowait(snapshot)
        for callback in self._callbacks:
            try:
                callback(snapshot)
            except Exception:
                logger.exception(f"Progress callback failed for flow {self.flow_id}")

    def _close_updates(self) -> None:
        for queue in self._queues:
            queue.put_nowait(None)

    def __repr__(self) -> str:
        return (
            f"FlowHandle({self.flow_id!r}, {self._state.kind.value}, "
            f"{self._state.stage.value}, {self._state.phase.value})"
        )


class TransactionOrchestrator:
    """Runs multi-phase flows against the backend and the ledger.

    Only one flow per flow id may run at a time; a concurrent start or
    retry raises AlreadyInProgress. Ledger clients are created per flow
    stage from the RPC endpoint the backend returns.
    """

    def __init__(
        self,
        backend: Backend,
        vault: Optional[WalletVault] = None,
        ledger_factory: Optional[LedgerFactory] = None,
        settings: Optional[Settings] = None,
    ):
        self.backend = backend
        self.settings = settings or get_settings()
        self.vault = vault or WalletVault()
        self._ledger_factory = ledger_factory or (
            lambda rpc_url: LedgerClient.for_endpoint(rpc_url, settings=self.settings)
        )

    # ======================
    # Public API
    # ======================

    def start_flow(
        self,
        kind: FlowKind,
        params: FlowParams,
        secret: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> FlowHandle:
        """Start a flow in the running event loop.

        Raises:
            InvalidTransferPlan: Parameters rejected before anything is sent
            AlreadyInProgress: A flow with the same id is running
        """
        definition = get_flow_definition(kind, self.settings)
        definition.validate(params)
        state = FlowState(flow_id=params.flow_id, kind=definition.kind, params=params)
        handle = FlowHandle(state, [on_progress] if on_progress else None)
        self._launch(handle, self._run(handle, definition, secret), "start")
        return handle

    def retry(
        self,
        handle: FlowHandle,
        secret: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> FlowHandle:
        """Retry a failed flow from the phase it failed in.

        Returns a new handle sharing the same FlowState.

        Raises:
            AlreadyInProgress: The flow is still running
            RetryNotAllowed: The flow is not in a retryable phase
            SecretRequired: The retry needs to sign and no secret was given
        """
        if not handle.done and handle._task is not None:
            raise AlreadyInProgress(f"flow {handle.flow_id} is still running")

        state = handle.state
        if not state.phase.is_retryable:
            raise RetryNotAllowed(f"flow {state.flow_id} cannot be retried from {state.phase.value}")

        if state.phase is FlowPhase.FAILED_AT_COMMIT:
            request = CommitRetry(state.last_signature)
        else:
            if not secret:
                raise SecretRequired("the wallet secret is required to retry this transfer")
            request = TransferRetry(secret)

        definition = get_flow_definition(state.kind, self.settings)
        callbacks = list(handle._callbacks)
        if on_progress:
            callbacks.append(on_progress)
        new_handle = FlowHandle(state, callbacks)
        # A confirmed transfer is being recorded; nothing is left to cancel
        new_handle.submission_dispatched = isinstance(request, CommitRetry)

        if isinstance(request, CommitRetry):
            coro = self._retry_commit(new_handle, definition, request, secret)
        else:
            coro = self._retry_transfer(new_handle, definition, request)
        self._launch(new_handle, coro, "retry", before_start=state.reset_for_retry)
        return new_handle

    def cancel(self, handle: FlowHandle) -> CancelResult:
        """Cancel a flow that has not dispatched its ledger submission yet.

        Refused once any transaction of the flow may be on the ledger,
        including commit-only retries and resumed flows.
        """
        if handle._task is None or handle.done or handle.submission_dispatched:
            logger.info(f"Cancel refused for flow {handle.flow_id} ({handle.state.phase.value})")
            return CancelResult.REFUSED
        handle._task.cancel()
        logger.info(f"Cancel requested for flow {handle.flow_id}")
        return CancelResult.OK

    def resume(
        self,
        kind: FlowKind,
        params: FlowParams,
        signature: str,
        rpc_url: str,
        stage: FlowStage = FlowStage.TRANSFER,
        last_valid_block_height: Optional[int] = None,
        fee_signature: Optional[str] = None,
        secret: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> FlowHandle:
        """Pick up a flow whose process died after submitting `signature`.

        A signature that landed is committed. One that failed or never
        arrived leaves the flow in FAILED_AT_TRANSFER, retryable with the
        secret; its signature stays on record so the retry re-checks it.

        Resuming a mint needs the committed fee signature as `fee_signature`.
        """
        definition = get_flow_definition(kind, self.settings)
        state = FlowState(
            flow_id=params.flow_id,
            kind=definition.kind,
            params=params,
            stage=stage,
            rpc_url=rpc_url,
            last_signature=signature,
            last_signature_stage=stage,
            last_valid_block_height=last_valid_block_height,
            signatures=[signature],
        )
        if stage is FlowStage.MINT:
            # The mint stage only ever starts after the fee stage committed
            state.committed_stages.append(FlowStage.TRANSFER)
            state.proof_signature = fee_signature
        handle = FlowHandle(state, [on_progress] if on_progress else None)
        # The signature was already broadcast by the crashed process
        handle.submission_dispatched = True
        self._launch(handle, self._resume(handle, definition, signature, secret), "resume")
        return handle

    # ======================
    # Task plumbing
    # ======================

    def _launch(self, handle: FlowHandle, coro, operation: str, before_start=None) -> None:
        try:
            loop = asyncio.get_running_loop()
            claim_flow(handle.flow_id, operation)
        except (RuntimeError, AlreadyInProgress):
            coro.close()
            raise
        if before_start is not None:
            before_start()
        handle._task = loop.create_task(coro, name=f"flow-{handle.flow_id}")
        handle._task.add_done_callback(lambda task: self._on_task_done(handle, task))

    def _on_task_done(self, handle: FlowHandle, task: asyncio.Task) -> None:
        state = handle.state
        if task.cancelled():
            # The run's own finally released the claim unless it never started
            release_flow(handle.flow_id)
            if not state.phase.is_terminal:
                state.fail(FlowPhase.CANCELLED, asyncio.CancelledError("cancelled by caller"))
                self._log_phase(state)
                handle._publish()
        elif task.exception() is not None:
            logger.error(
                f"Flow {handle.flow_id} crashed in {state.phase.value}",
                exc_info=task.exception(),
            )
        handle._close_updates()

    # ======================
    # Runs
    # ======================

    async def _run(
        self,
        handle: FlowHandle,
        definition: FlowDefinition,
        secret: Optional[str],
    ) -> None:
        register_sensitive(secret)
        try:
            self._advance(handle, FlowPhase.INITIATED)
            await self._run_stages(handle, definition, secret)
        finally:
            unregister_sensitive(secret)
            release_flow(handle.flow_id)

    async def _run_stages(
        self, handle: FlowHandle, definition: FlowDefinition, secret: Optional[str]
    ) -> None:
        """Run every uncommitted stage from the current one, then succeed."""
        state = handle.state
        for stage in definition.stages_from(state.stage):
            if stage in state.committed_stages:
                continue
            if stage is not state.stage:
                state.begin_stage(stage)
                self._log_phase(state)
                handle._publish()
            if not secret:
                # Reached after a commit-only retry when a later stage must sign
                self._fail(
                    handle,
                    FlowPhase.FAILED_AT_UNLOCK,
                    SecretRequired("the wallet secret is required to continue"),
                )
                return
            if not await self._run_stage(handle, definition, secret):
                return
        self._advance(handle, FlowPhase.SUCCEEDED)

    async def _run_stage(
        self, handle: FlowHandle, definition: FlowDefinition, secret: str
    ) -> bool:
        state = handle.state
        step = definition.step_for(state.stage)

        try:
            init = await self.backend.init(step, definition.init_params(state), secret)
        except EcoswapError as e:
            return self._fail(handle, FlowPhase.FAILED_AT_INIT, e)

        state.rpc_url = init.rpc_url
        ledger = self._ledger_factory(init.rpc_url)

        try:
            record = init.wallet_record(state.params.owner)
            owner = self._owner_key(record, secret)
        except CryptoError as e:
            return self._fail(handle, FlowPhase.FAILED_AT_UNLOCK, e)
        except EcoswapError as e:
            return self._fail(handle, FlowPhase.FAILED_AT_INIT, e)

        try:
            await ledger.ensure_minimum_balance(owner)
            unsigned = await definition.build(state, init, owner, ledger)
        except EcoswapError as e:
            return self._fail(handle, FlowPhase.FAILED_AT_TRANSFER, e)
        self._advance(handle, FlowPhase.READY_TO_SIGN)

        try:
            with self.vault.unlock(record, secret) as wallet:
                signed = ledger.sign(unsigned, wallet.keypair)
        except CryptoError as e:
            return self._fail(handle, FlowPhase.FAILED_AT_UNLOCK, e)

        # Past this point the transfer may land; cancel is refused
        handle.submission_dispatched = True
        state.record_submission(
            signed.signature, signed.last_valid_block_height, signed.mint_address
        )
        self._log_phase(state)
        handle._publish()

        try:
            await ledger.submit_and_confirm(signed)
        except LedgerTimeoutError as e:
            status = await self._lookup(ledger, signed.signature)
            if status is None or not status.landed:
                error: EcoswapError = e
                if status is not None and status.pending:
                    error = TransferPending(f"{signed.signature} is {status.confirmation_status}")
                return self._fail(handle, FlowPhase.FAILED_AT_TRANSFER, error)
            logger.info(f"Flow {state.flow_id}: {signed.signature} landed after timeout")
        except LedgerError as e:
            return self._fail(handle, FlowPhase.FAILED_AT_TRANSFER, e)

        self._advance(handle, FlowPhase.ON_LEDGER_CONFIRMED)
        return await self._commit_stage(handle, definition)

    async def _commit_stage(self, handle: FlowHandle, definition: FlowDefinition) -> bool:
        state = handle.state
        step = definition.step_for(state.stage)
        try:
            await self.backend.commit(step, state.last_signature, definition.commit_params(state))
        except EcoswapError as e:
            return self._fail(handle, FlowPhase.FAILED_AT_COMMIT, e)
        state.mark_committed()
        self._log_phase(state)
        handle._publish()
        return True

    async def _retry_transfer(
        self, handle: FlowHandle, definition: FlowDefinition, request: TransferRetry
    ) -> None:
        secret = request.secret
        register_sensitive(secret)
        try:
            if handle.state.has_unsettled_signature:
                if await self._settle_previous(handle, definition) is None:
                    return
            await self._run_stages(handle, definition, secret)
        finally:
            unregister_sensitive(secret)
            release_flow(handle.flow_id)

    async def _settle_previous(
        self, handle: FlowHandle, definition: FlowDefinition
    ) -> Optional[bool]:
        """Decide what to do with a signature submitted by an earlier attempt.

        Returns:
            True if it landed and was committed, False if a fresh attempt is
            safe, None if the flow stopped in a failure phase
        """
        state = handle.state
        signature = state.last_signature
        ledger = self._ledger_factory(state.rpc_url)
        try:
            status = await ledger.get_signature_status(signature)
            if status is not None and status.landed:
                logger.info(f"Flow {state.flow_id}: previous {signature} landed, committing")
                handle.submission_dispatched = True
                self._advance(handle, FlowPhase.ON_LEDGER_CONFIRMED)
                return await self._commit_stage(handle, definition) or None
            if status is not None and status.pending:
                # Already in a block; blockhash expiry no longer rules it out
                self._fail(
                    handle,
                    FlowPhase.FAILED_AT_TRANSFER,
                    TransferPending(f"{signature} is {status.confirmation_status}, not confirmed"),
                )
                return None
            if status is None and state.last_valid_block_height is None:
                logger.warning(
                    f"Flow {state.flow_id}: {signature} not found and its expiry is unknown"
                )
            elif status is None:
                if not await ledger.is_blockhash_expired(state.last_valid_block_height):
                    self._fail(
                        handle,
                        FlowPhase.FAILED_AT_TRANSFER,
                        TransferPending(f"{signature} may still land"),
                    )
                    return None
        except LedgerError as e:
            self._fail(handle, FlowPhase.FAILED_AT_TRANSFER, e)
            return None
        reason = f"failed ({status.err})" if status is not None else "did not land"
        logger.info(f"Flow {state.flow_id}: previous {signature} {reason}, resubmitting")
        return False

    async def _retry_commit(
        self,
        handle: FlowHandle,
        definition: FlowDefinition,
        request: CommitRetry,
        secret: Optional[str],
    ) -> None:
        register_sensitive(secret)
        try:
            if await self._verify_and_commit(handle, definition, request.signature):
                await self._run_stages(handle, definition, secret)
        finally:
            unregister_sensitive(secret)
            release_flow(handle.flow_id)

    async def _resume(
        self,
        handle: FlowHandle,
        definition: FlowDefinition,
        signature: str,
        secret: Optional[str],
    ) -> None:
        register_sensitive(secret)
        state = handle.state
        try:
            self._advance(handle, FlowPhase.INITIATED)
            ledger = self._ledger_factory(state.rpc_url)
            try:
                status = await ledger.get_signature_status(signature)
            except LedgerError as e:
                self._fail(handle, FlowPhase.FAILED_AT_TRANSFER, e)
                return
            if status is not None and status.pending:
                self._fail(
                    handle,
                    FlowPhase.FAILED_AT_TRANSFER,
                    TransferPending(f"resumed signature {signature} is {status.confirmation_status}"),
                )
                return
            if status is None or not status.landed:
                reason = status.err if status is not None else "not found"
                self._fail(
                    handle,
                    FlowPhase.FAILED_AT_TRANSFER,
                    LedgerError(f"resumed signature {signature} did not land ({reason})"),
                )
                return
            self._advance(handle, FlowPhase.ON_LEDGER_CONFIRMED)
            if await self._commit_stage(handle, definition):
                await self._run_stages(handle, definition, secret)
        finally:
            unregister_sensitive(secret)
            release_flow(handle.flow_id)

    async def _verify_and_commit(
        self, handle: FlowHandle, definition: FlowDefinition, signature: str
    ) -> bool:
        state = handle.state
        ledger = self._ledger_factory(state.rpc_url)
        try:
            status = await ledger.get_signature_status(signature)
        except LedgerError as e:
            return self._fail(handle, FlowPhase.FAILED_AT_COMMIT, e)

        if status is None or not status.landed:
            logger.error(
                f"Flow {state.flow_id}: commit retry for {signature} but ledger reports "
                f"{status.confirmation_status if status else 'nothing'}"
            )
            return self._fail(
                handle,
                FlowPhase.NEEDS_RECONCILIATION,
                AlreadyConfirmedMismatch(f"{signature} is not confirmed on the ledger"),
            )

        self._advance(handle, FlowPhase.ON_LEDGER_CONFIRMED)
        return await self._commit_stage(handle, definition)

    # ======================
    # Helpers
    # ======================

    def _owner_key(self, record: WalletRecord, secret: str) -> Pubkey:
        if record.public_key:
            return to_pubkey(record.public_key)
        with self.vault.unlock(record, secret) as wallet:
            return wallet.public_key

    async def _lookup(self, ledger: LedgerClient, signature: str) -> Optional[SignatureStatus]:
        try:
            return await ledger.get_signature_status(signature)
        except LedgerError as e:
            logger.warning(f"Status lookup after timeout failed for {signature}: {e}")
            return None

    def _advance(self, handle: FlowHandle, phase: FlowPhase) -> None:
        handle.state.advance(phase)
        self._log_phase(handle.state)
        handle._publish()

    def _fail(self, handle: FlowHandle, phase: FlowPhase, exc: BaseException) -> bool:
        state = handle.state
        state.fail(phase, exc)
        logger.warning(
            f"Flow {state.flow_id} [{state.kind.value}/{state.stage.value}] "
            f"attempt {state.attempt} -> {phase.value}: {type(exc).__name__}: {exc}"
        )
        handle._publish()
        return False

    @staticmethod
    def _log_phase(state: FlowState) -> None:
        suffix = f" sig={state.last_signature}" if state.last_signature else ""
        logger.info(
            f"Flow {state.flow_id} [{state.kind.value}/{state.stage.value}] "
            f"attempt {state.attempt} -> {state.phase.value}{suffix}"
        )
