#!/usr/bin/env python3
"""Flow Reconciliation Script.

Looks up a submitted transaction signature on the ledger and, when it
landed, records it with the backend. Used after a crash between ledger
submission and backend commit. Nothing is ever resubmitted to the ledger.

Usage:
    python scripts/reconcile.py --kind escrow_transfer --flow-id ORDER \\
        --signature SIG [--rpc-url URL] [--stage transfer] [--commit]

Options:
    --commit   Run the backend commit for a landed signature
               (default: only report the ledger status)
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from dotenv import load_dotenv

from ecoswap.backend.http import HttpBackend
from ecoswap.chain.client import LedgerClient
from ecoswap.config import get_settings
from ecoswap.errors import LedgerError
from ecoswap.flows import FlowKind, FlowParams, FlowStage, TransactionOrchestrator
from ecoswap.logging_config import setup_logging

load_dotenv()

setup_logging()
logger = logging.getLogger(__name__)


async def check_signature(rpc_url: str, signature: str) -> bool:
    """Report the ledger status of a signature. True if it landed."""
    ledger = LedgerClient.for_endpoint(rpc_url)
    try:
        status = await ledger.get_signature_status(signature)
    except LedgerError as e:
        logger.error(f"Status lookup failed: {e}")
        return False

    if status is None:
        logger.info(f"{signature}: unknown to the ledger")
        return False
    if status.failed:
        logger.info(f"{signature}: failed on-ledger ({status.err})")
        return False
    logger.info(f"{signature}: {status.confirmation_status} at slot {status.slot}")
    return status.landed


async def main():
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Reconcile a submitted flow")
    parser.add_argument(
        "--kind", type=str, required=True, choices=[k.value for k in FlowKind], help="Flow kind"
    )
    parser.add_argument("--flow-id", type=str, required=True, help="Backend order / NFT id")
    parser.add_argument("--signature", type=str, required=True, help="Submitted signature")
    parser.add_argument("--rpc-url", type=str, default=settings.solana_rpc_url, help="RPC URL")
    parser.add_argument(
        "--stage",
        type=str,
        default=FlowStage.TRANSFER.value,
        choices=[s.value for s in FlowStage],
        help="Stage the signature belongs to",
    )
    parser.add_argument("--fee-signature", type=str, help="Committed fee signature (mint stage)")
    parser.add_argument("--commit", action="store_true", help="Commit a landed signature")
    args = parser.parse_args()

    landed = await check_signature(args.rpc_url, args.signature)
    if not args.commit:
        return 0 if landed else 1
    if not landed:
        logger.warning("Signature has not landed; nothing to commit")
        return 1

    orchestrator = TransactionOrchestrator(HttpBackend(), settings=settings)
    handle = orchestrator.resume(
        FlowKind(args.kind),
        FlowParams(flow_id=args.flow_id),
        signature=args.signature,
        rpc_url=args.rpc_url,
        stage=FlowStage(args.stage),
        fee_signature=args.fee_signature,
    )
    state = await handle.wait()

    logger.info("=" * 60)
    logger.info(f"Flow {state.flow_id}: {state.phase.value} ({state.outcome.value})")
    if state.error:
        logger.info(f"  Error: {state.error.error_type}: {state.error.message}")
    return 0 if FlowStage(args.stage) in state.committed_stages else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
