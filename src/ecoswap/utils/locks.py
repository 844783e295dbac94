"""Concurrency control for in-flight flows.

A flow id may be claimed by exactly one running flow. A second claim
fails fast with AlreadyInProgress instead of waiting, so two ledger
submissions for the same logical transaction can never race.
"""

import logging
from contextlib import contextmanager
from typing import Iterator

from ecoswap.errors import AlreadyInProgress

logger = logging.getLogger(__name__)

# Global claim registry: flow_id set
_active_flows: set[str] = set()


def claim_flow(flow_id: str, operation: str = "flow") -> None:
    """Claim a flow id for the calling flow.

    Check-and-set is synchronous, so it is atomic within one event loop.

    Raises:
        AlreadyInProgress: If the flow id is already claimed
    """
    if flow_id in _active_flows:
        logger.warning(f"Rejected concurrent {operation} for flow {flow_id}")
        raise AlreadyInProgress(f"flow {flow_id} is already in progress")
    _active_flows.add(flow_id)
    logger.debug(f"Flow claimed {flow_id}: {operation}")


def release_flow(flow_id: str) -> None:
    """Release a claimed flow id. Releasing an unclaimed id is a no-op."""
    if flow_id in _active_flows:
        _active_flows.discard(flow_id)
        logger.debug(f"Flow released {flow_id}")


def is_flow_active(flow_id: str) -> bool:
    return flow_id in _active_flows


@contextmanager
def flow_claim(flow_id: str, operation: str = "flow") -> Iterator[None]:
    """Functional context manager around claim_flow/release_flow.

    Example:
        with flow_claim(order_id, operation="reconcile"):
            ...
    """
    claim_flow(flow_id, operation)
    try:
        yield
    finally:
        release_flow(flow_id)


def clear_flow_claims() -> None:
    """Clear all claims (useful for testing)."""
    _active_flows.clear()
