"""Utility modules for ecoswap."""

from ecoswap.utils.locks import claim_flow, flow_claim, release_flow

__all__ = ["claim_flow", "flow_claim", "release_flow"]
