"""EcoSwap wallet and transaction orchestration."""

__version__ = "0.1.0"
