"""Application backend collaborator."""

from ecoswap.backend.base import Backend, BackendStep, CommitResponse, InitResponse
from ecoswap.backend.http import HttpBackend

__all__ = [
    "Backend",
    "BackendStep",
    "CommitResponse",
    "HttpBackend",
    "InitResponse",
]
