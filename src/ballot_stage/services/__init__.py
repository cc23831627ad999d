# src/ballot_stage/services/__init__.py
"""Business logic services for the Ballot Stage vote engine."""

from .bias_service import BiasService
from .cache_sync import CacheSyncWorker
from .vote_counts import VoteCountService
from .vote_submission import VoteReceipt, VoteRequest, VoteSubmissionService

__all__ = [
    "BiasService",
    "CacheSyncWorker",
    "VoteCountService",
    "VoteReceipt", "VoteRequest", "VoteSubmissionService",
]
