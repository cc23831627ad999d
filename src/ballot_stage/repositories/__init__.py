"""Data access layer for votes, awards and bias entries."""

from .bias_repo import BiasStore
from .errors import ActiveBiasConflict, DuplicateVoteConflict, StoreConflict
from .vote_repo import NomineeCount, VoteHistoryEntry, VoteStore

__all__ = [
    "ActiveBiasConflict",
    "BiasStore",
    "DuplicateVoteConflict",
    "NomineeCount",
    "StoreConflict",
    "VoteHistoryEntry",
    "VoteStore",
]
