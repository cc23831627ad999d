# src/ballot_stage/api/v1/endpoints/__init__.py
"""API endpoint modules for version 1."""

from .vote_bias import router as vote_bias_router
from .vote_cache import router as vote_cache_router
from .votes import router as votes_router

__all__ = [
    "votes_router",
    "vote_cache_router",
    "vote_bias_router",
]
