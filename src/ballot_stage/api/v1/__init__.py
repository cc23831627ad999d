# src/ballot_stage/api/v1/__init__.py
"""Version 1 API endpoints."""

from .endpoints import vote_bias_router, vote_cache_router, votes_router

__all__ = [
    "votes_router",
    "vote_cache_router",
    "vote_bias_router",
]
