# src/ballot_stage/models/__init__.py
"""SQLAlchemy models for the Ballot Stage vote engine."""

from .award import Award, Nominee
from .vote import Vote
from .vote_bias import VoteBias

__all__ = [
    "Award", "Nominee",
    "Vote",
    "VoteBias",
]
