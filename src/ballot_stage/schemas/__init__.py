"""
Pydantic schemas for API request/response models.

These schemas define the structure of API data for serialization and validation.
"""

from .bias import BiasCreate, BiasDeactivate, BiasResponse, BiasUpdate
from .common import ErrorBody, ErrorResponse
from .vote import VoteCountsResponse, VoteCreate, VoteResponse, VoteSubmitResponse

__all__ = [
    "BiasCreate", "BiasDeactivate", "BiasResponse", "BiasUpdate",
    "ErrorBody", "ErrorResponse",
    "VoteCountsResponse", "VoteCreate", "VoteResponse", "VoteSubmitResponse",
]
