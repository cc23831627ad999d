"""Ballot Stage: vote submission and tally aggregation engine."""

__version__ = "0.1.0"
