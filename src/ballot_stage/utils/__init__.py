"""Shared helpers for Ballot Stage."""
