"""Core configuration for Ballot Stage."""
