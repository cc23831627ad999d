"""HTTP API for the Ballot Stage vote engine."""
