"""Failure mode playground: an HTTP endpoint that simulates API failures."""
