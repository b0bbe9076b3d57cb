"""Candidate fetching, budget gating and HTML signal extraction."""
