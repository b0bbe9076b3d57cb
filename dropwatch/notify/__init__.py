"""Downstream publishing of drop signals, outcomes and checker counters."""
