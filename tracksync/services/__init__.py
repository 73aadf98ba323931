"""Service layer for tracksync.

Carrier client, normalization, classification, rate limiting, selection
and persistence live here; the reconciliation engine in
tracksync.orchestrator composes them.
"""
