"""
Event delta pipeline.

This package computes per-user deltas between daily event exports (e.g.
cart-abandon minus charged events), consolidates them into bounded profiles
and pushes those profiles to the event ingestion API in retried batches.
"""
