"""
Tests for grove.

Covers the tree model, mutation engine, reconciler, agent selection,
fan-out, question ledger, storage, and whole heartbeat ticks driven by
scripted agents.
"""
