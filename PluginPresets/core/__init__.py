"""Scopes, presets, migration and the reconciliation engine."""
