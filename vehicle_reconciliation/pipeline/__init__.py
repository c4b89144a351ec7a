"""Reconciliation pipeline: phase orchestration and phase implementations."""
