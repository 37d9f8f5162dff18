"""Resilient single-environment deployment orchestrator."""

__version__ = "1.0.0"
