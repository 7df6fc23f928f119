"""LangGraph orchestrator for FactMate."""

from .orchestrator import (
    FactCheckSession,
    VerificationGraph,
    create_graph,
    run_fact_check,
    run_fact_check_async,
)

__all__ = [
    "FactCheckSession",
    "VerificationGraph",
    "create_graph",
    "run_fact_check",
    "run_fact_check_async",
]
