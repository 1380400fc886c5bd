"""
Planner package.

This makes the planner folder an explicit package so both Python and mypy
resolve modules consistently.
"""

from bpf_orchestrator.planner.diff import matches
from bpf_orchestrator.planner.expander import expand

__all__ = ["expand", "matches"]
