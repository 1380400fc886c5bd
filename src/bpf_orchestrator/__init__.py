"""
bpf_orchestrator

This package keeps a fleet of machines converged on a declared set of
attachable programs.

We keep modules small and well separated:
core contains shared data structures, conditions, errors and logging
store contains the declarative store interface and an in memory backend
loader contains the program loader interface and its clients
planner contains the pure attachment expander and the diff engine
agent contains the per node reconciler and the reconcile loop
operator contains the cluster aggregator
"""
