"""
Selector helpers.

Why this file exists
A spec carries two selectors, and both tiers need to evaluate them the same way:

- the node selector decides whether a machine should run the program at all
- the interface selector decides which interfaces on that machine it attaches to

The agent uses them to decide what to load, and the aggregator uses the node
selector to count how many machines must report before the spec is converged.
"""

from __future__ import annotations

from typing import Dict, List

from bpf_orchestrator.core.errors import SelectorError
from bpf_orchestrator.core.types import InterfaceSelector, LabelRequirement, LabelSelector, NodeRecord


def _requirement_matches(req: LabelRequirement, labels: Dict[str, str]) -> bool:
    op = req.operator
    if op == "In":
        return req.key in labels and labels[req.key] in req.values
    if op == "NotIn":
        return req.key not in labels or labels[req.key] not in req.values
    if op == "Exists":
        return req.key in labels
    if op == "DoesNotExist":
        return req.key not in labels
    raise SelectorError(f"unsupported label selector operator: {op}")


def node_matches(selector: LabelSelector, labels: Dict[str, str]) -> bool:
    """
    Return True if labels satisfy the selector.

    An empty selector matches everything.
    An unknown operator raises SelectorError.
    """
    for key, value in selector.match_labels.items():
        if labels.get(key) != value:
            return False

    return all(_requirement_matches(req, labels) for req in selector.match_expressions)


def selected_nodes(selector: LabelSelector, nodes: List[NodeRecord]) -> List[str]:
    """Return sorted names of the nodes a selector picks."""
    return sorted(n.name for n in nodes if node_matches(selector, n.meta.labels))


def interfaces_for(selector: InterfaceSelector, node: NodeRecord) -> List[str]:
    """
    Resolve an interface selector against one node.

    Explicit interfaces are returned in declared order with duplicates removed.
    They are not checked against the node, the loader reports a missing
    interface as a load failure.

    primary_node_interface resolves to the node's observed primary interface.
    A selector with neither or both options set raises SelectorError.
    """
    explicit = selector.interfaces is not None
    if explicit == selector.primary_node_interface:
        raise SelectorError("interface selector must set exactly one of interfaces or primary_node_interface")

    if selector.primary_node_interface:
        if not node.primary_interface:
            raise SelectorError(f"node {node.name} reports no primary interface")
        return [node.primary_interface]

    out: List[str] = []
    for iface in selector.interfaces or []:
        if iface and iface not in out:
            out.append(iface)
    return out
