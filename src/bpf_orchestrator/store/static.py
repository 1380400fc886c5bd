"""
Static state source.

Reads a local json file containing nodes and program specs and seeds an
InMemoryObjectStore with them. This is useful for dev, tests, and small demos.

Schema example
{
  "nodes": [
    {"name": "node1", "labels": {"role": "edge"}, "interfaces": ["eth0", "eth1"],
     "primary_interface": "eth0"}
  ],
  "specs": [
    {
      "name": "fw",
      "kind": "xdp",
      "entry_point": "pass_all",
      "bytecode": {"path": "/opt/progs/fw.o"},
      "node_selector": {"match_labels": {"role": "edge"}},
      "interface_selector": {"primary_node_interface": true},
      "priority": 100,
      "proceed_on": ["pass", "dispatcher_return"],
      "global_data": {"GLOBAL_u8": "AQ=="}
    }
  ]
}

global_data values are base64 strings.
"""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from bpf_orchestrator.core.errors import SelectorError
from bpf_orchestrator.core.types import (
    BytecodeSelector,
    Direction,
    ImageBytecode,
    InterfaceSelector,
    LabelRequirement,
    LabelSelector,
    NodeRecord,
    ObjectMeta,
    ProgramKind,
    ProgramSpec,
    PullPolicy,
)
from bpf_orchestrator.store.memory import InMemoryObjectStore


def _selector_from_dict(obj: dict[str, Any]) -> LabelSelector:
    expressions = []
    for raw in obj.get("match_expressions", []) or []:
        if not isinstance(raw, dict):
            continue
        expressions.append(
            LabelRequirement(
                key=str(raw.get("key", "")),
                operator=str(raw.get("operator", "")),
                values=[str(v) for v in raw.get("values", []) or []],
            )
        )
    return LabelSelector(
        match_labels={str(k): str(v) for k, v in (obj.get("match_labels", {}) or {}).items()},
        match_expressions=expressions,
    )


def _bytecode_from_dict(obj: dict[str, Any]) -> BytecodeSelector:
    image_obj = obj.get("image")
    image = None
    if isinstance(image_obj, dict):
        image = ImageBytecode(
            url=str(image_obj.get("url", "")),
            pull_policy=PullPolicy(str(image_obj.get("pull_policy", "IfNotPresent"))),
            image_pull_secret=image_obj.get("image_pull_secret"),
        )
    path = obj.get("path")
    return BytecodeSelector(path=str(path) if path is not None else None, image=image)


def node_from_dict(obj: dict[str, Any]) -> NodeRecord:
    """Convert a node dict into a NodeRecord."""
    primary = obj.get("primary_interface")
    return NodeRecord(
        meta=ObjectMeta(
            name=str(obj["name"]),
            labels={str(k): str(v) for k, v in (obj.get("labels", {}) or {}).items()},
        ),
        interfaces=[str(i) for i in obj.get("interfaces", []) or []],
        primary_interface=str(primary) if primary is not None else None,
    )


def spec_from_dict(obj: dict[str, Any]) -> ProgramSpec:
    """
    Convert a spec dict into a ProgramSpec.

    Unknown kinds or directions raise SelectorError so a bad file fails loudly
    at startup rather than being half loaded.
    """
    try:
        kind = ProgramKind(str(obj["kind"]))
        direction_raw = obj.get("direction")
        direction = Direction(str(direction_raw)) if direction_raw is not None else None
    except ValueError as exc:
        raise SelectorError(f"spec {obj.get('name')}: {exc}") from exc

    iface_obj = obj.get("interface_selector", {}) or {}
    interfaces_raw = iface_obj.get("interfaces")

    return ProgramSpec(
        meta=ObjectMeta(name=str(obj["name"])),
        kind=kind,
        entry_point=str(obj.get("entry_point", "")),
        bytecode=_bytecode_from_dict(dict(obj.get("bytecode", {}) or {})),
        node_selector=_selector_from_dict(dict(obj.get("node_selector", {}) or {})),
        global_data={
            str(k): base64.b64decode(v) for k, v in (obj.get("global_data", {}) or {}).items()
        },
        map_owner=obj.get("map_owner"),
        interface_selector=InterfaceSelector(
            interfaces=[str(i) for i in interfaces_raw] if interfaces_raw is not None else None,
            primary_node_interface=bool(iface_obj.get("primary_node_interface", False)),
        ),
        priority=int(obj.get("priority", 1000)),
        direction=direction,
        proceed_on=[str(p) for p in obj.get("proceed_on", []) or []],
        tracepoints=[str(t) for t in obj.get("tracepoints", []) or []],
    )


@dataclass(frozen=True)
class StaticStateSource:
    """Seed an in memory store from a local json file."""

    path: Path

    def load(self) -> InMemoryObjectStore:
        data = json.loads(self.path.read_text(encoding="utf-8"))

        store = InMemoryObjectStore()
        if not isinstance(data, dict):
            return store

        for raw in data.get("nodes", []) or []:
            if isinstance(raw, dict):
                store.create(node_from_dict(raw))

        for raw in data.get("specs", []) or []:
            if isinstance(raw, dict):
                store.create(spec_from_dict(raw))

        return store
