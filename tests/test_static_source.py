import json
from pathlib import Path

import pytest

from bpf_orchestrator.core.errors import SelectorError
from bpf_orchestrator.core.types import Direction, NodeRecord, ProgramKind, ProgramSpec, PullPolicy
from bpf_orchestrator.store.static import StaticStateSource, spec_from_dict


def write_state(tmp_path: Path) -> Path:
    path = tmp_path / "state.json"
    path.write_text(
        json.dumps(
            {
                "nodes": [
                    {"name": "node1", "labels": {"role": "edge"}, "interfaces": ["eth0", "eth1"], "primary_interface": "eth0"},
                    {"name": "node2", "interfaces": ["ens3"]},
                ],
                "specs": [
                    {
                        "name": "fw",
                        "kind": "tc",
                        "entry_point": "pass_all",
                        "bytecode": {"image": {"url": "quay.io/progs/fw:v1", "pull_policy": "Always"}},
                        "node_selector": {
                            "match_expressions": [{"key": "role", "operator": "In", "values": ["edge"]}]
                        },
                        "interface_selector": {"interfaces": ["eth1"]},
                        "direction": "ingress",
                        "priority": 10,
                        "proceed_on": ["pipe"],
                        "global_data": {"GLOBAL_u8": "AQ=="},
                    },
                    {
                        "name": "kill",
                        "kind": "tracepoint",
                        "entry_point": "on_kill",
                        "bytecode": {"path": "/opt/progs/kill.o"},
                        "tracepoints": ["syscalls/sys_enter_kill"],
                    },
                ],
            }
        ),
        encoding="utf-8",
    )
    return path


def test_load_seeds_nodes_and_specs(tmp_path: Path):
    store = StaticStateSource(path=write_state(tmp_path)).load()

    nodes = store.list(NodeRecord)
    assert [n.name for n in nodes] == ["node1", "node2"]
    assert nodes[0].meta.labels == {"role": "edge"}
    assert nodes[1].primary_interface is None

    fw = store.get(ProgramSpec, "fw")
    assert fw.kind == ProgramKind.tc
    assert fw.direction == Direction.ingress
    assert fw.bytecode.image.pull_policy == PullPolicy.always
    assert fw.node_selector.match_expressions[0].values == ["edge"]
    assert fw.interface_selector.interfaces == ["eth1"]
    assert fw.global_data == {"GLOBAL_u8": b"\x01"}

    kill = store.get(ProgramSpec, "kill")
    assert kill.bytecode.path == "/opt/progs/kill.o"
    assert kill.priority == 1000
    assert kill.tracepoints == ["syscalls/sys_enter_kill"]


def test_unknown_kind_fails_loudly():
    with pytest.raises(SelectorError):
        spec_from_dict({"name": "x", "kind": "kprobe"})


def test_non_object_file_gives_empty_store(tmp_path: Path):
    path = tmp_path / "state.json"
    path.write_text("[]", encoding="utf-8")
    assert StaticStateSource(path=path).load().list(ProgramSpec) == []
