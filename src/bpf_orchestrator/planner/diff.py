"""
Diff engine.

Purpose
Decide whether a live program reported by the loader is exactly the program
the expander says should be there.

Matching rule
Two descriptions match only when every field that can change runtime behavior
is equal:
- bytecode location, file path or image url
- entry point name
- program kind
- the full attach parameter set, including priority and proceed on
- global data
- map owner handle

Excluded
- metadata, it only carries the correlation id and the spec name
- image pull policy and pull secret, they control fetching, not what runs
- position, it is derived by the loader for display

There is no partial patch. Any mismatch means unload and reload, because the
loader has no in place update.
"""

from __future__ import annotations

from typing import List, Tuple

from bpf_orchestrator.core.types import (
    BytecodeLocation,
    LoadRequest,
    TcAttachInfo,
    XdpAttachInfo,
)


def _bytecode_ref(loc: BytecodeLocation) -> Tuple[str, str]:
    if loc.image is not None:
        return ("image", loc.image.url)
    return ("file", loc.file or "")


def matches(expected: LoadRequest, observed: LoadRequest) -> Tuple[bool, List[str]]:
    """
    Compare an expected request with the one the loader reports.

    Returns (True, []) on an exact match, else (False, reasons) with one human
    readable reason per differing field.
    """
    reasons: List[str] = []

    exp_code, obs_code = _bytecode_ref(expected.bytecode), _bytecode_ref(observed.bytecode)
    if exp_code != obs_code:
        reasons.append(f"bytecode expected {exp_code[0]} {exp_code[1]} observed {obs_code[0]} {obs_code[1]}")

    if expected.entry_point != observed.entry_point:
        reasons.append(f"entry point expected {expected.entry_point} observed {observed.entry_point}")

    if expected.kind != observed.kind:
        reasons.append(f"kind expected {expected.kind.value} observed {observed.kind.value}")

    reasons.extend(_attach_reasons(expected, observed))

    if expected.global_data != observed.global_data:
        exp_keys = sorted(expected.global_data)
        obs_keys = sorted(observed.global_data)
        reasons.append(f"global data differs, expected keys {exp_keys} observed keys {obs_keys}")

    if expected.map_owner_handle != observed.map_owner_handle:
        reasons.append(
            f"map owner expected {expected.map_owner_handle} observed {observed.map_owner_handle}"
        )

    return len(reasons) == 0, reasons


def _attach_reasons(expected: LoadRequest, observed: LoadRequest) -> List[str]:
    exp, obs = expected.attach, observed.attach

    if type(exp) is not type(obs):
        return [f"attach type expected {type(exp).__name__} observed {type(obs).__name__}"]

    if exp == obs:
        return []

    if isinstance(exp, (XdpAttachInfo, TcAttachInfo)) and isinstance(obs, (XdpAttachInfo, TcAttachInfo)):
        reasons: List[str] = []
        if exp.iface != obs.iface:
            reasons.append(f"interface expected {exp.iface} observed {obs.iface}")
        if exp.priority != obs.priority:
            reasons.append(f"priority expected {exp.priority} observed {obs.priority}")
        if sorted(exp.proceed_on) != sorted(obs.proceed_on):
            reasons.append(f"proceed on expected {list(exp.proceed_on)} observed {list(obs.proceed_on)}")
        if isinstance(exp, TcAttachInfo) and isinstance(obs, TcAttachInfo) and exp.direction != obs.direction:
            reasons.append(f"direction expected {exp.direction.value} observed {obs.direction.value}")
        return reasons

    return [f"attach expected {exp} observed {obs}"]
