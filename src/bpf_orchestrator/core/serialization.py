from __future__ import annotations

import base64
from dataclasses import asdict
from typing import Any

from bpf_orchestrator.core.errors import LoaderError
from bpf_orchestrator.core.types import (
    AttachInfo,
    BytecodeLocation,
    Direction,
    ImageBytecode,
    LoaderRecord,
    LoadRequest,
    ProgramKind,
    PullPolicy,
    TcAttachInfo,
    TracepointAttachInfo,
    XdpAttachInfo,
)


def _normalize(obj: Any) -> Any:
    if hasattr(obj, "value"):
        return obj.value
    if isinstance(obj, bytes):
        return base64.b64encode(obj).decode("ascii")
    if isinstance(obj, dict):
        return {str(k): _normalize(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_normalize(v) for v in obj]
    return obj


def to_json_safe_dict(obj: Any) -> dict[str, Any]:
    """
    Convert a dataclass object into a JSON safe dict.

    Enums become their values and bytes become base64 strings.
    This is intended for transport only.
    """
    raw = asdict(obj)
    normalized = _normalize(raw)
    if not isinstance(normalized, dict):
        raise TypeError("expected dict after normalization")
    return normalized


def load_request_to_json(request: LoadRequest) -> dict[str, Any]:
    """
    LoadRequest transport shape.

    The attach union is tagged with the program kind so the receiving side
    knows which variant it holds.
    """
    payload = to_json_safe_dict(request)
    payload["attach"] = {"type": request.kind.value, **payload["attach"]}
    return payload


def _bytecode_from_dict(obj: dict[str, Any]) -> BytecodeLocation:
    image_obj = obj.get("image")
    if isinstance(image_obj, dict):
        image = ImageBytecode(
            url=str(image_obj.get("url", "")),
            pull_policy=PullPolicy(str(image_obj.get("pull_policy", PullPolicy.if_not_present.value))),
            image_pull_secret=image_obj.get("image_pull_secret"),
        )
        return BytecodeLocation(image=image)
    file = obj.get("file")
    return BytecodeLocation(file=str(file) if file is not None else None)


def _attach_from_dict(obj: dict[str, Any]) -> AttachInfo:
    tag = str(obj.get("type", ""))
    proceed_on = tuple(int(x) for x in obj.get("proceed_on", []) or [])

    if tag == ProgramKind.xdp.value:
        return XdpAttachInfo(iface=str(obj["iface"]), priority=int(obj["priority"]), proceed_on=proceed_on)
    if tag == ProgramKind.tc.value:
        return TcAttachInfo(
            iface=str(obj["iface"]),
            priority=int(obj["priority"]),
            direction=Direction(str(obj["direction"])),
            proceed_on=proceed_on,
        )
    if tag == ProgramKind.tracepoint.value:
        return TracepointAttachInfo(tracepoint=str(obj["tracepoint"]))

    raise LoaderError(f"unknown attach info type: {tag}")


def load_request_from_json(obj: dict[str, Any]) -> LoadRequest:
    """Inverse of load_request_to_json."""
    try:
        global_data_raw = obj.get("global_data", {}) or {}
        map_owner = obj.get("map_owner_handle")
        return LoadRequest(
            bytecode=_bytecode_from_dict(dict(obj.get("bytecode", {}) or {})),
            entry_point=str(obj["entry_point"]),
            kind=ProgramKind(str(obj["kind"])),
            attach=_attach_from_dict(dict(obj.get("attach", {}) or {})),
            metadata={str(k): str(v) for k, v in dict(obj.get("metadata", {}) or {}).items()},
            global_data={str(k): base64.b64decode(v) for k, v in dict(global_data_raw).items()},
            map_owner_handle=int(map_owner) if map_owner is not None else None,
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise LoaderError(f"malformed program record from loader: {exc}") from exc


def loader_record_from_json(obj: dict[str, Any]) -> LoaderRecord:
    """Decode one entry of a loader List response."""
    if "handle" not in obj:
        raise LoaderError("loader record is missing handle")
    position = obj.get("position")
    return LoaderRecord(
        handle=int(obj["handle"]),
        request=load_request_from_json(dict(obj.get("request", {}) or {})),
        position=int(position) if position is not None else None,
    )
