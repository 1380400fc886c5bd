"""
HTTP loader client.

Talks to a loader that exposes a small JSON API:

POST {base_url}/load      body: LoadRequest json        reply: {"handle": 7}
POST {base_url}/unload    body: {"handle": 7}           reply: {}
GET  {base_url}/programs?kind=xdp                       reply: {"programs": [record, ...]}

Record shape: {"handle": 7, "position": 0, "request": <LoadRequest json>}

Every transport, HTTP status, or decode failure is raised as LoaderError so the
reconcilers treat it as transient.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, List, Optional
from urllib.error import URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from bpf_orchestrator.core.errors import LoaderError
from bpf_orchestrator.core.serialization import load_request_to_json, loader_record_from_json
from bpf_orchestrator.core.types import LoaderRecord, LoadRequest, ProgramKind
from bpf_orchestrator.loader.base import LoaderClient, LoaderConfig


@dataclass(frozen=True)
class HttpLoaderClient(LoaderClient):
    base_url: str
    config: LoaderConfig = field(default_factory=LoaderConfig)

    def _call(self, method: str, path: str, body: Optional[dict[str, Any]], timeout: Optional[float]) -> dict[str, Any]:
        data = json.dumps(body).encode("utf-8") if body is not None else None
        http_req = Request(
            url=f"{self.base_url.rstrip('/')}{path}",
            data=data,
            headers={"Content-Type": "application/json"},
            method=method,
        )

        effective_timeout = timeout if timeout is not None else self.config.timeout_seconds
        try:
            with urlopen(http_req, timeout=effective_timeout) as resp:
                raw = resp.read().decode("utf-8")
        except (URLError, OSError) as exc:
            raise LoaderError(f"loader {method} {path} failed: {exc}") from exc

        if not raw:
            return {}

        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise LoaderError(f"loader {method} {path} returned invalid json") from exc

        if not isinstance(payload, dict):
            raise LoaderError(f"loader {method} {path} returned {type(payload).__name__}, expected object")
        return payload

    def load(self, request: LoadRequest, timeout: Optional[float] = None) -> int:
        payload = self._call("POST", "/load", load_request_to_json(request), timeout)
        if "handle" not in payload:
            raise LoaderError("loader load reply is missing handle")
        return int(payload["handle"])

    def unload(self, handle: int, timeout: Optional[float] = None) -> None:
        self._call("POST", "/unload", {"handle": handle}, timeout)

    def list(self, kind: ProgramKind, timeout: Optional[float] = None) -> List[LoaderRecord]:
        query = urlencode({"kind": kind.value})
        payload = self._call("GET", f"/programs?{query}", None, timeout)

        raw = payload.get("programs", [])
        if not isinstance(raw, list):
            raise LoaderError("loader list reply programs must be a list")
        return [loader_record_from_json(x) for x in raw if isinstance(x, dict)]
