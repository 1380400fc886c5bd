"""
Loader interfaces.

Goal
Define a stable interface to the program loading service without binding
the reconcilers to a transport.

The loader is stateful and authoritative for what is actually running.
It has no in place update primitive, so a changed attachment is always an
unload followed by a load.

Every call takes a caller supplied timeout. None means the client default.
Failures of any kind surface as LoaderError.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Protocol

from bpf_orchestrator.core.types import LoaderRecord, LoadRequest, ProgramKind


class LoaderClient(Protocol):
    """
    Minimal loader client interface.

    load
    Load one attachment and return its handle.

    unload
    Unload the program with the given handle.

    list
    Return every live program of a kind with the request it was loaded with.
    The correlation id in request.metadata comes back unchanged.
    """

    def load(self, request: LoadRequest, timeout: Optional[float] = None) -> int:
        """Load a program and return the loader handle."""

    def unload(self, handle: int, timeout: Optional[float] = None) -> None:
        """Unload a program by handle."""

    def list(self, kind: ProgramKind, timeout: Optional[float] = None) -> List[LoaderRecord]:
        """List live programs of one kind."""


@dataclass(frozen=True)
class LoaderConfig:
    """
    Loader client configuration.

    timeout_seconds
    Default timeout applied to every call when the caller passes None.
    """

    timeout_seconds: float = 5.0
