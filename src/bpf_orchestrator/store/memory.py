"""
In memory store.

This store is used for tests and local runs.
It behaves like a declarative API server keyed by object kind and name.

Features
- Deep copies on every read and write so callers never share state
- Optimistic concurrency through meta.resource_version
- Finalizer gated deletion
- Label filtered listing
- Write injection to simulate conflicts and outages
"""

from __future__ import annotations

import copy
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Type, TypeVar

from bpf_orchestrator.core.errors import AlreadyExistsError, ConflictError, NotFoundError, StoreError
from bpf_orchestrator.core.logging import get_logger
from bpf_orchestrator.store.base import ObjectStore

T = TypeVar("T")

logger = get_logger(__name__)


@dataclass
class InMemoryObjectStore(ObjectStore):
    """
    In memory store.

    fail_writes
    Number of upcoming create, update or delete calls that raise StoreError.
    This simulates a store outage for retry testing.

    writes
    Count of successful writes. Tests use it to assert a pass was a no-op.
    """

    fail_writes: int = 0
    writes: int = 0
    _objects: Dict[type, Dict[str, Any]] = field(default_factory=dict)
    _version: int = 0

    def _bucket(self, kind: type) -> Dict[str, Any]:
        return self._objects.setdefault(kind, {})

    def _next_version(self) -> int:
        self._version += 1
        return self._version

    def _check_write(self) -> None:
        if self.fail_writes > 0:
            self.fail_writes -= 1
            raise StoreError("injected store write failure")

    def get(self, kind: Type[T], name: str) -> T:
        obj = self._bucket(kind).get(name)
        if obj is None:
            raise NotFoundError(f"{kind.__name__} {name} not found")
        return copy.deepcopy(obj)

    def list(self, kind: Type[T], labels: Optional[Dict[str, str]] = None) -> List[T]:
        wanted = labels or {}
        out: List[T] = []
        for name in sorted(self._bucket(kind)):
            obj = self._bucket(kind)[name]
            obj_labels = obj.meta.labels
            if all(obj_labels.get(k) == v for k, v in wanted.items()):
                out.append(copy.deepcopy(obj))
        return out

    def create(self, obj: T) -> T:
        self._check_write()
        bucket = self._bucket(type(obj))
        name = obj.meta.name  # type: ignore[attr-defined]
        if name in bucket:
            raise AlreadyExistsError(f"{type(obj).__name__} {name} already exists")

        stored = copy.deepcopy(obj)
        stored.meta.resource_version = self._next_version()  # type: ignore[attr-defined]
        bucket[name] = stored
        self.writes += 1
        return copy.deepcopy(stored)

    def update(self, obj: T) -> T:
        self._check_write()
        bucket = self._bucket(type(obj))
        name = obj.meta.name  # type: ignore[attr-defined]
        existing = bucket.get(name)
        if existing is None:
            raise NotFoundError(f"{type(obj).__name__} {name} not found")
        if existing.meta.resource_version != obj.meta.resource_version:  # type: ignore[attr-defined]
            raise ConflictError(
                f"{type(obj).__name__} {name} has resource version "
                f"{existing.meta.resource_version}, update carried {obj.meta.resource_version}"  # type: ignore[attr-defined]
            )

        stored = copy.deepcopy(obj)
        # deletion is requested through delete only
        stored.meta.deletion_timestamp = existing.meta.deletion_timestamp  # type: ignore[attr-defined]
        stored.meta.resource_version = self._next_version()  # type: ignore[attr-defined]
        self.writes += 1

        if stored.meta.deletion_timestamp is not None and not stored.meta.finalizers:  # type: ignore[attr-defined]
            del bucket[name]
            logger.debug("object_removed", kind=type(obj).__name__, name=name)
            return copy.deepcopy(stored)

        bucket[name] = stored
        return copy.deepcopy(stored)

    def delete(self, kind: Type[T], name: str) -> None:
        self._check_write()
        bucket = self._bucket(kind)
        existing = bucket.get(name)
        if existing is None:
            raise NotFoundError(f"{kind.__name__} {name} not found")

        self.writes += 1
        if not existing.meta.finalizers:
            del bucket[name]
            logger.debug("object_removed", kind=kind.__name__, name=name)
            return

        if existing.meta.deletion_timestamp is None:
            existing.meta.deletion_timestamp = time.time()
            existing.meta.resource_version = self._next_version()
