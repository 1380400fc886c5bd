"""
Declarative store interface.

Goal
Define the narrow CRUD surface both reconcilers need without binding them
to a specific backend.

Object kinds are the dataclasses ProgramSpec, OutcomeObject and NodeRecord.
Every object carries an ObjectMeta.

Semantics every implementation must honour
- get and list are read through and return copies, callers mutate freely
- update fails with ConflictError when meta.resource_version is stale
- delete of an object with finalizers only sets meta.deletion_timestamp
- an update that leaves a deleting object without finalizers removes it
- list filters by exact label match, which is how the aggregator finds
  "all outcome objects for spec X" and the agent "all for node Y"
"""

from __future__ import annotations

from typing import Dict, List, Optional, Protocol, Type, TypeVar

T = TypeVar("T")


class ObjectStore(Protocol):
    """Store interface expected by the reconcilers."""

    def get(self, kind: Type[T], name: str) -> T:
        """Return a copy of the named object. Raises NotFoundError."""

    def list(self, kind: Type[T], labels: Optional[Dict[str, str]] = None) -> List[T]:
        """Return copies of all objects of kind matching every label, sorted by name."""

    def create(self, obj: T) -> T:
        """Persist a new object. Raises AlreadyExistsError."""

    def update(self, obj: T) -> T:
        """Persist changes. Raises NotFoundError or ConflictError."""

    def delete(self, kind: Type[T], name: str) -> None:
        """Request deletion. Raises NotFoundError."""
