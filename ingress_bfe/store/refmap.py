"""Bidirectional many-to-many index between routes and the secrets they use."""

from __future__ import annotations

import threading


class ReferenceIndex:
    """Maps owners (route keys) to targets (secret keys) and back.

    The inverse map is always exactly the transpose of the forward map.
    ``insert`` replaces an owner's whole target set in one step. Lookups on
    absent keys return empty sets.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        # owner -> targets
        self._refs: dict[str, set[str]] = {}
        # target -> owners
        self._rev: dict[str, set[str]] = {}

    def insert(self, owner: str, *targets: str) -> None:
        """Replace the target set of *owner* with *targets*."""
        with self._lock:
            self._unlink(owner)
            wanted = set(targets)
            if not wanted:
                return
            self._refs[owner] = wanted
            for target in wanted:
                self._rev.setdefault(target, set()).add(owner)

    def delete(self, owner: str) -> None:
        """Remove *owner* and every reference it holds."""
        with self._lock:
            self._unlink(owner)

    def reference(self, target: str) -> set[str]:
        """Owners that reference *target*."""
        with self._lock:
            return set(self._rev.get(target, ()))

    def referenced_by(self, owner: str) -> set[str]:
        """Targets referenced by *owner*."""
        with self._lock:
            return set(self._refs.get(owner, ()))

    def has(self, target: str) -> bool:
        with self._lock:
            return target in self._rev

    def __len__(self) -> int:
        with self._lock:
            return len(self._refs)

    def _unlink(self, owner: str) -> None:
        # caller holds the lock
        for target in self._refs.pop(owner, ()):
            owners = self._rev.get(target)
            if owners is None:
                continue
            owners.discard(owner)
            if not owners:
                del self._rev[target]
