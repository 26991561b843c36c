"""Persistence interface consumed by the deletion engine.

The set of collections and their schemas is not known statically, so the
engine talks to the data store through this narrow, name-based protocol.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

_MISSING = object()


@dataclass(frozen=True)
class FieldMatch:
    """`field` equals `value`. Dotted fields address nested values (e.g. "user.id")."""

    field: str
    value: str

    @property
    def path(self) -> tuple[str, ...]:
        return tuple(self.field.split("."))


@dataclass(frozen=True)
class MatchPredicate:
    """Logical OR over field matches: a record matches if any field matches."""

    matches: tuple[FieldMatch, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.matches

    def matches_record(self, record: Mapping[str, Any]) -> bool:
        """Evaluate the predicate against an in-memory document."""
        for match in self.matches:
            value: Any = record
            for part in match.path:
                if not isinstance(value, Mapping):
                    value = _MISSING
                    break
                value = value.get(part, _MISSING)
            if value is not _MISSING and value is not None and str(value) == match.value:
                return True
        return False


def apply_patch(record: dict[str, Any], patch: Mapping[str, Any]) -> None:
    """Apply an update_many patch to an in-memory document.

    Top-level keys are set unconditionally; dotted keys replace a nested
    value only where the full path already exists.
    """
    for key, new_value in patch.items():
        *parents, leaf = key.split(".")
        target: Any = record
        for part in parents:
            target = target.get(part) if isinstance(target, Mapping) else None
        if not parents:
            record[key] = new_value
        elif isinstance(target, dict) and leaf in target:
            target[leaf] = new_value


class DataStore(Protocol):
    """Uniform collection enumeration and query interface.

    `update_many` follows apply_patch semantics and returns how many matching
    documents it patched.
    """

    async def list_collections(self) -> Sequence[str]: ...

    async def find(self, collection: str, predicate: MatchPredicate) -> Sequence[Mapping[str, Any]]: ...

    async def delete_many(self, collection: str, predicate: MatchPredicate) -> int: ...

    async def update_many(
        self, collection: str, predicate: MatchPredicate, patch: Mapping[str, Any]
    ) -> int: ...
