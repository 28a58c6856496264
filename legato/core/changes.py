"""
Fine-grained mutations for table values.

A change addresses a location inside a nested value by path (dict keys and
list indices) and either sets or deletes it. The store applies a list of
changes in order, so callers can update one nested field without re-supplying
the whole table value.

Examples:
    set_at(("general", "playlistStyle"), "compact")
    delete_at(("state", "panels", "library"))
    set_at((), {...})  # replace the whole value
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable

PathKey = str | int
ChangePath = tuple[PathKey, ...]


class ChangeKind(Enum):
    SET = "set"
    DELETE = "delete"


@dataclass(frozen=True, slots=True)
class Change:
    """One mutation at a path inside a table value."""

    path: ChangePath
    kind: ChangeKind = ChangeKind.SET
    value: Any = None


def set_at(path: Iterable[PathKey], value: Any) -> Change:
    return Change(path=tuple(path), kind=ChangeKind.SET, value=value)


def delete_at(path: Iterable[PathKey]) -> Change:
    return Change(path=tuple(path), kind=ChangeKind.DELETE)


def _child_container(parent: Any, key: PathKey, next_key: PathKey) -> Any:
    """Return the container at parent[key], creating it when missing."""
    if isinstance(parent, list):
        existing = parent[key] if isinstance(key, int) and -len(parent) <= key < len(parent) else None
    else:
        existing = parent.get(key)

    if isinstance(existing, (dict, list)):
        return existing

    created: Any = [] if isinstance(next_key, int) else {}
    _assign(parent, key, created)
    return created


def _assign(container: Any, key: PathKey, value: Any) -> None:
    if isinstance(container, list):
        if not isinstance(key, int):
            raise TypeError(f"List index must be int, got {key!r}")
        if key == len(container):
            container.append(value)
        elif key > len(container):
            container.extend([None] * (key - len(container)))
            container.append(value)
        else:
            container[key] = value
    else:
        container[key] = value


def _remove(container: Any, key: PathKey) -> None:
    if isinstance(container, list):
        if isinstance(key, int) and -len(container) <= key < len(container):
            del container[key]
    else:
        container.pop(key, None)


def apply_changes(value: Any, changes: Iterable[Change]) -> Any:
    """
    Apply changes in order and return the resulting value.

    The input value is never modified. A root-path SET replaces the value,
    a root-path DELETE yields None. Setting below a missing or scalar node
    creates the intermediate containers; deleting a missing path is a no-op.

    Raises:
        TypeError: A list is indexed with a non-integer key.
    """
    result = value
    owned = False

    for change in changes:
        if not change.path:
            result = None if change.kind is ChangeKind.DELETE else copy.deepcopy(change.value)
            owned = True
            continue

        if change.kind is ChangeKind.DELETE:
            parent = _lookup(result, change.path[:-1])
            if parent is None:
                continue
            if not owned:
                result = copy.deepcopy(result)
                owned = True
                parent = _lookup(result, change.path[:-1])
            _remove(parent, change.path[-1])
            continue

        if not owned:
            result = copy.deepcopy(result)
            owned = True

        if not isinstance(result, (dict, list)):
            result = [] if isinstance(change.path[0], int) else {}

        container = result
        for key, next_key in zip(change.path[:-1], change.path[1:]):
            container = _child_container(container, key, next_key)

        _assign(container, change.path[-1], copy.deepcopy(change.value))

    return result


def _lookup(value: Any, path: ChangePath) -> dict | list | None:
    """Return the container at path, or None when the path does not exist."""
    current = value
    for key in path:
        if isinstance(current, dict):
            current = current.get(key)
        elif isinstance(current, list) and isinstance(key, int) and -len(current) <= key < len(current):
            current = current[key]
        else:
            return None
    return current if isinstance(current, (dict, list)) else None
