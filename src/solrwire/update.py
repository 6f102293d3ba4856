"""
JSON bodies for Solr's ``/update`` handler.

Solr's JSON update syntax is an object whose keys are commands. The same
command may appear more than once (``{"add": {...}, "add": {...}}``), which a
plain ``dict`` cannot express, so :class:`UpdateBuilder` keeps an ordered list
of ``(command, payload)`` pairs and renders the object itself.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any


class Command(str, Enum):
    ADD = "add"
    DELETE = "delete"
    COMMIT = "commit"
    ROLLBACK = "rollback"
    OPTIMIZE = "optimize"


ACTION_SET = "set"
ACTION_ADD = "add"
ACTION_ADD_DISTINCT = "add-distinct"
ACTION_REMOVE = "remove"
ACTION_REMOVE_REGEX = "removeregex"
ACTION_INCREMENT = "inc"


@dataclass(frozen=True)
class CommitOptions:
    """Options of a commit command.

    Args:
        wait_searcher: Block until a new searcher is registered (server default).
        expunge_deletes: Merge away segments with more than 10% deleted docs.
    """

    wait_searcher: bool = True
    expunge_deletes: bool = False

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {}
        if not self.wait_searcher:
            body["waitSearcher"] = False
        if self.expunge_deletes:
            body["expungeDeletes"] = True
        return body


@dataclass(frozen=True)
class OptimizeOptions:
    """Options of an optimize command.

    Args:
        wait_searcher: Block until a new searcher is registered (server default).
        max_segments: Merge down to at most this many segments (sent when > 1).
    """

    wait_searcher: bool = True
    max_segments: int | None = None

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {}
        if not self.wait_searcher:
            body["waitSearcher"] = False
        if self.max_segments is not None and self.max_segments > 1:
            body["maxSegments"] = self.max_segments
        return body


class UpdateBuilder:
    """Ordered collection of update commands for one ``/update`` request."""

    def __init__(self) -> None:
        self._commands: list[tuple[Command, Any]] = []

    def __len__(self) -> int:
        return len(self._commands)

    @property
    def commands(self) -> list[tuple[Command, Any]]:
        return list(self._commands)

    def add(self, doc: dict[str, Any]) -> UpdateBuilder:
        """Add (or atomically update) one document."""
        if not isinstance(doc, dict):
            raise TypeError(f"document must be a dict, got {type(doc).__name__}")
        self._commands.append((Command.ADD, {"doc": doc}))
        return self

    def delete_by_id(self, doc_id: str) -> UpdateBuilder:
        self._commands.append((Command.DELETE, {"id": doc_id}))
        return self

    def delete_by_query(self, query: str) -> UpdateBuilder:
        self._commands.append((Command.DELETE, {"query": query}))
        return self

    def commit(self, opts: CommitOptions | None = None) -> UpdateBuilder:
        self._commands.append((Command.COMMIT, (opts or CommitOptions()).to_dict()))
        return self

    def rollback(self) -> UpdateBuilder:
        self._commands.append((Command.ROLLBACK, {}))
        return self

    def optimize(self, opts: OptimizeOptions | None = None) -> UpdateBuilder:
        self._commands.append((Command.OPTIMIZE, (opts or OptimizeOptions()).to_dict()))
        return self

    def encode(self) -> str:
        """Render the commands as a JSON object, repeating keys where needed."""
        entries = (
            f"{json.dumps(cmd.value)}: {json.dumps(payload, default=str)}"
            for cmd, payload in self._commands
        )
        return "{" + ", ".join(entries) + "}"


class AtomicUpdate:
    """Field modifications for an atomic / in-place update of one document.

    If no document with *doc_id* exists, Solr creates one.

    Usage::

        upd = AtomicUpdate("book-1")
        upd.set("title", "Dracula").increment_by("views", 1)
        client.update(upd)
    """

    def __init__(self, doc_id: str, *, id_field: str = "id") -> None:
        self._fields: dict[str, Any] = {id_field: doc_id}

    def _modify(self, key: str, action: str, value: Any) -> AtomicUpdate:
        self._fields[key] = {action: value}
        return self

    def set(self, key: str, value: Any) -> AtomicUpdate:
        """Replace the field's value(s); ``None`` removes the field."""
        return self._modify(key, ACTION_SET, value)

    def add(self, key: str, value: Any) -> AtomicUpdate:
        return self._modify(key, ACTION_ADD, value)

    def add_distinct(self, key: str, value: Any) -> AtomicUpdate:
        return self._modify(key, ACTION_ADD_DISTINCT, value)

    def remove(self, key: str, value: Any) -> AtomicUpdate:
        return self._modify(key, ACTION_REMOVE, value)

    def remove_regex(self, key: str, value: str | list[str]) -> AtomicUpdate:
        return self._modify(key, ACTION_REMOVE_REGEX, value)

    def increment_by(self, key: str, value: int | float) -> AtomicUpdate:
        return self._modify(key, ACTION_INCREMENT, value)

    def to_dict(self) -> dict[str, Any]:
        return dict(self._fields)
