"""
ACTOR_STORE
===========

Persistent store contract used by the decision loop and its tools.

The engine only needs a handful of table-shaped operations (select, insert,
update, delete) plus a few helpers built on top of them: reading the
actor's resource row, writing heat, and inserting action records,
identity observations and coherence samples.

Architecture
------------
::

    ActorStore (abstract)
    ├── select / select_one / insert / update / delete   ← backends implement
    └── fetch_actor, get_heat, set_heat, insert_action,
        insert_identity_observation, record_coherence,
        get_community, is_member, get_username, list_active_agents

    InMemoryStore(ActorStore)     dict-of-lists, RLock guarded
    └── JsonFileStore             same, loaded from / saved to one JSON file

Tables
------
``users`` (agents are users with ``is_bot``), ``communities``,
``community_members``, ``posts``, ``comments``, ``post_likes``,
``user_follows``, ``conversations``, ``messages``, ``group_conversations``,
``group_conversation_participants``, ``group_messages``, ``battles``,
``battle_participants``, ``market_items``, ``inventory``, ``proposals``,
``proposal_votes``, ``agent_relationships``, ``agent_actions``,
``agent_memories``, ``identity_observations``, ``coherence_history``.

A backend may declare the columns of a table. Asking such a table for an
unknown column raises ``FieldShapeError`` so callers can retry with a
smaller field set.

Usage::

    store = InMemoryStore({"users": [{"id": "agent-1", "heat": 20, "is_bot": True}]})
    store.set_heat("agent-1", 95)
    store.insert_action({"agent_id": "agent-1", "action_type": "reply", "target_id": "u-1"})
"""

import json
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from .errors import FieldShapeError, PersistenceWriteFailure

logger = logging.getLogger(__name__)

Row = Dict[str, Any]
Where = Optional[Dict[str, Any]]
Predicate = Optional[Callable[[Row], bool]]

MAX_HEAT = 100.0


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _matches(row: Row, where: Where) -> bool:
    """Equality match; a list/tuple/set value means "column IN values"."""
    for key, expected in (where or {}).items():
        value = row.get(key)
        if isinstance(expected, (list, tuple, set, frozenset)):
            if value not in expected:
                return False
        elif value != expected:
            return False
    return True


def _sort_key(row: Row, column: str):
    value = row.get(column)
    return (value is None, 0 if value is None else value)


# ============================================================================
# STORE CONTRACT
# ============================================================================

class ActorStore(ABC):
    """Table-shaped persistence used by Observe, Act, Reason side effects and tools."""

    @abstractmethod
    def select(
        self,
        table: str,
        where: Where = None,
        fields: Optional[Iterable[str]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        predicate: Predicate = None,
    ) -> List[Row]:
        """Return copies of matching rows, projected onto ``fields`` if given."""

    @abstractmethod
    def insert(self, table: str, row: Row) -> Row:
        """Insert a row, assigning ``id`` and ``created_at`` when missing."""

    @abstractmethod
    def update(self, table: str, where: Where, values: Row) -> int:
        """Update matching rows; returns how many changed."""

    @abstractmethod
    def delete(self, table: str, where: Where = None, predicate: Predicate = None) -> int:
        """Delete matching rows; returns how many were removed."""

    def select_one(self, table: str, where: Where = None, fields: Optional[Iterable[str]] = None) -> Optional[Row]:
        rows = self.select(table, where=where, fields=fields, limit=1)
        return rows[0] if rows else None

    def count(self, table: str, where: Where = None) -> int:
        return len(self.select(table, where=where))

    # ------------------------------------------------------------------
    # Actor resources
    # ------------------------------------------------------------------

    def fetch_actor(self, actor_id: str, fields: Iterable[str]) -> Optional[Row]:
        """Read the actor's row. Raises ``FieldShapeError`` on unknown columns."""
        return self.select_one("users", {"id": actor_id}, fields=fields)

    def get_heat(self, actor_id: str) -> float:
        row = self.select_one("users", {"id": actor_id}, fields=["heat"])
        if not row or row.get("heat") is None:
            return 0.0
        return float(row["heat"])

    def set_heat(self, actor_id: str, heat: float) -> float:
        """Write heat clamped to [0, 100]; returns the stored value. Raises ``PersistenceWriteFailure``."""
        clamped = max(0.0, min(MAX_HEAT, float(heat)))
        try:
            self.update("users", {"id": actor_id}, {"heat": clamped})
        except Exception as e:
            raise PersistenceWriteFailure(f"users update failed: {e}") from e
        return clamped

    def get_identity(self, user_id: str) -> Optional[Any]:
        row = self.select_one("users", {"id": user_id}, fields=["identity_json"])
        return row.get("identity_json") if row else None

    def get_username(self, user_id: str) -> Optional[str]:
        row = self.select_one("users", {"id": user_id}, fields=["username"])
        return row.get("username") if row else None

    def list_active_agents(self, limit: Optional[int] = None) -> List[Row]:
        return self.select(
            "users",
            predicate=lambda r: bool(r.get("is_bot")) and r.get("is_active", True) is not False,
            limit=limit,
        )

    # ------------------------------------------------------------------
    # Communities
    # ------------------------------------------------------------------

    def get_community(self, community_id: str) -> Optional[Row]:
        return self.select_one("communities", {"id": community_id})

    def is_member(self, community_id: str, user_id: str) -> bool:
        if not community_id or not user_id:
            return False
        return bool(self.select_one("community_members", {"community_id": community_id, "user_id": user_id}))

    # ------------------------------------------------------------------
    # Durable records
    # ------------------------------------------------------------------

    def _insert_record(self, table: str, record: Row) -> Row:
        try:
            return self.insert(table, record)
        except Exception as e:
            raise PersistenceWriteFailure(f"insert into {table} failed: {e}") from e

    def insert_action(self, record: Row) -> Row:
        """Insert one ``agent_actions`` row. Raises ``PersistenceWriteFailure``."""
        return self._insert_record("agent_actions", record)

    def insert_identity_observation(self, record: Row) -> Row:
        return self._insert_record("identity_observations", record)

    def record_coherence(
        self,
        user_id: str,
        coherence: float,
        action_type: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Row:
        return self._insert_record("coherence_history", {
            "user_id": user_id,
            "coherence": coherence,
            "action_type": action_type,
            "metadata": metadata,
        })


# ============================================================================
# IN-MEMORY BACKEND
# ============================================================================

class InMemoryStore(ActorStore):
    """Thread-safe dict-of-lists backend for tests, the CLI and local simulation."""

    def __init__(
        self,
        tables: Optional[Dict[str, List[Row]]] = None,
        columns: Optional[Dict[str, Iterable[str]]] = None,
    ):
        self._lock = threading.RLock()
        self._tables: Dict[str, List[Row]] = {}
        self._columns: Dict[str, set] = {name: set(cols) for name, cols in (columns or {}).items()}
        for name, rows in (tables or {}).items():
            self._tables[name] = [dict(r) for r in rows]

    def _check_fields(self, table: str, fields: Optional[Iterable[str]]) -> None:
        known = self._columns.get(table)
        if known is None or fields is None:
            return
        unknown = [f for f in fields if f not in known]
        if unknown:
            raise FieldShapeError(unknown, f"column(s) {', '.join(unknown)} do not exist on {table}")

    def select(
        self,
        table: str,
        where: Where = None,
        fields: Optional[Iterable[str]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        predicate: Predicate = None,
    ) -> List[Row]:
        fields = list(fields) if fields is not None else None
        self._check_fields(table, fields)
        with self._lock:
            rows = [
                dict(r) for r in self._tables.get(table, [])
                if _matches(r, where) and (predicate is None or predicate(r))
            ]
        if order_by:
            rows.sort(key=lambda r: _sort_key(r, order_by), reverse=descending)
        if limit is not None:
            rows = rows[:max(0, int(limit))]
        if fields is not None:
            rows = [{f: r.get(f) for f in fields} for r in rows]
        return rows

    def insert(self, table: str, row: Row) -> Row:
        record = dict(row)
        record.setdefault("id", str(uuid.uuid4()))
        record.setdefault("created_at", _now_iso())
        self._check_fields(table, [k for k in record if k not in ("id", "created_at")])
        with self._lock:
            self._tables.setdefault(table, []).append(record)
        self._changed()
        return dict(record)

    def update(self, table: str, where: Where, values: Row) -> int:
        self._check_fields(table, values.keys())
        changed = 0
        with self._lock:
            for row in self._tables.get(table, []):
                if _matches(row, where):
                    row.update(values)
                    changed += 1
        if changed:
            self._changed()
        return changed

    def delete(self, table: str, where: Where = None, predicate: Predicate = None) -> int:
        with self._lock:
            rows = self._tables.get(table, [])
            kept = [r for r in rows if not (_matches(r, where) and (predicate is None or predicate(r)))]
            removed = len(rows) - len(kept)
            self._tables[table] = kept
        if removed:
            self._changed()
        return removed

    def tables(self) -> Dict[str, List[Row]]:
        """Deep-ish snapshot of every table."""
        with self._lock:
            return {name: [dict(r) for r in rows] for name, rows in self._tables.items()}

    def _changed(self) -> None:
        """Hook for persistent subclasses."""


class JsonFileStore(InMemoryStore):
    """InMemoryStore persisted to a single JSON file after every write.

    File layout: ``{"tables": {name: [rows]}, "columns": {name: [cols]}}``.
    """

    def __init__(self, file_path: str):
        self.file_path = Path(file_path)
        tables: Dict[str, List[Row]] = {}
        columns: Dict[str, List[str]] = {}
        if self.file_path.exists():
            try:
                data = json.loads(self.file_path.read_text(encoding="utf-8"))
                tables = data.get("tables", {})
                columns = data.get("columns", {})
            except Exception as e:
                logger.error("Failed to load store file %s: %s", self.file_path, e)
        super().__init__(tables, columns)

    def _changed(self) -> None:
        with self._lock:
            data = {
                "tables": self._tables,
                "columns": {name: sorted(cols) for name, cols in self._columns.items()},
            }
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
            self.file_path.write_text(json.dumps(data, indent=2, default=str), encoding="utf-8")
