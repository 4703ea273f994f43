"""
Agent State Store - ABC and implementations.

Persists the durable subset of AgentState as an opaque flat record per agent
id. Backends may raise; the scheduler treats load and save as best-effort and
recovers from failures at its own boundary.
"""

import asyncio
import copy
import os
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from nightshift.config.loader import StateConfig
from nightshift.scheduler.models import DEFAULT_AGENT_ID
from nightshift.utils.tojson import from_json, to_json


class StateStore(ABC):
    """Abstract base for per-agent state record persistence."""

    @abstractmethod
    async def load(self, agent_id: str) -> dict[str, Any] | None:
        """Return the stored record, or None when nothing was saved yet."""
        ...

    @abstractmethod
    async def save(self, agent_id: str, record: dict[str, Any]) -> None:
        """Replace the stored record for ``agent_id``."""
        ...

    async def close(self) -> None:
        """Close storage and release resources."""
        pass


# ═══════════════════════════════════════════════════════════════════════════
# In-Memory Implementation (for testing)
# ═══════════════════════════════════════════════════════════════════════════


class InMemoryStateStore(StateStore):
    """In-memory implementation for testing and ephemeral runs."""

    def __init__(self) -> None:
        self._records: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def load(self, agent_id: str) -> dict[str, Any] | None:
        record = self._records.get(agent_id)
        return copy.deepcopy(record) if record is not None else None

    async def save(self, agent_id: str, record: dict[str, Any]) -> None:
        async with self._lock:
            self._records[agent_id] = copy.deepcopy(record)


# ═══════════════════════════════════════════════════════════════════════════
# JSON File Implementation
# ═══════════════════════════════════════════════════════════════════════════


class JsonFileStateStore(StateStore):
    """
    One pretty-printed JSON file per agent.

    ``main`` lives at ``<data_dir>/<persist_path>``; every other agent at
    ``<data_dir>/agents/<agent_id>/<persist_path>``. Writes go to a sibling
    temp file first and are moved into place.
    """

    def __init__(self, data_dir: str | Path, persist_path: str = "state.json") -> None:
        self._data_dir = Path(data_dir).expanduser()
        self._persist_path = persist_path

    def path_for(self, agent_id: str) -> Path:
        if agent_id == DEFAULT_AGENT_ID:
            return self._data_dir / self._persist_path
        return self._data_dir / "agents" / agent_id / self._persist_path

    async def load(self, agent_id: str) -> dict[str, Any] | None:
        return await asyncio.to_thread(self._read, self.path_for(agent_id))

    async def save(self, agent_id: str, record: dict[str, Any]) -> None:
        await asyncio.to_thread(self._write, self.path_for(agent_id), record)

    @staticmethod
    def _read(path: Path) -> dict[str, Any] | None:
        if not path.exists():
            return None
        return from_json(path.read_bytes())

    @staticmethod
    def _write(path: Path, record: dict[str, Any]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(path.name + ".tmp")
        tmp_path.write_text(to_json(record, pretty=True), encoding="utf-8")
        os.replace(tmp_path, path)


# ═══════════════════════════════════════════════════════════════════════════
# SQLite Implementation
# ═══════════════════════════════════════════════════════════════════════════


class SQLiteStateStore(StateStore):
    """SQLite-backed state store, one row per agent."""

    def __init__(self, db_path: str = "nightshift.db") -> None:
        self._db_path = db_path
        self._conn: "aiosqlite.Connection | None" = None

    async def _get_conn(self) -> "aiosqlite.Connection":
        if self._conn is None:
            import aiosqlite

            if self._db_path != ":memory:":
                Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = await aiosqlite.connect(self._db_path)
            self._conn.row_factory = aiosqlite.Row
            await self._conn.execute("PRAGMA journal_mode=WAL")
            await self._create_table()
        return self._conn

    async def _create_table(self) -> None:
        conn = self._conn
        assert conn is not None
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS agent_states (
                agent_id TEXT PRIMARY KEY,
                record TEXT NOT NULL,
                saved_at TEXT NOT NULL
            )
            """
        )
        await conn.commit()

    async def load(self, agent_id: str) -> dict[str, Any] | None:
        conn = await self._get_conn()
        cursor = await conn.execute(
            "SELECT record FROM agent_states WHERE agent_id = ?", (agent_id,)
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return from_json(row["record"])

    async def save(self, agent_id: str, record: dict[str, Any]) -> None:
        conn = await self._get_conn()
        saved_at = record.get("savedAt") or datetime.now(timezone.utc).isoformat()
        await conn.execute(
            """
            INSERT INTO agent_states (agent_id, record, saved_at)
            VALUES (?, ?, ?)
            ON CONFLICT(agent_id) DO UPDATE SET
                record = excluded.record,
                saved_at = excluded.saved_at
            """,
            (agent_id, to_json(record), saved_at),
        )
        await conn.commit()

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None


def create_state_store(config: StateConfig, data_dir: str | Path) -> StateStore:
    """Factory: create a StateStore from the ``state`` config section."""
    storage_type = config.storage_type

    if storage_type == "memory":
        return InMemoryStateStore()
    elif storage_type == "json":
        return JsonFileStateStore(data_dir, persist_path=config.persist_path)
    elif storage_type == "sqlite":
        db_path = config.sqlite_db_path
        if db_path != ":memory:" and not Path(db_path).is_absolute():
            db_path = str(Path(data_dir).expanduser() / db_path)
        return SQLiteStateStore(db_path=db_path)
    else:
        raise ValueError(f"Unknown state storage_type: {storage_type}")
