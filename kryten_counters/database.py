"""SQLite database module for kryten-counters.

Each public method is async and wraps a synchronous inner function via
asyncio.run_in_executor(None, _sync). A new connection is created per call
(WAL mode, 30s busy timeout, Row factory).

Implements the counter, broadcaster-config and counter-library repositories
consumed by the ChatCommandEngine.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from datetime import datetime, timezone
from typing import Any, Iterable

from .errors import InvalidCommandConfig
from .models import CommandDefinition, CounterState, CustomCounterDefinition


class CountersDatabase:
    """SQLite-backed persistence for counter state and broadcaster config."""

    def __init__(self, db_path: str, logger: logging.Logger) -> None:
        self._db_path = db_path
        self._logger = logger

    def _get_connection(self) -> sqlite3.Connection:
        """Create a new SQLite connection with standard settings."""
        conn = sqlite3.connect(self._db_path, timeout=30)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=30000")
        conn.row_factory = sqlite3.Row
        return conn

    # ══════════════════════════════════════════════════════════
    #  Initialization
    # ══════════════════════════════════════════════════════════

    async def initialize(self) -> None:
        """Create all tables. Idempotent."""
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._create_tables)

    def _create_tables(self) -> None:
        conn = self._get_connection()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS counters (
                    broadcaster_id TEXT PRIMARY KEY,
                    deaths INTEGER DEFAULT 0,
                    swears INTEGER DEFAULT 0,
                    screams INTEGER DEFAULT 0,
                    bits INTEGER DEFAULT 0,
                    custom TEXT DEFAULT '{}',
                    last_updated TIMESTAMP
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS command_overrides (
                    broadcaster_id TEXT NOT NULL,
                    command TEXT NOT NULL,
                    definition TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE(broadcaster_id, command)
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS custom_counters (
                    broadcaster_id TEXT NOT NULL,
                    counter_id TEXT NOT NULL,
                    definition TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE(broadcaster_id, counter_id)
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS counter_library (
                    counter_id TEXT PRIMARY KEY,
                    definition TEXT NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    last_updated TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS broadcaster_settings (
                    broadcaster_id TEXT PRIMARY KEY,
                    settings TEXT NOT NULL DEFAULT '{}',
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            conn.commit()
        finally:
            conn.close()

    # ══════════════════════════════════════════════════════════
    #  Counter state
    # ══════════════════════════════════════════════════════════

    async def get_counters(self, broadcaster_id: str) -> CounterState:
        """Current counters for a broadcaster; all zero if none stored yet."""
        loop = asyncio.get_running_loop()

        def _sync() -> CounterState:
            conn = self._get_connection()
            try:
                row = conn.execute(
                    "SELECT * FROM counters WHERE broadcaster_id = ?",
                    (broadcaster_id,),
                ).fetchone()
            finally:
                conn.close()
            if row is None:
                return CounterState(broadcaster_id=broadcaster_id)
            data = dict(row)
            data["custom"] = json.loads(data.get("custom") or "{}")
            return CounterState.from_dict(data)

        return await loop.run_in_executor(None, _sync)

    async def save_counters(self, state: CounterState) -> None:
        loop = asyncio.get_running_loop()
        updated = state.last_updated or datetime.now(timezone.utc)

        def _sync() -> None:
            conn = self._get_connection()
            try:
                conn.execute(
                    """
                    INSERT INTO counters
                        (broadcaster_id, deaths, swears, screams, bits, custom, last_updated)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(broadcaster_id) DO UPDATE SET
                        deaths = excluded.deaths,
                        swears = excluded.swears,
                        screams = excluded.screams,
                        bits = excluded.bits,
                        custom = excluded.custom,
                        last_updated = excluded.last_updated
                    """,
                    (
                        state.broadcaster_id,
                        state.deaths,
                        state.swears,
                        state.screams,
                        state.bits,
                        json.dumps(state.custom, sort_keys=True),
                        updated.isoformat(),
                    ),
                )
                conn.commit()
            finally:
                conn.close()

        await loop.run_in_executor(None, _sync)

    # ══════════════════════════════════════════════════════════
    #  Command overrides
    # ══════════════════════════════════════════════════════════

    async def get_command_overrides(self, broadcaster_id: str) -> dict[str, CommandDefinition]:
        """Stored overrides keyed by lowercase command. Unparseable rows are skipped."""
        loop = asyncio.get_running_loop()

        def _sync() -> list[sqlite3.Row]:
            conn = self._get_connection()
            try:
                return conn.execute(
                    "SELECT command, definition FROM command_overrides WHERE broadcaster_id = ?",
                    (broadcaster_id,),
                ).fetchall()
            finally:
                conn.close()

        rows = await loop.run_in_executor(None, _sync)
        overrides: dict[str, CommandDefinition] = {}
        for row in rows:
            try:
                definition = CommandDefinition.from_dict(row["command"], json.loads(row["definition"]))
            except (InvalidCommandConfig, json.JSONDecodeError, TypeError) as exc:
                self._logger.warning(
                    "Skipping invalid command override %s for %s: %s",
                    row["command"], broadcaster_id, exc,
                )
                continue
            overrides[definition.name] = definition
        return overrides

    async def set_command_override(self, broadcaster_id: str, definition: CommandDefinition) -> None:
        loop = asyncio.get_running_loop()

        def _sync() -> None:
            conn = self._get_connection()
            try:
                conn.execute(
                    """
                    INSERT INTO command_overrides (broadcaster_id, command, definition, updated_at)
                    VALUES (?, ?, ?, CURRENT_TIMESTAMP)
                    ON CONFLICT(broadcaster_id, command) DO UPDATE SET
                        definition = excluded.definition,
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    (broadcaster_id, definition.name, json.dumps(definition.to_dict())),
                )
                conn.commit()
            finally:
                conn.close()

        await loop.run_in_executor(None, _sync)

    async def delete_command_override(self, broadcaster_id: str, command: str) -> bool:
        loop = asyncio.get_running_loop()

        def _sync() -> bool:
            conn = self._get_connection()
            try:
                cur = conn.execute(
                    "DELETE FROM command_overrides WHERE broadcaster_id = ? AND command = ?",
                    (broadcaster_id, command.lower()),
                )
                conn.commit()
                return cur.rowcount > 0
            finally:
                conn.close()

        return await loop.run_in_executor(None, _sync)

    # ══════════════════════════════════════════════════════════
    #  Custom counters
    # ══════════════════════════════════════════════════════════

    async def get_custom_counter_config(self, broadcaster_id: str) -> dict[str, CustomCounterDefinition]:
        loop = asyncio.get_running_loop()

        def _sync() -> list[sqlite3.Row]:
            conn = self._get_connection()
            try:
                return conn.execute(
                    "SELECT counter_id, definition FROM custom_counters WHERE broadcaster_id = ?",
                    (broadcaster_id,),
                ).fetchall()
            finally:
                conn.close()

        rows = await loop.run_in_executor(None, _sync)
        counters: dict[str, CustomCounterDefinition] = {}
        for row in rows:
            try:
                definition = CustomCounterDefinition.from_dict(
                    row["counter_id"], json.loads(row["definition"]),
                )
            except (InvalidCommandConfig, json.JSONDecodeError, TypeError) as exc:
                self._logger.warning(
                    "Skipping invalid custom counter %s for %s: %s",
                    row["counter_id"], broadcaster_id, exc,
                )
                continue
            counters[definition.counter_id] = definition
        return counters

    async def set_custom_counter(self, broadcaster_id: str, definition: CustomCounterDefinition) -> None:
        loop = asyncio.get_running_loop()

        def _sync() -> None:
            conn = self._get_connection()
            try:
                conn.execute(
                    """
                    INSERT INTO custom_counters (broadcaster_id, counter_id, definition, updated_at)
                    VALUES (?, ?, ?, CURRENT_TIMESTAMP)
                    ON CONFLICT(broadcaster_id, counter_id) DO UPDATE SET
                        definition = excluded.definition,
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    (broadcaster_id, definition.counter_id, json.dumps(definition.to_dict())),
                )
                conn.commit()
            finally:
                conn.close()

        await loop.run_in_executor(None, _sync)

    async def delete_custom_counter(self, broadcaster_id: str, counter_id: str) -> bool:
        loop = asyncio.get_running_loop()

        def _sync() -> bool:
            conn = self._get_connection()
            try:
                cur = conn.execute(
                    "DELETE FROM custom_counters WHERE broadcaster_id = ? AND counter_id = ?",
                    (broadcaster_id, counter_id.lower()),
                )
                conn.commit()
                return cur.rowcount > 0
            finally:
                conn.close()

        return await loop.run_in_executor(None, _sync)

    # ══════════════════════════════════════════════════════════
    #  Counter library
    # ══════════════════════════════════════════════════════════

    async def get_library_items(
        self, counter_ids: Iterable[str] | None = None,
    ) -> list[CustomCounterDefinition]:
        """Catalog entries, optionally restricted to *counter_ids*."""
        loop = asyncio.get_running_loop()
        wanted = {c.lower() for c in counter_ids} if counter_ids is not None else None

        def _sync() -> list[sqlite3.Row]:
            conn = self._get_connection()
            try:
                return conn.execute(
                    "SELECT counter_id, definition FROM counter_library ORDER BY counter_id"
                ).fetchall()
            finally:
                conn.close()

        items: list[CustomCounterDefinition] = []
        for row in await loop.run_in_executor(None, _sync):
            if wanted is not None and row["counter_id"] not in wanted:
                continue
            try:
                items.append(CustomCounterDefinition.from_dict(
                    row["counter_id"], json.loads(row["definition"]),
                ))
            except (InvalidCommandConfig, json.JSONDecodeError, TypeError) as exc:
                self._logger.warning("Skipping invalid library counter %s: %s", row["counter_id"], exc)
        return items

    async def upsert_library_item(self, item: CustomCounterDefinition) -> None:
        loop = asyncio.get_running_loop()

        def _sync() -> None:
            conn = self._get_connection()
            try:
                conn.execute(
                    """
                    INSERT INTO counter_library (counter_id, definition)
                    VALUES (?, ?)
                    ON CONFLICT(counter_id) DO UPDATE SET
                        definition = excluded.definition,
                        last_updated = CURRENT_TIMESTAMP
                    """,
                    (item.counter_id, json.dumps(item.to_dict())),
                )
                conn.commit()
            finally:
                conn.close()

        await loop.run_in_executor(None, _sync)

    # ══════════════════════════════════════════════════════════
    #  Broadcaster settings
    # ══════════════════════════════════════════════════════════

    async def get_settings_data(self, broadcaster_id: str) -> dict[str, Any]:
        """Raw stored settings (empty dict if none)."""
        loop = asyncio.get_running_loop()

        def _sync() -> dict[str, Any]:
            conn = self._get_connection()
            try:
                row = conn.execute(
                    "SELECT settings FROM broadcaster_settings WHERE broadcaster_id = ?",
                    (broadcaster_id,),
                ).fetchone()
            finally:
                conn.close()
            if row is None:
                return {}
            return json.loads(row["settings"] or "{}")

        return await loop.run_in_executor(None, _sync)

    async def update_settings_data(self, broadcaster_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        """Merge *changes* into the stored settings and return the result."""
        loop = asyncio.get_running_loop()

        def _sync() -> dict[str, Any]:
            conn = self._get_connection()
            try:
                row = conn.execute(
                    "SELECT settings FROM broadcaster_settings WHERE broadcaster_id = ?",
                    (broadcaster_id,),
                ).fetchone()
                current = json.loads(row["settings"] or "{}") if row else {}
                current.update(changes)
                conn.execute(
                    """
                    INSERT INTO broadcaster_settings (broadcaster_id, settings, updated_at)
                    VALUES (?, ?, CURRENT_TIMESTAMP)
                    ON CONFLICT(broadcaster_id) DO UPDATE SET
                        settings = excluded.settings,
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    (broadcaster_id, json.dumps(current, sort_keys=True)),
                )
                conn.commit()
                return current
            finally:
                conn.close()

        return await loop.run_in_executor(None, _sync)
