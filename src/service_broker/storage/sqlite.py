"""Persistent record storage using SQLite.

Architecture:
    - One database file (default ~/.service-broker/state.db, see config)
    - WAL mode so several broker processes can share the file
    - Records stored as JSON documents next to the columns used for lookups
    - Blocking sqlite3 calls run in the default thread pool executor

Tables:
    instances(id, version, data, updated_at)
    bindings(instance_id, binding_id, data)
    provision_requests(instance_id, data)

The instance version check and update happen in one UPDATE statement
(``WHERE id = ? AND version = ?``), so the optimistic guard also holds
between processes.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

from ..config import get_db_path
from ..exceptions import ConcurrentModificationError, RecordNotFoundError
from ..models import ProvisionRequestDetails, ServiceBindingCredentials, ServiceInstanceDetails
from .base import RecordStore, next_version

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SqliteRecordStore(RecordStore):
    """SQLite-backed record store.

    Example:
        store = SqliteRecordStore(tmp_path / "state.db")
        await store.init()
        saved = await store.save_instance(ServiceInstanceDetails(id="abc"))
        loaded = await store.get_instance("abc")
    """

    def __init__(self, db_path: Path | str | None = None) -> None:
        self._db_path = Path(db_path) if db_path is not None else get_db_path()

    async def init(self) -> None:
        """Create tables if they don't exist. Must be called before use."""
        await self._run_in_executor(self._init_db)
        logger.info(f"SqliteRecordStore initialized: db={self._db_path}")

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self._db_path)

    def _init_db(self) -> None:
        conn = self._connect()
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            conn.execute("""
                CREATE TABLE IF NOT EXISTS instances (
                    id TEXT PRIMARY KEY,
                    version INTEGER NOT NULL,
                    data TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS bindings (
                    instance_id TEXT NOT NULL,
                    binding_id TEXT NOT NULL,
                    data TEXT NOT NULL,
                    PRIMARY KEY (instance_id, binding_id)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS provision_requests (
                    instance_id TEXT PRIMARY KEY,
                    data TEXT NOT NULL
                )
            """)
            conn.commit()
        finally:
            conn.close()
        logger.debug("Database schema initialized with WAL mode")

    async def get_instance(self, instance_id: str) -> ServiceInstanceDetails:
        def _read() -> str | None:
            conn = self._connect()
            try:
                row = conn.execute(
                    "SELECT data FROM instances WHERE id = ?", (instance_id,)
                ).fetchone()
            finally:
                conn.close()
            return row[0] if row else None

        data = await self._run_in_executor(_read)
        if data is None:
            raise RecordNotFoundError("Service instance", instance_id)
        return ServiceInstanceDetails.model_validate_json(data)

    async def instance_exists(self, instance_id: str) -> bool:
        def _read() -> bool:
            conn = self._connect()
            try:
                row = conn.execute(
                    "SELECT 1 FROM instances WHERE id = ?", (instance_id,)
                ).fetchone()
            finally:
                conn.close()
            return row is not None

        return await self._run_in_executor(_read)

    async def save_instance(self, instance: ServiceInstanceDetails) -> ServiceInstanceDetails:
        def _write() -> ServiceInstanceDetails:
            conn = self._connect()
            try:
                row = conn.execute(
                    "SELECT version FROM instances WHERE id = ?", (instance.id,)
                ).fetchone()
                stored = next_version(instance, row[0] if row else None)
                data = stored.model_dump_json()
                if row is None:
                    try:
                        conn.execute(
                            "INSERT INTO instances VALUES (?, ?, ?, ?)",
                            (stored.id, stored.version, data, stored.updated_at.isoformat()),
                        )
                    except sqlite3.IntegrityError as e:
                        raise ConcurrentModificationError(
                            instance.id, instance.version, None
                        ) from e
                else:
                    cursor = conn.execute(
                        "UPDATE instances SET version = ?, data = ?, updated_at = ? "
                        "WHERE id = ? AND version = ?",
                        (
                            stored.version,
                            data,
                            stored.updated_at.isoformat(),
                            stored.id,
                            instance.version,
                        ),
                    )
                    if cursor.rowcount != 1:
                        raise ConcurrentModificationError(instance.id, instance.version, None)
                conn.commit()
            finally:
                conn.close()
            return stored

        return await self._run_in_executor(_write)

    async def delete_instance(self, instance_id: str) -> None:
        def _delete() -> int:
            conn = self._connect()
            try:
                cursor = conn.execute("DELETE FROM instances WHERE id = ?", (instance_id,))
                conn.execute("DELETE FROM provision_requests WHERE instance_id = ?", (instance_id,))
                conn.commit()
            finally:
                conn.close()
            return cursor.rowcount

        if await self._run_in_executor(_delete) == 0:
            raise RecordNotFoundError("Service instance", instance_id)

    async def get_binding(self, instance_id: str, binding_id: str) -> ServiceBindingCredentials:
        def _read() -> str | None:
            conn = self._connect()
            try:
                row = conn.execute(
                    "SELECT data FROM bindings WHERE instance_id = ? AND binding_id = ?",
                    (instance_id, binding_id),
                ).fetchone()
            finally:
                conn.close()
            return row[0] if row else None

        data = await self._run_in_executor(_read)
        if data is None:
            raise RecordNotFoundError("Binding", binding_id)
        return ServiceBindingCredentials.model_validate_json(data)

    async def binding_exists(self, instance_id: str, binding_id: str) -> bool:
        try:
            await self.get_binding(instance_id, binding_id)
        except RecordNotFoundError:
            return False
        return True

    async def save_binding(self, binding: ServiceBindingCredentials) -> None:
        def _write() -> None:
            conn = self._connect()
            try:
                conn.execute(
                    "INSERT OR REPLACE INTO bindings VALUES (?, ?, ?)",
                    (binding.service_instance_id, binding.binding_id, binding.model_dump_json()),
                )
                conn.commit()
            finally:
                conn.close()

        await self._run_in_executor(_write)

    async def delete_binding(self, instance_id: str, binding_id: str) -> None:
        def _delete() -> int:
            conn = self._connect()
            try:
                cursor = conn.execute(
                    "DELETE FROM bindings WHERE instance_id = ? AND binding_id = ?",
                    (instance_id, binding_id),
                )
                conn.commit()
            finally:
                conn.close()
            return cursor.rowcount

        if await self._run_in_executor(_delete) == 0:
            raise RecordNotFoundError("Binding", binding_id)

    async def list_bindings(self, instance_id: str) -> list[ServiceBindingCredentials]:
        def _read() -> list[str]:
            conn = self._connect()
            try:
                rows = conn.execute(
                    "SELECT data FROM bindings WHERE instance_id = ? ORDER BY binding_id",
                    (instance_id,),
                ).fetchall()
            finally:
                conn.close()
            return [row[0] for row in rows]

        return [
            ServiceBindingCredentials.model_validate_json(data)
            for data in await self._run_in_executor(_read)
        ]

    async def save_provision_request(self, details: ProvisionRequestDetails) -> None:
        def _write() -> None:
            conn = self._connect()
            try:
                conn.execute(
                    "INSERT OR REPLACE INTO provision_requests VALUES (?, ?)",
                    (details.service_instance_id, details.model_dump_json()),
                )
                conn.commit()
            finally:
                conn.close()

        await self._run_in_executor(_write)

    async def get_provision_request(self, instance_id: str) -> ProvisionRequestDetails:
        def _read() -> str | None:
            conn = self._connect()
            try:
                row = conn.execute(
                    "SELECT data FROM provision_requests WHERE instance_id = ?", (instance_id,)
                ).fetchone()
            finally:
                conn.close()
            return row[0] if row else None

        data = await self._run_in_executor(_read)
        if data is None:
            raise RecordNotFoundError("Provision request", instance_id)
        return ProvisionRequestDetails.model_validate_json(data)

    async def _run_in_executor(self, func: Callable[[], T]) -> T:
        """Run a blocking function in the thread pool executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func)


__all__ = ["SqliteRecordStore"]
