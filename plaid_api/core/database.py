"""
Database Handle Module

This module provides the two database transports behind one interface.

Transports:
    - PooledDatabase: asyncpg connection pool over persistent TCP sockets.
      Bounded size, closed explicitly on shutdown (Closeable).
    - StatelessDatabase: SQL-over-HTTP, one short-lived httpx client per
      call. No pool and nothing to close.

The transport is picked once per fingerprint from the runtime capability
flag, never from probing the host at call time.

Usage:
    spec = DatabaseSpec.from_config(config.database, config.runtime)
    db = await build_database(spec)
    rows = await db.fetch("SELECT id, name FROM habits WHERE user_id = $1", user_id)
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List
from urllib.parse import urlparse

import asyncpg
import httpx

from .config import DatabaseConfig, RuntimeConfig


logger = logging.getLogger(__name__)


POOL_CLOSE_TIMEOUT = 10.0


class Closeable(ABC):
    """
    Capability marker for handles that own releasable resources.

    Caches check membership (isinstance against this class) before
    closing a handle they evict.
    """

    @abstractmethod
    async def aclose(self) -> None:
        """Release the underlying resources."""


@dataclass(frozen=True)
class DatabaseSpec:
    """
    Every input that decides how a database handle is built.

    Attributes:
        url: Connection string (carries the credential)
        persistent_sockets: Host capability flag, selects the transport
        pool_min_size: Minimum pooled connections
        pool_max_size: Maximum pooled connections
        http_timeout_sec: Stateless transport timeout
    """
    url: str
    persistent_sockets: bool
    pool_min_size: int = 1
    pool_max_size: int = 10
    http_timeout_sec: float = 10.0

    @classmethod
    def from_config(cls, database: DatabaseConfig, runtime: RuntimeConfig) -> "DatabaseSpec":
        return cls(
            url=database.url,
            persistent_sockets=bool(runtime.supports_persistent_sockets),
            pool_min_size=database.pool_min_size,
            pool_max_size=database.pool_max_size,
            http_timeout_sec=database.http_timeout_sec,
        )

    @property
    def label(self) -> str:
        """Secret-free description for logs: host/dbname and transport."""
        parsed = urlparse(self.url)
        transport = "pool" if self.persistent_sockets else "http"
        return f"{parsed.hostname or '?'}{parsed.path or ''} ({transport})"


class Database(ABC):
    """Query interface shared by both transports."""

    transport: str = ""

    @abstractmethod
    async def fetch(self, query: str, *args: Any) -> List[Dict[str, Any]]:
        """Run a query and return rows as dicts."""

    @abstractmethod
    async def execute(self, query: str, *args: Any) -> str:
        """Run a statement and return its command status."""


class PooledDatabase(Database, Closeable):
    """
    asyncpg pool over persistent sockets.

    Attributes:
        pool: The asyncpg pool
    """

    transport = "pool"

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    @classmethod
    async def connect(cls, spec: DatabaseSpec) -> "PooledDatabase":
        pool = await asyncpg.create_pool(
            spec.url,
            min_size=spec.pool_min_size,
            max_size=spec.pool_max_size,
        )
        logger.info(
            f"Database pool created: {spec.label} "
            f"(min={spec.pool_min_size}, max={spec.pool_max_size})"
        )
        return cls(pool)

    async def fetch(self, query: str, *args: Any) -> List[Dict[str, Any]]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(query, *args)
        return [dict(row) for row in rows]

    async def execute(self, query: str, *args: Any) -> str:
        async with self.pool.acquire() as conn:
            return await conn.execute(query, *args)

    async def aclose(self) -> None:
        """Close the pool, terminating connections that do not close in time."""
        try:
            await self.pool.close()
        except Exception:
            self.pool.terminate()
            raise
        logger.info("Database pool closed")


class StatelessDatabase(Database):
    """
    SQL-over-HTTP transport for hosts without persistent sockets.

    Each call opens and closes its own httpx client, so there is nothing
    to keep alive between invocations and nothing to close.
    """

    transport = "http"

    def __init__(self, spec: DatabaseSpec, transport: httpx.AsyncBaseTransport = None):
        self._url = spec.url
        self._timeout = spec.http_timeout_sec
        self._endpoint = f"https://{urlparse(spec.url).hostname}/sql"
        self._transport = transport

    async def _query(self, query: str, args: tuple) -> Dict[str, Any]:
        async with httpx.AsyncClient(
            timeout=self._timeout,
            transport=self._transport
        ) as client:
            response = await client.post(
                self._endpoint,
                json={"query": query, "params": list(args)},
                headers={"Neon-Connection-String": self._url},
            )
            response.raise_for_status()
            return response.json()

    async def fetch(self, query: str, *args: Any) -> List[Dict[str, Any]]:
        result = await self._query(query, args)
        return list(result.get("rows", []))

    async def execute(self, query: str, *args: Any) -> str:
        result = await self._query(query, args)
        return f"{result.get('command', '')} {result.get('rowCount', 0)}".strip()


async def build_database(spec: DatabaseSpec) -> Database:
    """Build the handle for a spec: pooled if sockets persist, else stateless."""
    if not spec.url:
        raise ValueError("database url is not configured (set DATABASE_URL)")

    if spec.persistent_sockets:
        return await PooledDatabase.connect(spec)

    logger.info(f"Database stateless client ready: {spec.label}")
    return StatelessDatabase(spec)
