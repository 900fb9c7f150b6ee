"""
PostgreSQL Client

Async PostgreSQL client on an asyncpg connection pool, with service discovery
integration and a consistent database access pattern for repositories.

Usage:
    from core.postgres_client import get_postgres_client

    # Get client instance
    db = await get_postgres_client("ad_campaign_service")

    # Execute queries
    async with db:
        rows = await db.query("SELECT * FROM ad_campaign.campaigns WHERE owner_id = $1", [owner_id])
"""

import json
import logging
import os
from contextlib import asynccontextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

import asyncpg

logger = logging.getLogger(__name__)


class ExtendedJSONEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal and datetime types"""
    def default(self, obj):
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        return super().default(obj)


def json_dumps(obj) -> str:
    """JSON dumps with Decimal and datetime support"""
    return json.dumps(obj, cls=ExtendedJSONEncoder)


async def _init_connection(conn: asyncpg.Connection):
    # Decode json/jsonb columns into Python objects
    for type_name in ("json", "jsonb"):
        await conn.set_type_codec(
            type_name,
            encoder=json_dumps,
            decoder=json.loads,
            schema="pg_catalog",
        )


def _affected_rows(status: str) -> int:
    """Parse the row count out of a command tag such as 'UPDATE 3'"""
    try:
        return int(status.split()[-1])
    except (AttributeError, IndexError, ValueError):
        return 0


class PostgresTransaction:
    """Statement methods bound to one connection inside an open transaction"""

    def __init__(self, conn: asyncpg.Connection):
        self.conn = conn

    async def query(self, sql: str, params: Optional[List[Any]] = None) -> List[Dict[str, Any]]:
        rows = await self.conn.fetch(sql, *(params or []))
        return [dict(row) for row in rows]

    async def execute(self, sql: str, params: Optional[List[Any]] = None) -> int:
        status = await self.conn.execute(sql, *(params or []))
        return _affected_rows(status)

    async def execute_many(self, sql: str, params_list: List[List[Any]]) -> bool:
        await self.conn.executemany(sql, params_list)
        return True


class AsyncPostgresClient:
    """
    Async PostgreSQL client backed by an asyncpg pool.

    The pool is created lazily on first use (``async with client:``) and kept
    open until ``close()``; entering the context again reuses it.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 5432,
        database: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        user_id: Optional[str] = None,
        min_size: int = 1,
        max_size: int = 10,
    ):
        self.host = host
        self.port = port
        self.database = database or os.getenv("POSTGRES_DB", "postgres")
        self.username = username or os.getenv("POSTGRES_USER", "postgres")
        self.password = password or os.getenv("POSTGRES_PASSWORD", "")
        self.user_id = user_id
        self.min_size = min_size
        self.max_size = max_size
        self._pool: Optional[asyncpg.Pool] = None

    async def connect(self):
        """Create the connection pool if it does not exist yet"""
        if self._pool is None:
            self._pool = await asyncpg.create_pool(
                host=self.host,
                port=self.port,
                database=self.database,
                user=self.username,
                password=self.password,
                min_size=self.min_size,
                max_size=self.max_size,
                init=_init_connection,
                server_settings={"application_name": self.user_id or "isa_service"},
            )
            logger.info(f"PostgreSQL pool created: {self.host}:{self.port}/{self.database}")
        return self._pool

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        # Pool stays open across context blocks
        return False

    async def query(self, sql: str, params: Optional[List[Any]] = None) -> List[Dict[str, Any]]:
        """Execute query and return all rows as dicts"""
        pool = await self.connect()
        rows = await pool.fetch(sql, *(params or []))
        return [dict(row) for row in rows]

    async def query_row(self, sql: str, params: Optional[List[Any]] = None) -> Optional[Dict[str, Any]]:
        """Execute query and return a single row"""
        pool = await self.connect()
        row = await pool.fetchrow(sql, *(params or []))
        return dict(row) if row is not None else None

    async def execute(self, sql: str, params: Optional[List[Any]] = None) -> int:
        """Execute SQL statement and return the number of affected rows"""
        pool = await self.connect()
        status = await pool.execute(sql, *(params or []))
        return _affected_rows(status)

    async def execute_many(self, sql: str, params_list: List[List[Any]]) -> bool:
        """Execute SQL statement with multiple parameter sets"""
        pool = await self.connect()
        await pool.executemany(sql, params_list)
        return True

    @asynccontextmanager
    async def transaction(self):
        """
        Run several statements atomically.

        Commits when the block exits normally and rolls back when it raises.

        Usage:
            async with db.transaction() as tx:
                await tx.execute("DELETE FROM ...")
                await tx.execute_many("INSERT INTO ...", rows)
        """
        pool = await self.connect()
        async with pool.acquire() as conn:
            async with conn.transaction():
                yield PostgresTransaction(conn)

    async def health_check(self) -> Dict[str, Any]:
        """Check database health"""
        try:
            pool = await self.connect()
            value = await pool.fetchval("SELECT 1")
            return {"healthy": value == 1}
        except Exception as e:
            logger.error(f"PostgreSQL health check failed: {e}")
            return {"healthy": False, "error": str(e)}

    async def close(self):
        """Close the pool"""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            logger.info(f"PostgreSQL pool closed: {self.host}:{self.port}/{self.database}")


# Singleton instances per service
_postgres_clients: Dict[str, AsyncPostgresClient] = {}


async def get_postgres_client(
    service_name: str,
    host: Optional[str] = None,
    port: Optional[int] = None,
    database: Optional[str] = None,
    **kwargs,
) -> AsyncPostgresClient:
    """
    Get or create PostgreSQL client for a service.

    Host and port default to service discovery (environment, then defaults).
    """
    if service_name not in _postgres_clients:
        from core.config_manager import ConfigManager

        config = ConfigManager(service_name)
        discovered_host, discovered_port = config.discover_service(
            service_name="postgres_service",
            default_host="localhost",
            default_port=5432,
            env_host_key="POSTGRES_HOST",
            env_port_key="POSTGRES_PORT",
        )
        _postgres_clients[service_name] = AsyncPostgresClient(
            host=host or discovered_host,
            port=port or discovered_port,
            database=database,
            user_id=service_name,
            **kwargs,
        )

    return _postgres_clients[service_name]
