"""
PostgreSQL config store.

All entity types share one table of flat JSONB documents keyed by
``(entity_type, record_key)``; no migration machinery is involved.
"""

import json
from typing import Any, Dict, List, Optional

import asyncpg

from shared.errors import StoreUnavailableError
from shared.logging import get_logger

from ..models import EntityType
from .base import ConfigStore, StoreKey, encode_key


class PostgresConfigStore(ConfigStore):
    """asyncpg-backed config store."""

    def __init__(self, dsn: str, command_timeout: float = 5.0):
        self.dsn = dsn
        self.command_timeout = command_timeout
        self.logger = get_logger("edge.store.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Start the persistence layer."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=2,
                max_size=10,
                command_timeout=self.command_timeout
            )
            await self._create_tables()
            self.logger.info("PostgreSQL config store started")

        except Exception as e:
            self.logger.error("Failed to start PostgreSQL config store", error=str(e))
            raise StoreUnavailableError("start", details={"error": str(e)})

    async def stop(self):
        if self.pool:
            await self.pool.close()
            self.logger.info("PostgreSQL config store stopped")

    async def _create_tables(self):
        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS config_records (
                    entity_type VARCHAR(32) NOT NULL,
                    record_key TEXT NOT NULL,
                    document JSONB NOT NULL,
                    updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    PRIMARY KEY (entity_type, record_key)
                );
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_config_records_document
                ON config_records USING GIN (document jsonb_path_ops);
            """)

    async def get(self, entity_type: EntityType, key: StoreKey) -> Optional[Dict[str, Any]]:
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    "SELECT document FROM config_records WHERE entity_type = $1 AND record_key = $2",
                    entity_type.value, encode_key(entity_type, key)
                )
        except Exception as e:
            self.logger.error("Error loading record", entity_type=entity_type.value, error=str(e))
            raise StoreUnavailableError("get", details={"entity_type": entity_type.value})

        if row is None:
            return None
        return json.loads(row["document"])

    async def put(self, entity_type: EntityType, key: StoreKey, record: Dict[str, Any]) -> None:
        try:
            async with self.pool.acquire() as conn:
                await conn.execute("""
                    INSERT INTO config_records (entity_type, record_key, document, updated_at)
                    VALUES ($1, $2, $3::jsonb, NOW())
                    ON CONFLICT (entity_type, record_key) DO UPDATE SET
                        document = EXCLUDED.document,
                        updated_at = EXCLUDED.updated_at
                """, entity_type.value, encode_key(entity_type, key), json.dumps(record))
        except Exception as e:
            self.logger.error("Error saving record", entity_type=entity_type.value, error=str(e))
            raise StoreUnavailableError("put", details={"entity_type": entity_type.value})

    async def delete(self, entity_type: EntityType, key: StoreKey) -> None:
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(
                    "DELETE FROM config_records WHERE entity_type = $1 AND record_key = $2",
                    entity_type.value, encode_key(entity_type, key)
                )
        except Exception as e:
            self.logger.error("Error deleting record", entity_type=entity_type.value, error=str(e))
            raise StoreUnavailableError("delete", details={"entity_type": entity_type.value})

    async def query(self, entity_type: EntityType, predicate: Dict[str, Any]) -> List[Dict[str, Any]]:
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(
                    "SELECT document FROM config_records WHERE entity_type = $1 AND document @> $2::jsonb",
                    entity_type.value, json.dumps(predicate)
                )
        except Exception as e:
            self.logger.error("Error querying records", entity_type=entity_type.value, error=str(e))
            raise StoreUnavailableError("query", details={"entity_type": entity_type.value})

        return [json.loads(row["document"]) for row in rows]

    async def health_check(self) -> bool:
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            return True
        except Exception:
            return False
