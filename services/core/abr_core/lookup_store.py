"""
Read-only lookup of dataset records by name prefix.

This module provides:
- LookupStore: the interface every Finder queries
- AsyncpgLookupStore: PostgreSQL-backed store over the lookup_records table
- MemoryLookupStore: in-process store for small datasets and tests

A record matches a pattern when its key is a prefix of the pattern and its
scope contains every requested scope entry. Candidates are returned longest
key first, ties broken by ascending identifier.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Dict, Iterable, List, Mapping, Optional, Set

import asyncpg
from pydantic import ValidationError

from abr_core.errors import StoreFailure
from abr_core.models import LookupLevel, LookupRecord

logger = logging.getLogger(__name__)


FIND_BY_PATTERN_SQL = """
    SELECT level, key, name, identifier, lg_code, lat, lon, scope, attributes
    FROM lookup_records
    WHERE level = $1
      AND scope @> $2::jsonb
      AND key = ANY($3::text[])
    ORDER BY char_length(key) DESC, identifier ASC
    LIMIT $4
"""

SCOPE_VALUES_SQL = """
    SELECT DISTINCT scope->>$2 AS value
    FROM lookup_records
    WHERE level = $1
      AND key = ANY($3::text[])
"""


def _candidate_order(record: LookupRecord) -> tuple[int, str]:
    return -len(record.key), record.identifier


def key_prefixes(pattern: str) -> List[str]:
    """Every non-empty prefix of ``pattern``, longest first."""
    return [pattern[:end] for end in range(len(pattern), 0, -1)]


class LookupStore(ABC):
    """Query interface shared by every store implementation."""

    @abstractmethod
    async def find_by_pattern(
        self,
        level: LookupLevel,
        scope: Mapping[str, str],
        pattern: str,
    ) -> List[LookupRecord]:
        """
        Return the records of ``level`` whose key is a prefix of ``pattern``.

        Args:
            level: Administrative granularity to search
            scope: Parent keys every candidate must carry (may be empty)
            pattern: Wildcard-expanded text to match from its start

        Returns:
            Candidates ordered longest key first, then by identifier.
            An empty list when nothing matches.

        Raises:
            StoreFailure: The backing store is unreachable or returned a
                malformed row
        """

    @abstractmethod
    async def scope_values(
        self,
        level: LookupLevel,
        scope_name: str,
        pattern: str,
    ) -> Set[Optional[str]]:
        """
        Distinct ``scope[scope_name]`` values over every record of ``level``
        whose key is a prefix of ``pattern``.

        Not subject to the candidate limit. A record without the scope entry
        contributes None.
        """


class AsyncpgLookupStore(LookupStore):
    """
    Lookup store backed by the ``lookup_records`` table.

    Example:
        ```python
        pool = await get_db_pool(settings)
        store = AsyncpgLookupStore(pool, limit=settings.LOOKUP_CANDIDATE_LIMIT)
        records = await store.find_by_pattern(LookupLevel.PREFECTURE, {}, "東京都千代田区")
        ```
    """

    def __init__(self, pool: asyncpg.Pool, limit: int = 10):
        self.pool = pool
        self.limit = limit

    async def find_by_pattern(
        self,
        level: LookupLevel,
        scope: Mapping[str, str],
        pattern: str,
    ) -> List[LookupRecord]:
        if not pattern:
            return []

        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(
                    FIND_BY_PATTERN_SQL,
                    level.value,
                    dict(scope),
                    key_prefixes(pattern),
                    self.limit,
                )
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError) as e:
            logger.error(f"Lookup failed for level={level.value}: {e}")
            raise StoreFailure(f"Lookup store query failed: {e}") from e

        try:
            return [LookupRecord.model_validate(dict(row)) for row in rows]
        except ValidationError as e:
            raise StoreFailure(f"Malformed {level.value} record in lookup store: {e}") from e

    async def scope_values(
        self,
        level: LookupLevel,
        scope_name: str,
        pattern: str,
    ) -> Set[Optional[str]]:
        if not pattern:
            return set()

        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(
                    SCOPE_VALUES_SQL,
                    level.value,
                    scope_name,
                    key_prefixes(pattern),
                )
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError) as e:
            logger.error(f"Scope lookup failed for level={level.value}: {e}")
            raise StoreFailure(f"Lookup store query failed: {e}") from e

        return {row["value"] for row in rows}


class MemoryLookupStore(LookupStore):
    """
    Lookup store over an in-memory list of records.

    Same matching and ordering rules as the database store.
    """

    def __init__(self, records: Iterable[LookupRecord], limit: Optional[int] = None):
        self.limit = limit
        self._by_level: Dict[LookupLevel, List[LookupRecord]] = defaultdict(list)
        for record in records:
            self._by_level[record.level].append(record)

    def __len__(self) -> int:
        return sum(len(records) for records in self._by_level.values())

    async def find_by_pattern(
        self,
        level: LookupLevel,
        scope: Mapping[str, str],
        pattern: str,
    ) -> List[LookupRecord]:
        if not pattern:
            return []

        candidates = [
            record
            for record in self._by_level.get(level, [])
            if pattern.startswith(record.key)
            and all(record.scope.get(name) == value for name, value in scope.items())
        ]
        candidates.sort(key=_candidate_order)
        return candidates[:self.limit] if self.limit else candidates

    async def scope_values(
        self,
        level: LookupLevel,
        scope_name: str,
        pattern: str,
    ) -> Set[Optional[str]]:
        if not pattern:
            return set()
        return {
            record.scope.get(scope_name)
            for record in self._by_level.get(level, [])
            if pattern.startswith(record.key)
        }


__all__ = [
    "LookupStore",
    "AsyncpgLookupStore",
    "MemoryLookupStore",
    "FIND_BY_PATTERN_SQL",
    "SCOPE_VALUES_SQL",
    "key_prefixes",
]
