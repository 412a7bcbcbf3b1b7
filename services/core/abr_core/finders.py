"""
Level-specific finders.

Each finder turns the unmatched tail of a Query into one or more lookup
patterns, queries the store within the parent keys already resolved on the
Query, and copies the winning record onto a new Query.

Finders:
- PrefectureFinder: 東京都 / 山形県 ... (falls back to a unique city match)
- CityFinder: 千代田区 / 山形市 ...
- TownFinder: 紀尾井町 / 旅篭町二丁目 ...
- BlockFinder: residential-display block number
- ResidentialFinder: residence number (and sub-number)
- ParcelFinder: parcel number for towns without residential display
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from abr_core.errors import ContractViolation, StoreFailure
from abr_core.lookup_store import LookupStore
from abr_core.models import LookupLevel, LookupRecord, MatchLevel, Query
from abr_core.normalizer import (
    SEPARATOR,
    chome_variant,
    expand_wildcards,
    normalize_numerals,
    split_numeric_head,
)

logger = logging.getLogger(__name__)


TOWN_FIELDS = ("prefecture", "city", "lg_code", "town", "town_id")


class Finder(ABC):
    """
    Resolve one administrative level of a Query.

    Subclasses set ``name``, ``level`` (the MatchLevel reached on a match) and
    ``requires`` (fields that must be resolved before ``find`` is called).
    """

    name: str = "finder"
    level: MatchLevel = MatchLevel.UNKNOWN
    requires: Tuple[str, ...] = ()

    def __init__(self, store: LookupStore):
        self.store = store

    def check(self, query: Query) -> None:
        missing = query.missing(*self.requires)
        if missing:
            raise ContractViolation(self.name, missing)

    async def find(self, query: Query) -> Query:
        """
        Return a new Query advanced by this level, or ``query`` itself on no match.

        Raises:
            ContractViolation: A required parent field is unresolved
            StoreFailure: The lookup store failed
        """
        self.check(query)
        return await self._find(query)

    @abstractmethod
    async def _find(self, query: Query) -> Query:
        ...

    async def _first_match(
        self,
        level: LookupLevel,
        scope: Dict[str, str],
        texts: Sequence[str],
    ) -> Optional[Tuple[LookupRecord, str]]:
        """
        Query the store once per alternative text and pick one winner.

        Only the first candidate of each query counts. Across alternatives the
        longest key wins, then the earlier alternative, then the lower
        identifier. Returns the record and the text it matched.
        """
        best = None
        for priority, text in enumerate(texts):
            candidates = await self.store.find_by_pattern(level, scope, expand_wildcards(text))
            if not candidates:
                continue
            record = candidates[0]
            rank = (-len(record.key), priority, record.identifier)
            if best is None or rank < best[0]:
                best = (rank, record, text)

        if best is None:
            return None
        return best[1], best[2]

    def _advance(self, query: Query, record: LookupRecord, **fields: Any) -> Query:
        """Copy ``fields`` and the record position onto a new Query at this level."""
        if record.lat is not None:
            fields["lat"] = record.lat
        if record.lon is not None:
            fields["lon"] = record.lon
        fields.setdefault("match_level", max(query.match_level, self.level))

        try:
            return query.copy_with(**fields)
        except ValidationError as e:
            raise StoreFailure(
                f"{self.name}: record {record.identifier} cannot be applied: {e}"
            ) from e


class PrefectureFinder(Finder):
    name = "prefecture"
    level = MatchLevel.PREFECTURE

    async def _find(self, query: Query) -> Query:
        tail = normalize_numerals(query.temp_address).lstrip()

        match = await self._first_match(LookupLevel.PREFECTURE, {}, [tail])
        if match:
            record, text = match
            return self._advance(
                query,
                record,
                prefecture=record.name,
                temp_address=text[len(record.key):],
            )

        # Addresses often omit the prefecture; accept it when the leading
        # city name exists in exactly one prefecture.
        prefectures = await self.store.scope_values(
            LookupLevel.CITY, "prefecture", expand_wildcards(tail)
        )
        if len(prefectures) != 1 or None in prefectures:
            return query

        return query.copy_with(
            prefecture=prefectures.pop(),
            temp_address=tail,
            match_level=max(query.match_level, self.level),
        )


class CityFinder(Finder):
    name = "city"
    level = MatchLevel.ADMINISTRATIVE_AREA
    requires = ("prefecture",)

    async def _find(self, query: Query) -> Query:
        tail = normalize_numerals(query.temp_address).lstrip()
        scope = {"prefecture": query.prefecture.value}

        match = await self._first_match(LookupLevel.CITY, scope, [tail])
        if not match:
            return query

        record, text = match
        return self._advance(
            query,
            record,
            city=record.name,
            lg_code=record.lg_code,
            temp_address=text[len(record.key):],
        )


class TownFinder(Finder):
    """
    Match the oaza/town name, including chome and koaza.

    An already resolved town is put back in front of the tail, so a more
    specific town row (宮西町 -> 宮西町二丁目) can replace it. Every matched
    town row is a machiaza, with or without chome.
    """

    name = "town"
    level = MatchLevel.MACHIAZA
    requires = ("prefecture", "city", "lg_code")

    async def _find(self, query: Query) -> Query:
        text = normalize_numerals(query.temp_address).lstrip()
        if query.town:
            text = query.town + text

        texts = [text]
        variant = chome_variant(text)
        if variant:
            texts.append(variant)

        match = await self._first_match(LookupLevel.TOWN, {"lg_code": query.lg_code}, texts)
        if not match:
            return query

        record, matched = match
        return self._advance(
            query,
            record,
            town=record.name,
            town_id=record.identifier,
            lg_code=record.lg_code or query.lg_code,
            rsdt_addr_flg=record.attribute("rsdt_addr_flg"),
            temp_address=matched[len(record.key):],
        )


class NumberFinder(Finder):
    """
    Match the leading run of numbers in the tail ("1@3@5 ビル名").

    Keys end with the separator, so "3@" never matches the head of "30@1".
    """

    lookup_level: LookupLevel

    def scope(self, query: Query) -> Dict[str, str]:
        return {"lg_code": query.lg_code, "town_id": query.town_id}

    @abstractmethod
    def fields(self, record: LookupRecord) -> Dict[str, Any]:
        ...

    async def _find(self, query: Query) -> Query:
        head, rest = split_numeric_head(normalize_numerals(query.temp_address))
        if not head:
            return query

        text = head + SEPARATOR
        match = await self._first_match(self.lookup_level, self.scope(query), [text])
        if not match:
            return query

        record, _ = match
        remainder = text[len(record.key):]
        if remainder.endswith(SEPARATOR):
            remainder = remainder[:-len(SEPARATOR)]

        return self._advance(
            query,
            record,
            temp_address=remainder + rest,
            **self.fields(record),
        )


class BlockFinder(NumberFinder):
    name = "block"
    level = MatchLevel.RESIDENTIAL_BLOCK
    requires = TOWN_FIELDS
    lookup_level = LookupLevel.BLOCK

    def fields(self, record: LookupRecord) -> Dict[str, Any]:
        return {"block": record.name, "block_id": record.identifier}


class ResidentialFinder(NumberFinder):
    name = "residential"
    level = MatchLevel.RESIDENTIAL_DETAIL
    requires = TOWN_FIELDS + ("block", "block_id")
    lookup_level = LookupLevel.RESIDENTIAL

    def scope(self, query: Query) -> Dict[str, str]:
        return {
            "lg_code": query.lg_code,
            "town_id": query.town_id,
            "block_id": query.block_id,
        }

    def fields(self, record: LookupRecord) -> Dict[str, Any]:
        return {
            "rsdt_num": record.attribute("rsdt_num"),
            "rsdt_id": record.attribute("rsdt_id"),
            "rsdt_num2": record.attribute("rsdt_num2"),
            "rsdt2_id": record.attribute("rsdt2_id"),
        }


class ParcelFinder(NumberFinder):
    name = "parcel"
    level = MatchLevel.PARCEL
    requires = TOWN_FIELDS
    lookup_level = LookupLevel.PARCEL

    def fields(self, record: LookupRecord) -> Dict[str, Any]:
        return {
            "prc_num1": record.attribute("prc_num1"),
            "prc_num2": record.attribute("prc_num2"),
            "prc_num3": record.attribute("prc_num3"),
            "prc_id": record.identifier,
        }


def default_finders(store: LookupStore) -> List[Finder]:
    """One finder per level, in matching order."""
    return [
        PrefectureFinder(store),
        CityFinder(store),
        TownFinder(store),
        BlockFinder(store),
        ResidentialFinder(store),
        ParcelFinder(store),
    ]


__all__ = [
    "Finder",
    "PrefectureFinder",
    "CityFinder",
    "TownFinder",
    "NumberFinder",
    "BlockFinder",
    "ResidentialFinder",
    "ParcelFinder",
    "TOWN_FIELDS",
    "default_finders",
]
