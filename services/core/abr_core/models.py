"""
Pydantic models for the address matching core.

This module contains:
- MatchLevel: ordered confidence tiers reached by a query
- PrefectureName: the 47 prefectures
- LookupLevel: administrative granularity of a lookup store record
- Query: immutable match-state threaded through the pipeline
- LookupRecord: read-only projection of one dataset row
"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class MatchLevel(Enum):
    """
    Confidence tier reached while matching an address.

    Members are totally ordered in declaration order, so
    ``MatchLevel.PREFECTURE < MatchLevel.PARCEL`` holds.
    """

    # Nothing identified, not even the prefecture
    UNKNOWN = "unknown"

    # Prefecture identified
    PREFECTURE = "prefecture"

    # Municipality (city, ward, town, village) identified
    ADMINISTRATIVE_AREA = "city"

    # Oaza / town name identified
    TOWN_LOCAL = "machiaza"

    # Full machiaza (with chome or koaza) identified
    MACHIAZA = "machiaza_detail"

    # Residential-display block identified
    RESIDENTIAL_BLOCK = "residential_block"

    # Residential-display block and residence number identified
    RESIDENTIAL_DETAIL = "residential_detail"

    # Parcel number identified
    PARCEL = "parcel"

    @property
    def rank(self) -> int:
        return list(type(self)).index(self)

    def __lt__(self, other):
        if not isinstance(other, MatchLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, MatchLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, MatchLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, MatchLevel):
            return NotImplemented
        return self.rank >= other.rank


class PrefectureName(str, Enum):
    """The 47 prefectures of Japan."""

    HOKKAIDO = "北海道"
    AOMORI = "青森県"
    IWATE = "岩手県"
    MIYAGI = "宮城県"
    AKITA = "秋田県"
    YAMAGATA = "山形県"
    FUKUSHIMA = "福島県"
    IBARAKI = "茨城県"
    TOCHIGI = "栃木県"
    GUNMA = "群馬県"
    SAITAMA = "埼玉県"
    CHIBA = "千葉県"
    TOKYO = "東京都"
    KANAGAWA = "神奈川県"
    NIIGATA = "新潟県"
    TOYAMA = "富山県"
    ISHIKAWA = "石川県"
    FUKUI = "福井県"
    YAMANASHI = "山梨県"
    NAGANO = "長野県"
    GIFU = "岐阜県"
    SHIZUOKA = "静岡県"
    AICHI = "愛知県"
    MIE = "三重県"
    SHIGA = "滋賀県"
    KYOTO = "京都府"
    OSAKA = "大阪府"
    HYOGO = "兵庫県"
    NARA = "奈良県"
    WAKAYAMA = "和歌山県"
    TOTTORI = "鳥取県"
    SHIMANE = "島根県"
    OKAYAMA = "岡山県"
    HIROSHIMA = "広島県"
    YAMAGUCHI = "山口県"
    TOKUSHIMA = "徳島県"
    KAGAWA = "香川県"
    EHIME = "愛媛県"
    KOCHI = "高知県"
    FUKUOKA = "福岡県"
    SAGA = "佐賀県"
    NAGASAKI = "長崎県"
    KUMAMOTO = "熊本県"
    OITA = "大分県"
    MIYAZAKI = "宮崎県"
    KAGOSHIMA = "鹿児島県"
    OKINAWA = "沖縄県"


class LookupLevel(str, Enum):
    """Administrative granularity of a lookup store record."""

    PREFECTURE = "pref"
    CITY = "city"
    TOWN = "town"
    BLOCK = "rsdtdsp_blk"
    RESIDENTIAL = "rsdtdsp_rsdt"
    PARCEL = "parcel"


class Query(BaseModel):
    """
    Immutable match-state for one input address.

    Every stage of the pipeline receives a Query and returns either the same
    Query (nothing matched) or a new one built with ``copy_with()``. Queries
    are never mutated in place, so the same instance can be shared freely.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    # === Input ===
    input: str = Field(..., description="Original input text")
    temp_address: str = Field(..., description="Remaining unmatched tail of the input")
    match_level: MatchLevel = Field(MatchLevel.UNKNOWN, description="Confidence tier reached so far")

    # === Administrative area ===
    prefecture: Optional[PrefectureName] = Field(None, description="Prefecture name")
    city: Optional[str] = Field(None, description="County, city and ward name")
    lg_code: Optional[str] = Field(None, description="Local-government code")

    # === Town ===
    town: Optional[str] = Field(None, description="Oaza/town name with chome and koaza")
    town_id: Optional[str] = Field(None, description="Machiaza identifier")
    rsdt_addr_flg: Optional[str] = Field(
        None,
        description="'1' for residential-display addressing, '0' for parcel-number addressing"
    )

    # === Residential display ===
    block: Optional[str] = Field(None, description="Block number")
    block_id: Optional[str] = Field(None, description="Block identifier")
    rsdt_num: Optional[str] = Field(None, description="Residence number")
    rsdt_id: Optional[str] = Field(None, description="Residence identifier")
    rsdt_num2: Optional[str] = Field(None, description="Residence sub-number")
    rsdt2_id: Optional[str] = Field(None, description="Residence sub-number identifier")

    # === Parcel ===
    prc_num1: Optional[str] = Field(None, description="Parcel number (main)")
    prc_num2: Optional[str] = Field(None, description="Parcel number (branch)")
    prc_num3: Optional[str] = Field(None, description="Parcel number (sub-branch)")
    prc_id: Optional[str] = Field(None, description="Parcel identifier")

    # === Position ===
    lat: Optional[float] = Field(None, description="Representative latitude")
    lon: Optional[float] = Field(None, description="Representative longitude")

    @classmethod
    def create(cls, address: str) -> "Query":
        """Create an unmatched Query whose tail is the whole input."""
        return cls(input=address, temp_address=address)

    def copy_with(self, **fields: Any) -> "Query":
        """
        Return a new Query with ``fields`` merged over the current values.

        The merged values are validated again; unknown field names raise
        ``pydantic.ValidationError``.
        """
        return type(self).model_validate({**self.model_dump(), **fields})

    def missing(self, *names: str) -> list[str]:
        """Return the names among ``names`` that are still unresolved."""
        return [name for name in names if getattr(self, name) in (None, "")]


class LookupRecord(BaseModel):
    """
    Read-only projection of one dataset row in the lookup store.

    ``key`` is the canonical name after wildcard expansion; a record matches a
    pattern when its key is a prefix of the pattern.
    """

    model_config = ConfigDict(frozen=True)

    level: LookupLevel = Field(..., description="Administrative granularity")
    key: str = Field(..., min_length=1, description="Canonical name used for prefix matching")
    name: str = Field(..., description="Display name")
    identifier: str = Field(..., description="Per-level identifier, used to break ties")
    lg_code: Optional[str] = Field(None, description="Local-government code")
    lat: Optional[float] = Field(None, description="Representative latitude")
    lon: Optional[float] = Field(None, description="Representative longitude")
    scope: Dict[str, str] = Field(default_factory=dict, description="Resolved parent keys")
    attributes: Dict[str, Optional[str]] = Field(
        default_factory=dict,
        description="Level-specific raw values"
    )

    def attribute(self, name: str) -> Optional[str]:
        """Return a level-specific value, treating empty strings as missing."""
        return self.attributes.get(name) or None


__all__ = [
    "MatchLevel",
    "PrefectureName",
    "LookupLevel",
    "Query",
    "LookupRecord",
]
