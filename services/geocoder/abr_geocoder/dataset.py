"""
Address Base Registry dataset files.

This module contains:
- DataField: one source column and the store column it maps to
- DATASET_FIELDS: ordered fields per dataset file type
- DatasetFileMeta: type and area parsed from a file name
- DatasetFile: a dataset file on disk with its field mapping

File names follow ``mt_<type>_<area>.csv``, for example
``mt_rsdtdsp_rsdt_pref02.csv`` (type ``rsdtdsp_rsdt``, area ``pref02``) or
``mt_city_all.csv``.
"""

import re
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from abr_core.errors import DatasetError


class DataField(BaseModel):
    """A source CSV column and the store column it is loaded into."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Field identifier")
    csv: str = Field(..., description="Column name in the source CSV")
    db_column: str = Field(..., description="Column name in the lookup store")


LG_CODE = DataField(name="LG_CODE", csv="全国地方公共団体コード", db_column="lg_code")
PREF = DataField(name="PREF", csv="都道府県名", db_column="pref")
COUNTY = DataField(name="COUNTY", csv="郡名", db_column="county")
CITY = DataField(name="CITY", csv="市区町村名", db_column="city")
WARD = DataField(name="WARD", csv="政令市区名", db_column="ward")
MACHIAZA_ID = DataField(name="MACHIAZA_ID", csv="町字id", db_column="machiaza_id")
OAZA_CHO = DataField(name="OAZA_CHO", csv="大字・町名", db_column="oaza_cho")
CHOME = DataField(name="CHOME", csv="丁目名", db_column="chome")
KOAZA = DataField(name="KOAZA", csv="小字名", db_column="koaza")
RSDT_ADDR_FLG = DataField(name="RSDT_ADDR_FLG", csv="住居表示フラグ", db_column="rsdt_addr_flg")
BLK_ID = DataField(name="BLK_ID", csv="街区id", db_column="blk_id")
BLK_NUM = DataField(name="BLK_NUM", csv="街区符号", db_column="blk_num")
RSDT_ID = DataField(name="RSDT_ID", csv="住居id", db_column="rsdt_id")
RSDT2_ID = DataField(name="RSDT2_ID", csv="住居2id", db_column="rsdt2_id")
RSDT_NUM = DataField(name="RSDT_NUM", csv="住居番号", db_column="rsdt_num")
RSDT_NUM2 = DataField(name="RSDT_NUM2", csv="住居番号2", db_column="rsdt_num2")
BASIC_RSDT_DIV = DataField(name="BASIC_RSDT_DIV", csv="基礎番号・住居番号区分", db_column="basic_rsdt_div")
RSDT_ADDR_MTD_CODE = DataField(name="RSDT_ADDR_MTD_CODE", csv="住居表示方式コード", db_column="rsdt_addr_mtd_code")
PRC_ID = DataField(name="PRC_ID", csv="地番id", db_column="prc_id")
PRC_NUM1 = DataField(name="PRC_NUM1", csv="地番1", db_column="prc_num1")
PRC_NUM2 = DataField(name="PRC_NUM2", csv="地番2", db_column="prc_num2")
PRC_NUM3 = DataField(name="PRC_NUM3", csv="地番3", db_column="prc_num3")
STATUS_FLG = DataField(name="STATUS_FLG", csv="状態フラグ", db_column="status_flg")
EFCT_DATE = DataField(name="EFCT_DATE", csv="効力発生日", db_column="efct_date")
ABLT_DATE = DataField(name="ABLT_DATE", csv="廃止日", db_column="ablt_date")
SRC_CODE = DataField(name="SRC_CODE", csv="原典資料コード", db_column="src_code")
REMARKS = DataField(name="REMARKS", csv="備考", db_column="remarks")
REP_LAT = DataField(name="REP_LAT", csv="代表点_緯度", db_column="rep_lat")
REP_LON = DataField(name="REP_LON", csv="代表点_経度", db_column="rep_lon")

_LIFECYCLE = [STATUS_FLG, EFCT_DATE, ABLT_DATE, SRC_CODE, REMARKS]
_TOWN_NAME = [CITY, WARD, OAZA_CHO, CHOME, KOAZA]

DATASET_FIELDS: Dict[str, List[DataField]] = {
    "pref": [LG_CODE, PREF] + _LIFECYCLE,
    "pref_pos": [LG_CODE, REP_LAT, REP_LON],
    "city": [LG_CODE, PREF, COUNTY, CITY, WARD] + _LIFECYCLE,
    "city_pos": [LG_CODE, REP_LAT, REP_LON],
    "town": [LG_CODE, MACHIAZA_ID, PREF, COUNTY] + _TOWN_NAME + [RSDT_ADDR_FLG] + _LIFECYCLE,
    "town_pos": [LG_CODE, REP_LAT, REP_LON, MACHIAZA_ID],
    "rsdtdsp_blk": (
        [LG_CODE, MACHIAZA_ID, BLK_ID] + _TOWN_NAME
        + [BLK_NUM, RSDT_ADDR_FLG, RSDT_ADDR_MTD_CODE] + _LIFECYCLE
    ),
    "rsdtdsp_blk_pos": [LG_CODE, MACHIAZA_ID, BLK_ID, REP_LAT, REP_LON],
    "rsdtdsp_rsdt": (
        [LG_CODE, MACHIAZA_ID, BLK_ID, RSDT_ID, RSDT2_ID] + _TOWN_NAME
        + [BLK_NUM, RSDT_NUM, RSDT_NUM2, BASIC_RSDT_DIV, RSDT_ADDR_FLG, RSDT_ADDR_MTD_CODE]
        + _LIFECYCLE
    ),
    "rsdtdsp_rsdt_pos": [LG_CODE, MACHIAZA_ID, BLK_ID, RSDT_ID, RSDT2_ID, REP_LAT, REP_LON],
    "parcel": (
        [LG_CODE, MACHIAZA_ID, PRC_ID] + _TOWN_NAME
        + [PRC_NUM1, PRC_NUM2, PRC_NUM3] + _LIFECYCLE
    ),
    "parcel_pos": [LG_CODE, MACHIAZA_ID, PRC_ID, REP_LAT, REP_LON],
}

_FILENAME_PATTERN = re.compile(r"^mt_(?P<type>[a-z_]+?)_(?P<area>all|pref\d{2}|city\d{6})\.csv$")


class DatasetFileMeta(BaseModel):
    """Type and area of a dataset file, parsed from its name."""

    model_config = ConfigDict(frozen=True)

    type: str
    area: str
    path: str
    filename: str

    @classmethod
    def from_path(cls, path: Path) -> Optional["DatasetFileMeta"]:
        """
        Parse ``path``'s file name.

        Returns None for files that are not ABR dataset files (README,
        unrelated CSVs, unknown types).
        """
        match = _FILENAME_PATTERN.match(path.name)
        if not match or match.group("type") not in DATASET_FIELDS:
            return None
        return cls(
            type=match.group("type"),
            area=match.group("area"),
            path=str(path),
            filename=path.name,
        )


class DatasetFile:
    """
    A dataset file with the column mapping for its type.

    Example:
        ```python
        dataset = DatasetFile.create(Path("mt_town_pos_pref47.csv"))
        dataset.parse_fields({"全国地方公共団体コード": "472018", ...})
        # {"lg_code": "472018", ...}
        ```
    """

    def __init__(self, meta: DatasetFileMeta, fields: List[DataField]):
        self.meta = meta
        self.fields = fields

    @classmethod
    def create(cls, path: Path) -> "DatasetFile":
        """
        Raises:
            DatasetError: The file name is not a known dataset file
        """
        meta = DatasetFileMeta.from_path(Path(path))
        if meta is None:
            raise DatasetError(f"Not an ABR dataset file: {Path(path).name}")
        return cls(meta, DATASET_FIELDS[meta.type])

    @property
    def type(self) -> str:
        return self.meta.type

    @property
    def filename(self) -> str:
        return self.meta.filename

    @property
    def path(self) -> Path:
        return Path(self.meta.path)

    @property
    def csv_columns(self) -> List[str]:
        return [field.csv for field in self.fields]

    def check_columns(self, columns: List[str]) -> None:
        """Raise DatasetError when any mapped column is absent."""
        missing = [name for name in self.csv_columns if name not in set(columns)]
        if missing:
            raise DatasetError(
                f"{self.filename}: missing columns {', '.join(missing)}"
            )

    def parse_fields(self, row: Mapping[str, str]) -> Dict[str, str]:
        """
        Map one source row onto store column names.

        Values are passed through as raw text.

        Raises:
            DatasetError: A mapped column is absent from the row
        """
        self.check_columns(list(row.keys()))
        return {field.db_column: row[field.csv] for field in self.fields}


__all__ = [
    "DataField",
    "DATASET_FIELDS",
    "DatasetFileMeta",
    "DatasetFile",
]
