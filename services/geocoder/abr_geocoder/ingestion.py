"""
Dataset ingestion: ABR CSV files to lookup store records.

Handles:
- Chunked CSV reading with pandas (all values kept as raw strings)
- Column validation per dataset file type
- Joining name files with their *_pos position files
- Building wildcard keys for names and separator keys for numbers
- Replacing the lookup store contents level by level
"""

from collections import defaultdict
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import asyncpg
import pandas as pd

from abr_core.errors import DatasetError
from abr_core.models import LookupLevel, LookupRecord
from abr_core.normalizer import expand_wildcards, numeric_key

from .dataset import DatasetFile, DatasetFileMeta
from .logging_utils import get_logger, set_dataset
from .readers import detect_encoding

logger = get_logger(__name__)

Position = Tuple[Optional[float], Optional[float]]

# Position files keyed by the ids of the name file they belong to
POSITION_KEYS = {
    "pref_pos": ("lg_code",),
    "city_pos": ("lg_code",),
    "town_pos": ("lg_code", "machiaza_id"),
    "rsdtdsp_blk_pos": ("lg_code", "machiaza_id", "blk_id"),
    "rsdtdsp_rsdt_pos": ("lg_code", "machiaza_id", "blk_id", "rsdt_id", "rsdt2_id"),
    "parcel_pos": ("lg_code", "machiaza_id", "prc_id"),
}

INSERT_SQL = """
    INSERT INTO lookup_records
        (level, key, name, identifier, lg_code, lat, lon, scope, attributes)
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8::jsonb, $9::jsonb)
"""


def _coordinate(value: str) -> Optional[float]:
    try:
        return float(value) if value else None
    except ValueError:
        return None


class IndexBuilder:
    """
    Collect dataset rows and turn them into LookupRecords.

    Example:
        ```python
        builder = IndexBuilder(chunk_size=5000)
        for path in sorted(Path("datasets").glob("mt_*.csv")):
            builder.add_file(path)
        records = builder.build_records()
        await write_records(records, pool)
        ```
    """

    def __init__(self, chunk_size: int = 5000):
        self.chunk_size = chunk_size
        self.rows: Dict[str, List[Dict[str, str]]] = defaultdict(list)

    def add_file(self, path: Path, encoding: Optional[str] = None) -> int:
        """
        Read one dataset file.

        Returns:
            int: Number of rows read

        Raises:
            DatasetError: Unknown file type, missing columns or unreadable CSV
        """
        dataset = DatasetFile.create(path)
        set_dataset(dataset.filename)
        if encoding is None:
            encoding = detect_encoding(path)

        row_count = 0
        try:
            with pd.read_csv(
                path,
                encoding=encoding,
                chunksize=self.chunk_size,
                dtype=str,
                keep_default_na=False,
            ) as reader:
                for chunk in reader:
                    chunk.columns = chunk.columns.str.strip()
                    dataset.check_columns(list(chunk.columns))
                    for row in chunk.to_dict(orient="records"):
                        self.rows[dataset.type].append(dataset.parse_fields(row))
                    row_count += len(chunk)
        except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
            raise DatasetError(f"{dataset.filename}: cannot read CSV: {e}") from e
        finally:
            set_dataset(None)

        logger.info(f"Read {row_count} rows from {dataset.filename}")
        return row_count

    def add_directory(self, directory: Path) -> int:
        """Read every dataset file in ``directory``; other files are ignored."""
        total = 0
        for path in sorted(Path(directory).glob("*.csv")):
            if DatasetFileMeta.from_path(path) is None:
                logger.debug(f"Skipping non-dataset file {path.name}")
                continue
            total += self.add_file(path)
        return total

    def _positions(self, pos_type: str) -> Dict[Tuple[str, ...], Position]:
        key_columns = POSITION_KEYS[pos_type]
        return {
            tuple(row.get(column, "") for column in key_columns): (
                _coordinate(row.get("rep_lat", "")),
                _coordinate(row.get("rep_lon", "")),
            )
            for row in self.rows.get(pos_type, [])
        }

    def _active(self, dataset_type: str) -> Iterable[Dict[str, str]]:
        """Rows that have not been abolished."""
        return (row for row in self.rows.get(dataset_type, []) if not row.get("ablt_date"))

    def build_records(self) -> List[LookupRecord]:
        records = []
        records.extend(self._prefectures())
        records.extend(self._cities())
        records.extend(self._towns())
        records.extend(self._blocks())
        records.extend(self._residences())
        records.extend(self._parcels())
        logger.info(f"Built {len(records)} lookup records")
        return records

    def _prefectures(self) -> List[LookupRecord]:
        positions = self._positions("pref_pos")
        records = []
        for row in self._active("pref"):
            lat, lon = positions.get((row["lg_code"],), (None, None))
            records.append(LookupRecord(
                level=LookupLevel.PREFECTURE,
                key=expand_wildcards(row["pref"]),
                name=row["pref"],
                identifier=row["lg_code"],
                lg_code=row["lg_code"],
                lat=lat,
                lon=lon,
            ))
        return records

    def _cities(self) -> List[LookupRecord]:
        positions = self._positions("city_pos")
        records = []
        for row in self._active("city"):
            lat, lon = positions.get((row["lg_code"],), (None, None))
            names = [row["county"] + row["city"] + row["ward"]]
            # Addresses usually omit the county (西多摩郡奥多摩町 -> 奥多摩町)
            if row["county"]:
                names.append(row["city"] + row["ward"])
            for name in names:
                records.append(LookupRecord(
                    level=LookupLevel.CITY,
                    key=expand_wildcards(name),
                    name=name,
                    identifier=row["lg_code"],
                    lg_code=row["lg_code"],
                    lat=lat,
                    lon=lon,
                    scope={"prefecture": row["pref"]},
                    attributes={"county": row["county"], "city": row["city"], "ward": row["ward"]},
                ))
        return records

    def _towns(self) -> List[LookupRecord]:
        positions = self._positions("town_pos")
        records = []
        for row in self._active("town"):
            name = row["oaza_cho"] + row["chome"] + row["koaza"]
            if not name:
                continue
            lat, lon = positions.get((row["lg_code"], row["machiaza_id"]), (None, None))
            records.append(LookupRecord(
                level=LookupLevel.TOWN,
                key=expand_wildcards(name),
                name=name,
                identifier=row["machiaza_id"],
                lg_code=row["lg_code"],
                lat=lat,
                lon=lon,
                scope={"lg_code": row["lg_code"]},
                attributes={
                    "oaza_cho": row["oaza_cho"],
                    "chome": row["chome"],
                    "koaza": row["koaza"],
                    "rsdt_addr_flg": row["rsdt_addr_flg"],
                },
            ))
        return records

    def _blocks(self) -> List[LookupRecord]:
        positions = self._positions("rsdtdsp_blk_pos")
        records = []
        for row in self._active("rsdtdsp_blk"):
            key = numeric_key(row["blk_num"])
            if not key:
                continue
            lat, lon = positions.get(
                (row["lg_code"], row["machiaza_id"], row["blk_id"]), (None, None)
            )
            records.append(LookupRecord(
                level=LookupLevel.BLOCK,
                key=key,
                name=row["blk_num"],
                identifier=row["blk_id"],
                lg_code=row["lg_code"],
                lat=lat,
                lon=lon,
                scope={"lg_code": row["lg_code"], "town_id": row["machiaza_id"]},
                attributes={"blk_num": row["blk_num"], "blk_id": row["blk_id"]},
            ))
        return records

    def _residences(self) -> List[LookupRecord]:
        positions = self._positions("rsdtdsp_rsdt_pos")
        records = []
        for row in self._active("rsdtdsp_rsdt"):
            key = numeric_key(row["rsdt_num"], row["rsdt_num2"])
            if not key:
                continue
            lat, lon = positions.get(
                (row["lg_code"], row["machiaza_id"], row["blk_id"], row["rsdt_id"], row["rsdt2_id"]),
                (None, None),
            )
            records.append(LookupRecord(
                level=LookupLevel.RESIDENTIAL,
                key=key,
                name=row["rsdt_num"],
                identifier=row["rsdt_id"] + row["rsdt2_id"],
                lg_code=row["lg_code"],
                lat=lat,
                lon=lon,
                scope={
                    "lg_code": row["lg_code"],
                    "town_id": row["machiaza_id"],
                    "block_id": row["blk_id"],
                },
                attributes={
                    "rsdt_num": row["rsdt_num"],
                    "rsdt_id": row["rsdt_id"],
                    "rsdt_num2": row["rsdt_num2"],
                    "rsdt2_id": row["rsdt2_id"],
                },
            ))
        return records

    def _parcels(self) -> List[LookupRecord]:
        positions = self._positions("parcel_pos")
        records = []
        for row in self._active("parcel"):
            key = numeric_key(row["prc_num1"], row["prc_num2"], row["prc_num3"])
            if not key:
                continue
            lat, lon = positions.get(
                (row["lg_code"], row["machiaza_id"], row["prc_id"]), (None, None)
            )
            records.append(LookupRecord(
                level=LookupLevel.PARCEL,
                key=key,
                name=row["prc_num1"],
                identifier=row["prc_id"],
                lg_code=row["lg_code"],
                lat=lat,
                lon=lon,
                scope={"lg_code": row["lg_code"], "town_id": row["machiaza_id"]},
                attributes={
                    "prc_num1": row["prc_num1"],
                    "prc_num2": row["prc_num2"],
                    "prc_num3": row["prc_num3"],
                },
            ))
        return records


async def write_records(records: List[LookupRecord], pool: asyncpg.Pool) -> Dict[str, int]:
    """
    Replace the stored records of every level present in ``records``.

    Runs in one transaction, so readers see either the old or the new rows
    of a level, never a mix.

    Returns:
        dict: Rows written per level
    """
    by_level: Dict[LookupLevel, List[LookupRecord]] = defaultdict(list)
    for record in records:
        by_level[record.level].append(record)

    counts = {}
    async with pool.acquire() as conn:
        async with conn.transaction():
            for level, level_records in by_level.items():
                await conn.execute("DELETE FROM lookup_records WHERE level = $1", level.value)
                await conn.executemany(INSERT_SQL, [
                    (
                        record.level.value,
                        record.key,
                        record.name,
                        record.identifier,
                        record.lg_code,
                        record.lat,
                        record.lon,
                        record.scope,
                        record.attributes,
                    )
                    for record in level_records
                ])
                counts[level.value] = len(level_records)
                logger.info(f"Stored {len(level_records)} {level.value} records")

    return counts


__all__ = [
    "IndexBuilder",
    "POSITION_KEYS",
    "write_records",
]
