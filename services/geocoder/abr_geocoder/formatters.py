"""
Output boundary: Query stream to text.

Formatters:
- CsvFormatter: fixed column order, header once, rows written in chunks with pandas
- JsonLinesFormatter: one JSON object per Query

Both consume an async stream of Queries and yield text chunks; values are
written as resolved, without reinterpretation.
"""

import json
from typing import Any, AsyncIterable, AsyncIterator, Dict, List, Optional, Sequence

import pandas as pd

from abr_core.models import Query
from abr_core.normalizer import SEPARATOR

DEFAULT_COLUMNS = [
    "input",
    "output",
    "match_level",
    "lg_code",
    "prefecture",
    "city",
    "town",
    "town_id",
    "block",
    "block_id",
    "rsdt_num",
    "rsdt_id",
    "rsdt_num2",
    "rsdt2_id",
    "prc_num1",
    "prc_num2",
    "prc_num3",
    "prc_id",
    "rsdt_addr_flg",
    "other",
    "lat",
    "lon",
]


def formatted_address(query: Query) -> str:
    """
    Render the resolved address followed by the unmatched tail.

    "東京都町田市森野2-2-22" resolves to "東京都町田市森野二丁目2-22".
    """
    names = [
        query.prefecture.value if query.prefecture else None,
        query.city,
        query.town,
    ]
    if query.block_id:
        numbers = [query.block, query.rsdt_num, query.rsdt_num2]
    else:
        numbers = [query.prc_num1, query.prc_num2, query.prc_num3]

    resolved_numbers = "-".join(number for number in numbers if number)
    tail = query.temp_address.replace(SEPARATOR, "-")
    if resolved_numbers and tail[:1].isdigit():
        tail = "-" + tail

    return "".join(name for name in names if name) + resolved_numbers + tail


def to_row(query: Query) -> Dict[str, Any]:
    """Flatten a Query into output columns."""
    row = query.model_dump(mode="json", exclude={"temp_address"})
    row["output"] = formatted_address(query)
    row["other"] = query.temp_address.replace(SEPARATOR, "-") or None
    return row


async def _chunks(results: AsyncIterable[Query], size: int) -> AsyncIterator[List[Query]]:
    chunk = []
    async for query in results:
        chunk.append(query)
        if len(chunk) >= size:
            yield chunk
            chunk = []
    if chunk:
        yield chunk


class CsvFormatter:
    """
    Serialize Queries as CSV.

    Example:
        ```python
        formatter = CsvFormatter(chunk_size=500)
        async for text in formatter.format(pipeline.run(queries)):
            sys.stdout.write(text)
        ```
    """

    def __init__(self, columns: Optional[Sequence[str]] = None, chunk_size: int = 500):
        self.columns = list(columns or DEFAULT_COLUMNS)
        self.chunk_size = chunk_size

    async def format(self, results: AsyncIterable[Query]) -> AsyncIterator[str]:
        header = True
        async for chunk in _chunks(results, self.chunk_size):
            frame = pd.DataFrame([to_row(query) for query in chunk], columns=self.columns)
            yield frame.to_csv(index=False, header=header, na_rep="", lineterminator="\n")
            header = False

        if header:
            yield ",".join(self.columns) + "\n"


class JsonLinesFormatter:
    """Serialize Queries as JSON Lines."""

    def __init__(self, chunk_size: int = 500):
        self.chunk_size = chunk_size

    async def format(self, results: AsyncIterable[Query]) -> AsyncIterator[str]:
        async for chunk in _chunks(results, self.chunk_size):
            yield "".join(
                json.dumps(to_row(query), ensure_ascii=False) + "\n"
                for query in chunk
            )


FORMATTERS = {
    "csv": CsvFormatter,
    "jsonl": JsonLinesFormatter,
}


def create_formatter(name: str, chunk_size: int = 500):
    """
    Raises:
        ValueError: Unknown format name
    """
    try:
        formatter_class = FORMATTERS[name]
    except KeyError:
        raise ValueError(f"Unknown output format '{name}'. Allowed: {', '.join(FORMATTERS)}")
    return formatter_class(chunk_size=chunk_size)


__all__ = [
    "DEFAULT_COLUMNS",
    "formatted_address",
    "to_row",
    "CsvFormatter",
    "JsonLinesFormatter",
    "FORMATTERS",
    "create_formatter",
]
