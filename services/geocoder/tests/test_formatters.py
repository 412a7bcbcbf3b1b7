"""
Tests for the output boundary.

Tests:
- formatted_address() rendering of resolved parts and the unmatched tail
- CsvFormatter column order, header handling and chunking
- JsonLinesFormatter output
"""

import io
import json

import pandas as pd
import pytest

from abr_core.models import MatchLevel, Query
from abr_geocoder.formatters import (
    DEFAULT_COLUMNS,
    CsvFormatter,
    JsonLinesFormatter,
    create_formatter,
    formatted_address,
    to_row,
)


def _residence():
    return Query.create("東京都町田市森野2-2-22").copy_with(
        match_level=MatchLevel.RESIDENTIAL_DETAIL,
        prefecture="東京都",
        city="町田市",
        lg_code="132098",
        town="森野二丁目",
        town_id="0006002",
        rsdt_addr_flg="1",
        block="2",
        block_id="002",
        rsdt_num="22",
        rsdt_id="022",
        temp_address="",
        lat=35.5486,
        lon=139.4406,
    )


def _parcel():
    return Query.create("島根県松江市末次町23-10 ビル").copy_with(
        match_level=MatchLevel.PARCEL,
        prefecture="島根県",
        city="松江市",
        lg_code="322016",
        town="末次町",
        town_id="0083000",
        prc_num1="23",
        prc_num2="10",
        prc_id="000230001000000",
        temp_address=" ビル",
    )


async def _stream(queries):
    for query in queries:
        yield query


async def _render(formatter, queries):
    return "".join([text async for text in formatter.format(_stream(queries))])


class TestFormattedAddress:
    """Tests for formatted_address()."""

    def test_residential_address(self):
        assert formatted_address(_residence()) == "東京都町田市森野二丁目2-22"

    def test_parcel_address_keeps_tail(self):
        assert formatted_address(_parcel()) == "島根県松江市末次町23-10 ビル"

    def test_numeric_tail_is_separated(self):
        """Test an unmatched number is not glued onto the resolved block."""
        query = _residence().copy_with(rsdt_num=None, rsdt_id=None, temp_address="99@1")
        assert formatted_address(query) == "東京都町田市森野二丁目2-99-1"

    def test_unresolved_address_is_the_tail(self):
        assert formatted_address(Query.create("どこでもない")) == "どこでもない"


class TestToRow:

    def test_row_has_output_and_other(self):
        row = to_row(_parcel())

        assert row["output"] == "島根県松江市末次町23-10 ビル"
        assert row["other"] == " ビル"
        assert row["match_level"] == "parcel"
        assert row["prefecture"] == "島根県"
        assert "temp_address" not in row

    def test_other_is_none_when_fully_matched(self):
        assert to_row(_residence())["other"] is None


class TestCsvFormatter:
    """Tests for CsvFormatter."""

    @pytest.mark.asyncio
    async def test_columns_in_fixed_order(self):
        text = await _render(CsvFormatter(), [_residence()])

        header = text.splitlines()[0]
        assert header.split(",") == DEFAULT_COLUMNS

    @pytest.mark.asyncio
    async def test_values_written_as_resolved(self):
        text = await _render(CsvFormatter(), [_residence(), _parcel()])

        frame = pd.read_csv(io.StringIO(text), dtype=str, keep_default_na=False)
        assert list(frame["output"]) == ["東京都町田市森野二丁目2-22", "島根県松江市末次町23-10 ビル"]
        assert list(frame["block_id"]) == ["002", ""]
        assert list(frame["lg_code"]) == ["132098", "322016"]
        assert frame["lat"][0] == "35.5486"
        assert frame["lat"][1] == ""

    @pytest.mark.asyncio
    async def test_header_written_once_across_chunks(self):
        queries = [_residence(), _parcel(), _residence()]

        chunks = [text async for text in CsvFormatter(chunk_size=1).format(_stream(queries))]

        assert len(chunks) == 3
        assert chunks[0].startswith("input,")
        assert not chunks[1].startswith("input,")
        assert "".join(chunks).count("input,output") == 1

    @pytest.mark.asyncio
    async def test_empty_stream_writes_header_only(self):
        text = await _render(CsvFormatter(), [])
        assert text == ",".join(DEFAULT_COLUMNS) + "\n"

    @pytest.mark.asyncio
    async def test_custom_columns(self):
        text = await _render(CsvFormatter(columns=["input", "match_level"]), [_parcel()])
        assert text == "input,match_level\n島根県松江市末次町23-10 ビル,parcel\n"


class TestJsonLinesFormatter:
    """Tests for JsonLinesFormatter."""

    @pytest.mark.asyncio
    async def test_one_object_per_line(self):
        text = await _render(JsonLinesFormatter(chunk_size=1), [_residence(), _parcel()])

        lines = text.splitlines()
        assert len(lines) == 2
        first = json.loads(lines[0])
        assert first["output"] == "東京都町田市森野二丁目2-22"
        assert first["rsdt_id"] == "022"
        assert "東京都" in lines[0]


class TestCreateFormatter:

    def test_known_formats(self):
        assert isinstance(create_formatter("csv"), CsvFormatter)
        assert isinstance(create_formatter("jsonl", chunk_size=10), JsonLinesFormatter)

    def test_unknown_format(self):
        with pytest.raises(ValueError, match="Unknown output format"):
            create_formatter("xml")
