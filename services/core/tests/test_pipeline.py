"""
Unit tests for stages and the pipeline orchestrator.

Tests:
- Stage skip policy (finder not invoked when prerequisites are unresolved)
- Order and cardinality over many Queries with uneven stage latency
- Backpressure: a blocked stage stops the source from being drained
- Failure propagation from stages and from the source
- End-to-end matching over the sample store
"""

import asyncio
import random

import pytest
from unittest.mock import AsyncMock, MagicMock

from abr_core.errors import ContractViolation, StoreFailure
from abr_core.finders import CityFinder, Finder
from abr_core.models import MatchLevel, PrefectureName, Query
from abr_core.pipeline import GeocodePipeline, Stage, build_stages


def _mock_finder(requires=(), side_effect=None):
    finder = MagicMock(spec=Finder)
    finder.requires = tuple(requires)
    finder.find = AsyncMock(side_effect=side_effect or (lambda query: query))
    return finder


class _TagFinder(Finder):
    """Appends a tag to the tail after an optional random delay."""

    def __init__(self, tag, jitter=0.0):
        super().__init__(store=None)
        self.tag = tag
        self.jitter = jitter

    async def _find(self, query):
        if self.jitter:
            await asyncio.sleep(random.uniform(0, self.jitter))
        return query.copy_with(temp_address=query.temp_address + self.tag)


async def _collect(pipeline, source):
    return [result async for result in pipeline.run(source)]


class TestStage:
    """Tests for the Stage skip policy."""

    @pytest.mark.asyncio
    async def test_skips_without_invoking_finder(self):
        """Test unresolved prerequisites pass the Query through untouched."""
        finder = _mock_finder(requires=("prefecture", "city"))
        stage = Stage("town", finder)
        query = Query.create("紀尾井町").copy_with(prefecture="東京都")

        result = await stage.process(query)

        assert result is query
        finder.find.assert_not_called()

    @pytest.mark.asyncio
    async def test_invokes_finder_when_ready(self):
        finder = _mock_finder(requires=("prefecture",))
        stage = Stage("city", finder)
        query = Query.create("千代田区").copy_with(prefecture="東京都")

        await stage.process(query)

        finder.find.assert_awaited_once_with(query)

    @pytest.mark.asyncio
    async def test_skip_when_resolved(self):
        """Test a stage is skipped once its skip field is resolved."""
        finder = _mock_finder()
        stage = Stage("parcel", finder, requires=(), skip_when=("block_id",))
        query = Query.create("3@25").copy_with(block_id="003")

        assert await stage.process(query) is query
        finder.find.assert_not_called()

    @pytest.mark.asyncio
    async def test_explicit_requires_override_finder(self):
        finder = _mock_finder(requires=("prefecture",))
        stage = Stage("city", finder, requires=("prefecture", "input"))

        assert stage.requires == ("prefecture", "input")

    @pytest.mark.asyncio
    async def test_city_dependent_stages_leave_query_unchanged(self, memory_store):
        """Test every stage at or below town is a no-op while city is unresolved."""
        stages = build_stages(memory_store)
        for stage in stages:
            stage.finder.find = AsyncMock(side_effect=AssertionError("finder invoked"))

        query = Query.create("紀尾井町1-3").copy_with(
            prefecture=PrefectureName.TOKYO,
            lg_code="131016",
            match_level=MatchLevel.PREFECTURE,
        )

        for stage in stages[2:]:
            result = await stage.process(query)
            assert result == query
            stage.finder.find.assert_not_called()


class TestGeocodePipelineOrdering:
    """Tests for order and cardinality."""

    @pytest.mark.asyncio
    async def test_preserves_order_and_cardinality(self):
        stages = [
            Stage(f"s{index}", _TagFinder(str(index), jitter=0.002))
            for index in range(3)
        ]
        pipeline = GeocodePipeline(stages, buffer_size=2)
        queries = [Query.create(f"q{n}") for n in range(60)]

        results = await _collect(pipeline, queries)

        assert len(results) == len(queries)
        assert [r.input for r in results] == [q.input for q in queries]
        assert all(r.temp_address == r.input + "012" for r in results)

    @pytest.mark.asyncio
    async def test_accepts_async_source(self):
        async def source():
            for n in range(5):
                yield Query.create(f"q{n}")

        pipeline = GeocodePipeline([Stage("tag", _TagFinder("!"))], buffer_size=1)
        results = await _collect(pipeline, source())

        assert [r.temp_address for r in results] == [f"q{n}!" for n in range(5)]

    @pytest.mark.asyncio
    async def test_empty_source(self):
        pipeline = GeocodePipeline([Stage("tag", _TagFinder("!"))])
        assert await _collect(pipeline, []) == []

    @pytest.mark.asyncio
    async def test_process_single_query(self):
        pipeline = GeocodePipeline([Stage("a", _TagFinder("a")), Stage("b", _TagFinder("b"))])
        result = await pipeline.process(Query.create("x"))
        assert result.temp_address == "xab"

    def test_rejects_zero_buffer(self):
        with pytest.raises(ValueError):
            GeocodePipeline([], buffer_size=0)


class TestGeocodePipelineBackpressure:
    """Tests for bounded buffering between stages."""

    @pytest.mark.asyncio
    async def test_blocked_stage_stops_source(self):
        """Test a stuck stage holds at most its queue capacity plus one in flight."""
        release = asyncio.Event()
        produced = []

        async def blocking(query):
            await release.wait()
            return query

        def source():
            for n in range(10):
                produced.append(n)
                yield Query.create(f"q{n}")

        pipeline = GeocodePipeline([Stage("slow", _mock_finder(side_effect=blocking))], buffer_size=1)
        consumer = asyncio.create_task(_collect(pipeline, source()))

        await asyncio.sleep(0.05)
        assert len(produced) <= 3
        assert not consumer.done()

        release.set()
        results = await asyncio.wait_for(consumer, timeout=5)
        assert len(results) == 10
        assert len(produced) == 10


class TestGeocodePipelineFailures:
    """Tests for failure propagation."""

    @pytest.mark.asyncio
    async def test_stage_failure_reaches_caller(self):
        """Test results ahead of a failure are delivered, then the error is raised."""
        produced = []

        async def fail_on_third(query):
            if query.input == "q2":
                raise StoreFailure("connection lost")
            return query

        def source():
            for n in range(100):
                produced.append(n)
                yield Query.create(f"q{n}")

        pipeline = GeocodePipeline([Stage("store", _mock_finder(side_effect=fail_on_third))], buffer_size=1)
        delivered = []

        with pytest.raises(StoreFailure):
            async for result in pipeline.run(source()):
                delivered.append(result.input)

        assert delivered == ["q0", "q1"]
        assert len(produced) < 100

    @pytest.mark.asyncio
    async def test_source_failure_reaches_caller(self):
        def source():
            yield Query.create("q0")
            yield Query.create("q1")
            raise OSError("input vanished")

        pipeline = GeocodePipeline([Stage("tag", _TagFinder("!"))], buffer_size=4)
        delivered = []

        with pytest.raises(OSError):
            async for result in pipeline.run(source()):
                delivered.append(result.temp_address)

        assert delivered == ["q0!", "q1!"]

    @pytest.mark.asyncio
    async def test_contract_violation_is_fatal(self, memory_store):
        """Test a miswired stage aborts the run."""
        stage = Stage("city", CityFinder(memory_store), requires=())
        pipeline = GeocodePipeline([stage])

        with pytest.raises(ContractViolation):
            await _collect(pipeline, [Query.create("千代田区")])

    @pytest.mark.asyncio
    async def test_consumer_stop_cancels_stages(self):
        """Test closing the result stream tears down the stage tasks."""
        pipeline = GeocodePipeline([Stage("tag", _TagFinder("!"))], buffer_size=1)
        produced = []

        def endless():
            while True:
                produced.append(len(produced))
                yield Query.create(f"q{len(produced) - 1}")

        results = pipeline.run(endless())
        first = await results.__anext__()
        await results.aclose()

        consumed = len(produced)
        await asyncio.sleep(0.02)

        assert first.temp_address == "q0!"
        assert len(produced) == consumed


class TestEndToEnd:
    """Full default chain over the sample store."""

    EXPECTED = [
        ("東京都千代田区紀尾井町1-3", MatchLevel.RESIDENTIAL_DETAIL, ""),
        ("山形県山形市旅篭町二丁目3-25", MatchLevel.RESIDENTIAL_DETAIL, ""),
        ("島根県松江市末次町23-10", MatchLevel.PARCEL, ""),
        ("町田市森野2-2-22", MatchLevel.RESIDENTIAL_DETAIL, ""),
        ("京都府八幡市八幡園内", MatchLevel.MACHIAZA, ""),
        ("東京都港区麻布十番1-2-3", MatchLevel.MACHIAZA, "2@3"),
        ("広島県広島市のどこか", MatchLevel.ADMINISTRATIVE_AREA, "のどこか"),
        ("どこでもない", MatchLevel.UNKNOWN, "どこでもない"),
    ]

    @pytest.mark.asyncio
    async def test_default_chain(self, memory_store):
        pipeline = GeocodePipeline(build_stages(memory_store), buffer_size=2)

        results = await _collect(pipeline, [Query.create(text) for text, _, _ in self.EXPECTED])

        assert [r.input for r in results] == [text for text, _, _ in self.EXPECTED]
        for result, (_, level, tail) in zip(results, self.EXPECTED):
            assert result.match_level is level
            assert result.temp_address == tail

    @pytest.mark.asyncio
    async def test_residential_result_fields(self, memory_store):
        pipeline = GeocodePipeline(build_stages(memory_store))

        result = await pipeline.process(Query.create("東京都町田市森野2-2-22"))

        assert result.prefecture is PrefectureName.TOKYO
        assert result.city == "町田市"
        assert result.lg_code == "132098"
        assert result.town == "森野二丁目"
        assert result.town_id == "0006002"
        assert (result.block, result.block_id) == ("2", "002")
        assert (result.rsdt_num, result.rsdt_id) == ("22", "022")
        assert result.rsdt_addr_flg == "1"
        assert (result.lat, result.lon) == (35.548247, 139.440264)
        assert result.prc_id is None

    @pytest.mark.asyncio
    async def test_residence_after_town_without_chome(self, memory_store):
        """Test 紀尾井町1-3 reads block 1 and residence 3."""
        pipeline = GeocodePipeline(build_stages(memory_store))

        result = await pipeline.process(Query.create("東京都千代田区紀尾井町1-3"))

        assert (result.town, result.town_id) == ("紀尾井町", "0056000")
        assert (result.block, result.block_id) == ("1", "001")
        assert (result.rsdt_num, result.rsdt_id) == ("3", "003")
        assert result.rsdt_addr_flg == "1"
        assert (result.lat, result.lon) == (35.681411, 139.73495)

    @pytest.mark.asyncio
    async def test_match_level_never_decreases(self, memory_store):
        """Test each stage leaves the tier equal or higher."""
        stages = build_stages(memory_store)

        for text, _, _ in self.EXPECTED:
            query = Query.create(text)
            for stage in stages:
                result = await stage.process(query)
                assert result.match_level >= query.match_level
                query = result
