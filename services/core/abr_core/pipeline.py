"""
Staged matching pipeline.

This module provides:
- Stage: one finder behind a prerequisite-skip policy, strictly one-in-one-out
- GeocodePipeline: chains stages in administrative order over bounded queues
- build_stages: the default prefecture -> city -> town -> block ->
  residential / parcel chain

Each stage runs in its own task. Stages hand Queries to each other through
asyncio.Queue instances of ``buffer_size`` slots, so a stage waiting on the
lookup store stops its upstream from producing more than the queues hold.
Every stage has a single worker, which keeps output order equal to input
order.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterable, AsyncIterator, Iterable, List, Optional, Sequence, Union

from abr_core.finders import (
    BlockFinder,
    CityFinder,
    Finder,
    ParcelFinder,
    PrefectureFinder,
    ResidentialFinder,
    TownFinder,
)
from abr_core.lookup_store import LookupStore
from abr_core.models import Query

logger = logging.getLogger(__name__)


QuerySource = Union[Iterable[Query], AsyncIterable[Query]]


class Stage:
    """
    Wrap one Finder with a uniform skip policy.

    The finder is not called when any ``requires`` field is unresolved or any
    ``skip_when`` field is already resolved; the Query then passes through
    unchanged. ``requires`` defaults to the finder's own prerequisites.
    """

    def __init__(
        self,
        name: str,
        finder: Finder,
        requires: Optional[Sequence[str]] = None,
        skip_when: Sequence[str] = (),
    ):
        self.name = name
        self.finder = finder
        self.requires = tuple(finder.requires if requires is None else requires)
        self.skip_when = tuple(skip_when)

    def should_skip(self, query: Query) -> bool:
        if query.missing(*self.requires):
            return True
        return len(query.missing(*self.skip_when)) < len(self.skip_when)

    async def process(self, query: Query) -> Query:
        if self.should_skip(query):
            return query
        return await self.finder.find(query)

    def __repr__(self) -> str:
        return f"Stage({self.name!r})"


# End-of-stream marker passed down the queues
_DONE = object()


@dataclass(frozen=True)
class _Failure:
    """Carries an exception raised upstream to the consumer."""

    error: BaseException
    stage: str


class GeocodePipeline:
    """
    Run Queries through a fixed chain of stages.

    Example:
        ```python
        pipeline = GeocodePipeline(build_stages(store), buffer_size=64)
        async for result in pipeline.run(Query.create(line) for line in lines):
            print(result.match_level, result.lat, result.lon)
        ```

    A failure in the source or in any stage is re-raised from ``run()`` after
    the results already ahead of it have been yielded. No more input is read
    after a failure and every stage task is cancelled.
    """

    def __init__(self, stages: Sequence[Stage], buffer_size: int = 64):
        if buffer_size < 1:
            raise ValueError("buffer_size must be at least 1")
        self.stages: List[Stage] = list(stages)
        self.buffer_size = buffer_size

    async def process(self, query: Query) -> Query:
        """Run a single Query through every stage."""
        for stage in self.stages:
            query = await stage.process(query)
        return query

    async def run(self, source: QuerySource) -> AsyncIterator[Query]:
        """Yield one result per source Query, in source order."""
        queues = [
            asyncio.Queue(maxsize=self.buffer_size)
            for _ in range(len(self.stages) + 1)
        ]
        tasks = [asyncio.create_task(self._feed(source, queues[0]))]
        for index, stage in enumerate(self.stages):
            tasks.append(asyncio.create_task(
                self._work(stage, queues[index], queues[index + 1])
            ))

        try:
            while True:
                item = await queues[-1].get()
                if item is _DONE:
                    break
                if isinstance(item, _Failure):
                    logger.error(f"Pipeline aborted in {item.stage}: {item.error}")
                    raise item.error
                yield item
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _feed(self, source: QuerySource, outbox: asyncio.Queue) -> None:
        try:
            if hasattr(source, "__aiter__"):
                async for query in source:
                    await outbox.put(query)
            else:
                for query in source:
                    await outbox.put(query)
        except Exception as e:
            await outbox.put(_Failure(e, "source"))
            return
        await outbox.put(_DONE)

    async def _work(self, stage: Stage, inbox: asyncio.Queue, outbox: asyncio.Queue) -> None:
        while True:
            item = await inbox.get()
            if item is _DONE or isinstance(item, _Failure):
                await outbox.put(item)
                return

            try:
                result = await stage.process(item)
            except Exception as e:
                await outbox.put(_Failure(e, stage.name))
                return
            await outbox.put(result)


def build_stages(store: LookupStore) -> List[Stage]:
    """
    Wire the default stage chain over ``store``.

    Block and parcel addressing are mutually exclusive: the parcel stage is
    skipped once a block has been resolved.
    """
    return [
        Stage("prefecture", PrefectureFinder(store), skip_when=("prefecture",)),
        Stage("city", CityFinder(store), skip_when=("city",)),
        Stage("town", TownFinder(store), skip_when=("block_id", "prc_id")),
        Stage("block", BlockFinder(store), skip_when=("block_id", "prc_id")),
        Stage("residential", ResidentialFinder(store), skip_when=("rsdt_id",)),
        Stage("parcel", ParcelFinder(store), skip_when=("block_id", "prc_id")),
    ]


__all__ = [
    "Stage",
    "GeocodePipeline",
    "QuerySource",
    "build_stages",
]
