"""
Batch orchestration.

Ties the boundaries to the core:
- geocode_file: input file -> GeocodePipeline -> formatter -> output stream
- load_datasets: dataset directory -> IndexBuilder -> lookup store
- check_updates / update_datasets: catalog metadata -> download -> load
"""

import time
import uuid
from collections import Counter
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional, TextIO

import asyncpg
from pydantic import BaseModel, Field

from abr_core.lookup_store import LookupStore
from abr_core.models import Query
from abr_core.pipeline import GeocodePipeline, build_stages

from .catalog import (
    CkanCatalogClient,
    DatasetResource,
    extract_datasets,
    load_local_metadata,
    needs_update,
    save_metadata,
)
from .config import Settings
from .formatters import create_formatter
from .ingestion import IndexBuilder, write_records
from .logging_utils import get_logger, set_run_id
from .readers import read_queries

logger = get_logger(__name__)


class RunSummary(BaseModel):
    """Outcome of one geocoding run."""

    run_id: str
    total: int = 0
    by_level: Dict[str, int] = Field(default_factory=dict)
    elapsed_seconds: float = 0.0


async def geocode_file(
    settings: Settings,
    store: LookupStore,
    input_path: Path,
    output: TextIO,
    output_format: Optional[str] = None,
    encoding: Optional[str] = None,
) -> RunSummary:
    """
    Geocode every address line of ``input_path`` and write the results.

    Args:
        settings: Service settings (buffer, chunk and format defaults)
        store: Lookup store the stages query
        input_path: One address per line
        output: Text stream the formatted results are written to
        output_format: "csv" or "jsonl" (default: settings.OUTPUT_FORMAT)
        encoding: Input encoding (default: settings.INPUT_ENCODING, "auto" detects)

    Raises:
        GeocoderError: Store failure or contract violation aborts the run
    """
    run_id = str(uuid.uuid4())
    set_run_id(run_id)

    if encoding is None and settings.INPUT_ENCODING != "auto":
        encoding = settings.INPUT_ENCODING

    formatter = create_formatter(
        output_format or settings.OUTPUT_FORMAT,
        chunk_size=settings.FORMAT_CHUNK_SIZE,
    )
    pipeline = GeocodePipeline(build_stages(store), buffer_size=settings.PIPELINE_BUFFER_SIZE)
    levels: Counter = Counter()

    async def counted() -> AsyncIterator[Query]:
        async for result in pipeline.run(read_queries(input_path, encoding)):
            levels[result.match_level.value] += 1
            yield result

    logger.info(f"Geocoding {input_path}")
    start_time = time.time()

    async for text in formatter.format(counted()):
        output.write(text)
    output.flush()

    summary = RunSummary(
        run_id=run_id,
        total=sum(levels.values()),
        by_level=dict(levels),
        elapsed_seconds=round(time.time() - start_time, 3),
    )
    logger.info(
        f"Geocoded {summary.total} addresses in {summary.elapsed_seconds}s: {summary.by_level}"
    )
    return summary


async def load_datasets(
    settings: Settings,
    pool: asyncpg.Pool,
    dataset_dir: Optional[Path] = None,
) -> Dict[str, int]:
    """
    Load every dataset file of ``dataset_dir`` into the lookup store.

    Returns:
        dict: Records written per lookup level
    """
    directory = Path(dataset_dir or settings.DATASET_DIR)
    builder = IndexBuilder(chunk_size=settings.INGEST_CHUNK_SIZE)
    rows = builder.add_directory(directory)
    if not rows:
        logger.warning(f"No dataset rows found in {directory}")
        return {}

    return await write_records(builder.build_records(), pool)


async def check_updates(
    settings: Settings,
    pool: asyncpg.Pool,
    client: CkanCatalogClient,
) -> List[DatasetResource]:
    """Catalog resources that differ from what was last loaded."""
    local = await load_local_metadata(pool)
    remote = await client.list_resources(settings.CKAN_PACKAGE_ID)

    outdated = [
        resource for resource in remote
        if needs_update(local.get(resource.name), resource)
    ]
    logger.info(f"{len(outdated)} of {len(remote)} catalog resources need an update")
    return outdated


async def update_datasets(
    settings: Settings,
    pool: asyncpg.Pool,
    client: CkanCatalogClient,
) -> List[DatasetResource]:
    """
    Download and load outdated resources, then record their metadata.

    Returns:
        list: Resources that were updated
    """
    outdated = await check_updates(settings, pool, client)
    if not outdated:
        return []

    dataset_dir = Path(settings.DATASET_DIR)
    for resource in outdated:
        archive = await client.download(resource, dataset_dir / "downloads")
        extract_datasets(archive, dataset_dir)

    await load_datasets(settings, pool, dataset_dir)

    for resource in outdated:
        await save_metadata(pool, resource)
    return outdated


__all__ = [
    "RunSummary",
    "geocode_file",
    "load_datasets",
    "check_updates",
    "update_datasets",
]
