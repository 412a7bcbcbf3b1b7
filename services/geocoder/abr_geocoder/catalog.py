"""
Dataset supply: CKAN catalog client and update checks.

Handles:
- Listing the resources of a catalog package (package_show)
- Streaming resource content to disk with retries
- Extracting dataset CSV files from downloaded archives
- Comparing local and remote resource metadata
- Persisting local metadata in the dataset_metadata table
"""

import asyncio
import shutil
import zipfile
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiofiles
import asyncpg
import httpx
from pydantic import BaseModel, ConfigDict

from abr_core.errors import CatalogError

from .dataset import DatasetFileMeta
from .logging_utils import get_logger, set_dataset

logger = get_logger(__name__)


class DatasetResource(BaseModel):
    """Metadata of one downloadable dataset resource."""

    model_config = ConfigDict(frozen=True)

    name: str
    checksum: str = ""
    content_length: Optional[int] = None
    last_modified: str = ""
    url: str = ""

    @classmethod
    def from_ckan(cls, resource: Dict[str, Any]) -> "DatasetResource":
        size = resource.get("size")
        return cls(
            name=resource.get("name") or resource.get("id") or "",
            checksum=resource.get("hash") or "",
            content_length=int(size) if size not in (None, "") else None,
            last_modified=resource.get("last_modified") or resource.get("metadata_modified") or "",
            url=resource.get("url") or "",
        )


def needs_update(local: Optional[DatasetResource], remote: DatasetResource) -> bool:
    """
    Whether ``remote`` differs from what was last loaded.

    Empty fields on either side are not compared; a resource never loaded
    always needs an update.
    """
    if local is None:
        return True
    if local.checksum and remote.checksum:
        return local.checksum != remote.checksum
    if local.last_modified and remote.last_modified and local.last_modified != remote.last_modified:
        return True
    if local.content_length is not None and remote.content_length is not None:
        return local.content_length != remote.content_length
    return False


class CkanCatalogClient:
    """
    Async client for a CKAN catalog.

    Example:
        ```python
        async with CkanCatalogClient(settings.CKAN_BASE_URL) as client:
            for resource in await client.list_resources("ba000001"):
                await client.download(resource, Path("datasets"))
        ```
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            follow_redirects=True,
            transport=transport,
        )

    async def __aenter__(self) -> "CkanCatalogClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        if not self._client.is_closed:
            await self._client.aclose()

    async def _get_json(self, path: str, params: Dict[str, str]) -> Dict[str, Any]:
        for attempt in range(self.max_retries):
            try:
                response = await self._client.get(path, params=params)
                response.raise_for_status()
                return response.json()

            except (httpx.HTTPError, ValueError) as e:
                logger.warning(
                    f"Catalog request {path} failed (attempt {attempt + 1}/{self.max_retries}): {e}"
                )

                if attempt < self.max_retries - 1:
                    await asyncio.sleep(self.retry_delay * (attempt + 1))
                else:
                    logger.error(f"Catalog request {path} failed after {self.max_retries} attempts")
                    raise CatalogError(f"Catalog request {path} failed: {e}") from e

        raise CatalogError(f"Catalog request {path} was not attempted")

    async def list_resources(self, package_id: str) -> List[DatasetResource]:
        """
        Raises:
            CatalogError: Catalog unreachable or response malformed
        """
        payload = await self._get_json("/api/3/action/package_show", {"id": package_id})

        if not isinstance(payload, dict) or not payload.get("success"):
            raise CatalogError(f"Catalog package '{package_id}' lookup was not successful")

        resources = (payload.get("result") or {}).get("resources")
        if not isinstance(resources, list):
            raise CatalogError(f"Catalog package '{package_id}' has no resource list")

        return [DatasetResource.from_ckan(resource) for resource in resources]

    async def download(self, resource: DatasetResource, dest_dir: Path) -> Path:
        """
        Stream a resource to ``dest_dir``.

        Content is written to a ``.part`` file and renamed once complete.

        Returns:
            Path: Downloaded file

        Raises:
            CatalogError: Download failed on every attempt
        """
        dest_dir = Path(dest_dir)
        dest_dir.mkdir(parents=True, exist_ok=True)
        filename = Path(httpx.URL(resource.url).path).name or resource.name
        destination = dest_dir / filename
        partial = destination.with_name(destination.name + ".part")

        for attempt in range(self.max_retries):
            try:
                async with self._client.stream("GET", resource.url) as response:
                    response.raise_for_status()
                    async with aiofiles.open(partial, "wb") as f:
                        async for chunk in response.aiter_bytes():
                            await f.write(chunk)

                partial.replace(destination)
                if attempt > 0:
                    logger.info(f"Downloaded {filename} after {attempt + 1} attempts")
                return destination

            except httpx.HTTPError as e:
                logger.warning(
                    f"Download of {filename} failed (attempt {attempt + 1}/{self.max_retries}): {e}"
                )

                if attempt < self.max_retries - 1:
                    await asyncio.sleep(self.retry_delay * (attempt + 1))
                else:
                    logger.error(f"Download of {filename} failed after {self.max_retries} attempts")
                    partial.unlink(missing_ok=True)
                    raise CatalogError(f"Download of {filename} failed: {e}") from e

        raise CatalogError(f"Download of {filename} was not attempted")


def extract_datasets(archive: Path, extract_to: Path) -> List[Path]:
    """
    Extract dataset CSV files from a downloaded archive.

    Nested archives (the nationwide package zips per-file zips) are
    extracted recursively. Plain CSV downloads are copied into
    ``extract_to``.

    Raises:
        CatalogError: Archive is not a valid zip
    """
    archive = Path(archive)
    extract_to = Path(extract_to)
    if archive.suffix.lower() == ".csv":
        if archive.parent.resolve() == extract_to.resolve():
            return [archive]
        extract_to.mkdir(parents=True, exist_ok=True)
        return [Path(shutil.copy2(archive, extract_to / archive.name))]

    extract_to.mkdir(parents=True, exist_ok=True)
    try:
        with zipfile.ZipFile(archive, "r") as zip_ref:
            members = zip_ref.namelist()
            zip_ref.extractall(extract_to)
    except zipfile.BadZipFile as e:
        raise CatalogError(f"{archive.name} is not a valid zip archive") from e

    extracted = []
    for member in members:
        path = extract_to / member
        if path.suffix.lower() == ".zip":
            extracted.extend(extract_datasets(path, extract_to))
            path.unlink(missing_ok=True)
        elif DatasetFileMeta.from_path(path) is not None:
            extracted.append(path)

    logger.info(f"Extracted {len(extracted)} dataset files from {archive.name}")
    return extracted


async def load_local_metadata(pool: asyncpg.Pool) -> Dict[str, DatasetResource]:
    """Metadata of the resources last loaded, by resource name."""
    async with pool.acquire() as conn:
        rows = await conn.fetch(
            "SELECT name, checksum, content_length, last_modified, url FROM dataset_metadata"
        )
    return {
        row["name"]: DatasetResource(
            name=row["name"],
            checksum=row["checksum"] or "",
            content_length=row["content_length"],
            last_modified=row["last_modified"] or "",
            url=row["url"] or "",
        )
        for row in rows
    }


async def save_metadata(pool: asyncpg.Pool, resource: DatasetResource) -> None:
    set_dataset(resource.name)
    try:
        async with pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO dataset_metadata
                    (name, checksum, content_length, last_modified, url, updated_at)
                VALUES ($1, $2, $3, $4, $5, now())
                ON CONFLICT (name) DO UPDATE SET
                    checksum = EXCLUDED.checksum,
                    content_length = EXCLUDED.content_length,
                    last_modified = EXCLUDED.last_modified,
                    url = EXCLUDED.url,
                    updated_at = now()
                """,
                resource.name,
                resource.checksum,
                resource.content_length,
                resource.last_modified,
                resource.url,
            )
        logger.debug("Saved dataset metadata")
    finally:
        set_dataset(None)


__all__ = [
    "DatasetResource",
    "needs_update",
    "CkanCatalogClient",
    "extract_datasets",
    "load_local_metadata",
    "save_metadata",
]
