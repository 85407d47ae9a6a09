"""Media downloads for the local catalog, deduplicated by source URL."""

import asyncio
import hashlib
import re
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from urllib.parse import unquote, urlparse

import httpx
import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_sync.config import Settings
from catalog_sync.infrastructure.database.models import CatalogMedia, utcnow

logger = structlog.get_logger()

_SAFE_NAME = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True)
class MediaRecord:
    id: int
    url: str
    original_url: str


def _filename_for(url: str) -> str:
    name = PurePosixPath(unquote(urlparse(url).path)).name or "image"
    name = _SAFE_NAME.sub("-", name).strip("-") or "image"
    digest = hashlib.sha1(url.encode()).hexdigest()[:10]
    return f"{digest}-{name}"


class MediaLibrary:
    """Downloads remote images once and serves them from ``media_root``."""

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        http_client: httpx.AsyncClient | None = None,
    ):
        self.settings = settings
        self.session_factory = session_factory
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=settings.media_download_timeout, follow_redirects=True
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def find_by_url(self, url: str) -> MediaRecord | None:
        async with self.session_factory() as session:
            media = await session.scalar(select(CatalogMedia).where(CatalogMedia.original_url == url))
            return self._record(media) if media else None

    async def attach_from_url(self, url: str) -> MediaRecord | None:
        """Return the local copy of ``url``, downloading it on first use.

        Returns None when the download fails; the failure is logged.
        """
        existing = await self.find_by_url(url)
        if existing:
            return existing

        try:
            response = await self._client.get(url)
        except httpx.HTTPError as e:
            logger.warning("Media download failed", url=url, error=str(e))
            return None
        if response.status_code != 200 or not response.content:
            logger.warning("Media download failed", url=url, status_code=response.status_code)
            return None

        now = utcnow()
        relative = Path(f"{now:%Y}") / f"{now:%m}" / _filename_for(url)
        target = Path(self.settings.media_root) / relative
        await asyncio.to_thread(self._write, target, response.content)

        media = CatalogMedia(
            original_url=url,
            file_path=str(target),
            url=f"{self.settings.media_base_url}/{relative.as_posix()}",
            mime_type=response.headers.get("content-type"),
        )
        async with self.session_factory() as session:
            session.add(media)
            try:
                await session.commit()
            except IntegrityError:
                # Another driver stored the same URL first
                await session.rollback()
                return await self.find_by_url(url)

        logger.debug("Media stored", url=url, media_id=media.id)
        return self._record(media)

    @staticmethod
    def _write(target: Path, content: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)

    @staticmethod
    def _record(media: CatalogMedia) -> MediaRecord:
        return MediaRecord(id=media.id, url=media.url, original_url=media.original_url)
