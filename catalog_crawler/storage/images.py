"""Product image mirroring into object storage."""

import asyncio
import logging
import mimetypes
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import httpx
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_crawler import metrics
from catalog_crawler.db.models import Product
from catalog_crawler.ingest.http_client import default_headers

logger = logging.getLogger(__name__)


class ImageStorage(ABC):
    """Destination for mirrored images."""

    @abstractmethod
    async def put(self, key: str, data: bytes, content_type: str) -> str:
        """
        Store `data` under `key`, overwriting any existing object.

        Returns:
            Path or URL of the stored object
        """
        pass


class LocalImageStorage(ImageStorage):
    """Writes images to a local directory."""

    def __init__(self, root: str | Path):
        self.root = Path(root)

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        path = self.root / key
        await asyncio.to_thread(self._write, path, data)
        return str(path)

    @staticmethod
    def _write(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)


class SupabaseImageStorage(ImageStorage):
    """Uploads images to a Supabase Storage bucket."""

    def __init__(self, url: str, key: str, bucket: str = "product-images", client=None):
        if client is None:
            if not url or not key:
                raise ValueError("Supabase storage requires SUPABASE_URL and SUPABASE_KEY")
            from supabase import create_client

            client = create_client(url, key)
        self.client = client
        self.bucket = bucket

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        # The supabase client is synchronous
        await asyncio.to_thread(
            self.client.storage.from_(self.bucket).upload,
            key,
            data,
            {"content-type": content_type, "upsert": "true"},
        )
        return key


def build_image_storage(settings) -> ImageStorage:
    """Storage backend selected by `settings.image_storage`."""
    backend = settings.image_storage.lower()
    if backend == "local":
        return LocalImageStorage(settings.image_dir)
    if backend == "supabase":
        return SupabaseImageStorage(
            settings.supabase_url,
            settings.supabase_key,
            bucket=settings.supabase_bucket,
        )
    raise ValueError(f"Unknown image storage '{settings.image_storage}'")


class ImageMirror:
    """
    Best-effort copy of a product's image into storage.

    One download attempt, one upload, then the product row's `image_path`
    is patched. Failures are logged and dropped; they never affect the
    product upsert that triggered them.
    """

    def __init__(
        self,
        storage: ImageStorage,
        session_factory: async_sessionmaker[AsyncSession],
        extension: str = "jpg",
        timeout: float = 20.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.storage = storage
        self.session_factory = session_factory
        self.extension = extension.lstrip(".")
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
                headers=default_headers(),
            )
        return self._client

    def key_for(self, product_id: int) -> str:
        return f"{product_id}.{self.extension}"

    async def mirror(self, product_id: int, image_url: str) -> Optional[str]:
        """
        Download, store and record the image of one product.

        Returns:
            Stored path, or None if any step failed
        """
        try:
            resp = await self._get_client().get(image_url)
            resp.raise_for_status()
            data = resp.content
            if not data:
                raise ValueError("empty image body")

            content_type = resp.headers.get("content-type") or (
                mimetypes.guess_type(self.key_for(product_id))[0] or "image/jpeg"
            )
            stored = await self.storage.put(self.key_for(product_id), data, content_type)

            async with self.session_factory() as db:
                await db.execute(
                    update(Product).where(Product.id == product_id).values(image_path=stored)
                )
                await db.commit()

            metrics.record_image_mirror(True)
            logger.debug(f"Mirrored image for product {product_id} to {stored}")
            return stored

        except Exception as e:
            metrics.record_image_mirror(False)
            logger.warning(
                f"Image mirror failed for product {product_id} ({image_url}): "
                f"{type(e).__name__}: {e}"
            )
            return None

    async def close(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
