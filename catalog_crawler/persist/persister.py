"""Idempotent product upserts keyed by detail page link."""

import asyncio
import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_crawler import metrics
from catalog_crawler.db.models import Product
from catalog_crawler.ingest.base import OTHER_SUBCATEGORY, ProductRecord
from catalog_crawler.storage.images import ImageMirror

logger = logging.getLogger(__name__)

INSERTED = "inserted"
UPDATED = "updated"
SKIPPED = "skipped"
CONFLICT = "conflict"
ERROR = "error"

# Outcomes that mean the row is stored
SUCCESS_OUTCOMES = (INSERTED, UPDATED, SKIPPED, CONFLICT)


@dataclass
class UpsertResult:
    """Outcome of persisting one record."""

    outcome: str
    product_id: Optional[int] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome in SUCCESS_OUTCOMES


@dataclass
class PersistSummary:
    """Tally of upsert outcomes for a batch of records."""

    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    conflicts: int = 0
    errors: int = 0
    error_messages: list[str] = field(default_factory=list)

    def add(self, result: UpsertResult) -> None:
        if result.outcome == INSERTED:
            self.inserted += 1
        elif result.outcome == UPDATED:
            self.updated += 1
        elif result.outcome == SKIPPED:
            self.skipped += 1
        elif result.outcome == CONFLICT:
            self.conflicts += 1
        else:
            self.errors += 1
            if result.error:
                self.error_messages.append(result.error)

    @property
    def saved(self) -> int:
        return self.inserted + self.updated + self.skipped + self.conflicts

    @property
    def total(self) -> int:
        return self.saved + self.errors


def placeholder_link(base_url: str, category: str, name: str) -> str:
    """Stable stand-in link for records whose page lists no detail link."""
    digest = hashlib.sha1(f"{category}\x00{name}".encode("utf-8")).hexdigest()
    return f"{base_url.rstrip('/')}/p/{digest}"


class ProductPersister:
    """
    Writes product records to the `products` table.

    The link is the natural key: a point lookup decides between insert and
    update, and the unique constraint on `link` settles concurrent inserts.
    New rows with an image URL get a background image mirror task.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        base_url: str,
        skip_existing: bool = False,
        max_name_length: int = 200,
        image_mirror: Optional[ImageMirror] = None,
    ):
        self.session_factory = session_factory
        self.base_url = base_url
        self.skip_existing = skip_existing
        self.max_name_length = max_name_length
        self.image_mirror = image_mirror
        self._mirror_tasks: set[asyncio.Task] = set()

    def resolve_link(self, record: ProductRecord) -> str:
        if record.link:
            return record.link
        return placeholder_link(self.base_url, record.category, record.name)

    async def upsert(self, record: ProductRecord) -> UpsertResult:
        """
        Insert or update one record.

        Never raises for database errors: they are reported through the
        `error` outcome.
        """
        if not record.name or not record.name.strip():
            result = UpsertResult(ERROR, error="record has no name")
            metrics.record_upsert(result.outcome)
            return result

        result = await self._upsert(record)
        metrics.record_upsert(result.outcome)

        if result.outcome == INSERTED and result.product_id is not None:
            self._schedule_mirror(result.product_id, record.image_url)
        return result

    async def _upsert(self, record: ProductRecord) -> UpsertResult:
        link = self.resolve_link(record)
        name = record.name.strip()[: self.max_name_length]
        subcategory = record.subcategory or OTHER_SUBCATEGORY

        async with self.session_factory() as db:
            try:
                existing = await db.scalar(select(Product).where(Product.link == link))

                if existing is not None:
                    if self.skip_existing:
                        return UpsertResult(SKIPPED, product_id=existing.id)

                    existing.name = name
                    existing.image_url = record.image_url
                    existing.category = record.category
                    existing.subcategory = subcategory
                    existing.updated_at = datetime.utcnow()
                    await db.commit()
                    return UpsertResult(UPDATED, product_id=existing.id)

                product = Product(
                    name=name,
                    image_url=record.image_url,
                    link=link,
                    category=record.category,
                    subcategory=subcategory,
                )
                db.add(product)
                await db.commit()
                return UpsertResult(INSERTED, product_id=product.id)

            except IntegrityError as e:
                await db.rollback()
                return await self._resolve_integrity_error(db, name, link, e)

            except SQLAlchemyError as e:
                await db.rollback()
                logger.error(f"Failed to save '{name}' ({link}): {type(e).__name__}: {e}")
                return UpsertResult(ERROR, error=f"{type(e).__name__}: {e}")

    async def _resolve_integrity_error(
        self, db: AsyncSession, name: str, link: str, error: IntegrityError
    ) -> UpsertResult:
        """
        Tell a lost insert race on `link` apart from other constraint failures.

        Only when a row with the link exists after the rollback did another
        writer win; anything else (NOT NULL, length checks) is a real error.
        """
        try:
            winner_id = await db.scalar(select(Product.id).where(Product.link == link))
        except SQLAlchemyError as e:
            logger.error(f"Failed to re-check '{name}' ({link}): {type(e).__name__}: {e}")
            return UpsertResult(ERROR, error=f"{type(e).__name__}: {e}")

        if winner_id is not None:
            logger.info(f"Concurrent insert for {link}, keeping row {winner_id}")
            return UpsertResult(CONFLICT, product_id=winner_id)

        logger.error(f"Failed to save '{name}' ({link}): IntegrityError: {error.orig}")
        return UpsertResult(ERROR, error=f"IntegrityError: {error.orig}")

    async def upsert_many(self, records: Iterable[ProductRecord]) -> PersistSummary:
        """Upsert records one by one and tally the outcomes."""
        summary = PersistSummary()
        for record in records:
            summary.add(await self.upsert(record))
        return summary

    def _schedule_mirror(self, product_id: int, image_url: str) -> None:
        if self.image_mirror is None or not image_url:
            return
        task = asyncio.create_task(self.image_mirror.mirror(product_id, image_url))
        self._mirror_tasks.add(task)
        task.add_done_callback(self._mirror_tasks.discard)

    @property
    def pending_mirrors(self) -> int:
        return len(self._mirror_tasks)

    async def drain(self) -> None:
        """Wait for outstanding image mirror tasks."""
        if not self._mirror_tasks:
            return
        pending = list(self._mirror_tasks)
        logger.debug(f"Waiting for {len(pending)} image mirror task(s)")
        await asyncio.gather(*pending, return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        if self.image_mirror is not None:
            await self.image_mirror.close()
