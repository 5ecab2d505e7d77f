"""Resumable per-category crawl progress stored in a JSON file."""

import asyncio
import json
import logging
import os
import shutil
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class CategoryProgress:
    """Progress of one category."""

    last_page: int = 0
    total_products: int = 0
    completed: bool = False
    last_run: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "CategoryProgress":
        return cls(
            last_page=int(data.get("lastPage", 0) or 0),
            total_products=int(data.get("totalProducts", 0) or 0),
            completed=bool(data.get("completed", False)),
            last_run=data.get("lastRun"),
        )

    def to_dict(self) -> dict:
        return {
            "lastPage": self.last_page,
            "totalProducts": self.total_products,
            "completed": self.completed,
            "lastRun": self.last_run,
        }

    @property
    def next_page(self) -> int:
        return self.last_page + 1


class CheckpointStore:
    """
    JSON checkpoint shared by all category crawls of a run.

    File layout::

        {"categories": {"<name>": {"lastPage", "totalProducts", "completed", "lastRun"}},
         "startedAt": "...", "lastUpdate": "..."}

    `lastPage` never decreases for a category. Writes go through a temp file
    and `os.replace`, so a crash leaves either the old or the new file.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.categories: dict[str, CategoryProgress] = {}
        self.started_at: Optional[str] = None
        self.last_update: Optional[str] = None
        self._lock = asyncio.Lock()

    def load(self) -> "CheckpointStore":
        """Read the checkpoint file; a missing or unreadable file starts fresh."""
        self.categories = {}
        self.started_at = None
        self.last_update = None

        if not self.path.exists():
            return self

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            self.categories = {
                name: CategoryProgress.from_dict(progress)
                for name, progress in (data.get("categories") or {}).items()
            }
            self.started_at = data.get("startedAt")
            self.last_update = data.get("lastUpdate")
            logger.info(f"Loaded checkpoint with {len(self.categories)} categories from {self.path}")
        except (OSError, ValueError, TypeError, AttributeError) as e:
            logger.warning(f"Ignoring unreadable checkpoint {self.path}: {e}")
            self.categories = {}
        return self

    def to_dict(self) -> dict:
        return {
            "categories": {name: p.to_dict() for name, p in self.categories.items()},
            "startedAt": self.started_at,
            "lastUpdate": self.last_update,
        }

    def save(self) -> None:
        """Write the checkpoint atomically."""
        if self.started_at is None:
            self.started_at = _now_iso()
        self.last_update = _now_iso()

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.stem}-", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def get(self, category: str) -> CategoryProgress:
        """Progress for a category (a fresh record if unknown)."""
        return self.categories.get(category) or CategoryProgress()

    async def update(
        self,
        category: str,
        last_page: int,
        total_products: int,
        save: bool = True,
    ) -> CategoryProgress:
        """
        Record progress for a category.

        A `last_page` smaller than the stored one is ignored.
        """
        async with self._lock:
            progress = self.categories.setdefault(category, CategoryProgress())
            if last_page < progress.last_page:
                logger.warning(
                    f"{category}: refusing to move checkpoint back from page "
                    f"{progress.last_page} to {last_page}"
                )
            else:
                progress.last_page = last_page
            progress.total_products = max(progress.total_products, total_products)
            progress.last_run = _now_iso()
            if save:
                self.save()
            return progress

    async def mark_complete(self, category: str, total_products: Optional[int] = None) -> None:
        async with self._lock:
            progress = self.categories.setdefault(category, CategoryProgress())
            progress.completed = True
            if total_products is not None:
                progress.total_products = total_products
            progress.last_run = _now_iso()
            self.save()

    async def flush(self) -> None:
        async with self._lock:
            self.save()

    async def skip(self, category: str, total_products: int = 0) -> None:
        """Mark a category complete without crawling it."""
        await self.mark_complete(category, total_products)
        logger.info(f"{category}: marked complete ({total_products} products)")

    def reset(self, backup: bool = True) -> Optional[Path]:
        """
        Delete the checkpoint file, copying it aside first.

        Returns:
            Path of the backup copy, or None if there was nothing to back up
        """
        self.categories = {}
        self.started_at = None
        self.last_update = None

        if not self.path.exists():
            logger.info(f"No checkpoint to reset at {self.path}")
            return None

        backup_path = None
        if backup:
            stamp = int(datetime.now(timezone.utc).timestamp() * 1000)
            backup_path = self.path.with_name(f"{self.path.stem}-backup-{stamp}{self.path.suffix}")
            shutil.copyfile(self.path, backup_path)
            logger.info(f"Checkpoint backed up to {backup_path}")

        self.path.unlink()
        return backup_path
