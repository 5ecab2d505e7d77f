"""Tests for the crawl checkpoint file."""

import json

import pytest

from catalog_crawler.worker.checkpoint import CheckpointStore


@pytest.mark.asyncio
async def test_update_persists_in_file_format(tmp_path):
    path = tmp_path / "checkpoint.json"
    store = CheckpointStore(path).load()

    await store.update("Móveis", last_page=4, total_products=96)

    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["categories"]["Móveis"]["lastPage"] == 4
    assert data["categories"]["Móveis"]["totalProducts"] == 96
    assert data["categories"]["Móveis"]["completed"] is False
    assert data["categories"]["Móveis"]["lastRun"]
    assert data["startedAt"]
    assert data["lastUpdate"]


@pytest.mark.asyncio
async def test_last_page_never_moves_back(tmp_path):
    store = CheckpointStore(tmp_path / "checkpoint.json").load()

    await store.update("Móveis", last_page=7, total_products=10)
    await store.update("Móveis", last_page=3, total_products=12)

    assert store.get("Móveis").last_page == 7
    assert store.get("Móveis").next_page == 8


@pytest.mark.asyncio
async def test_round_trip_and_completion(tmp_path):
    path = tmp_path / "checkpoint.json"
    store = CheckpointStore(path).load()
    await store.update("Iluminação", last_page=12, total_products=300)
    await store.mark_complete("Iluminação", 310)

    reloaded = CheckpointStore(path).load()
    progress = reloaded.get("Iluminação")

    assert progress.completed
    assert progress.last_page == 12
    assert progress.total_products == 310
    assert reloaded.started_at == store.started_at


def test_unknown_category_starts_at_page_one(tmp_path):
    store = CheckpointStore(tmp_path / "missing.json").load()

    assert store.get("Tapetes").next_page == 1
    assert not store.get("Tapetes").completed


def test_corrupt_file_starts_fresh(tmp_path):
    path = tmp_path / "checkpoint.json"
    path.write_text("{not json", encoding="utf-8")

    store = CheckpointStore(path).load()

    assert store.categories == {}


@pytest.mark.asyncio
async def test_reset_keeps_backup(tmp_path):
    path = tmp_path / "checkpoint.json"
    store = CheckpointStore(path).load()
    await store.update("Móveis", last_page=2, total_products=48)

    backup = store.reset()

    assert not path.exists()
    assert backup is not None and backup.exists()
    assert backup.name.startswith("checkpoint-backup-")
    assert json.loads(backup.read_text(encoding="utf-8"))["categories"]["Móveis"]["lastPage"] == 2
    assert store.categories == {}


def test_reset_without_file(tmp_path):
    assert CheckpointStore(tmp_path / "checkpoint.json").reset() is None


@pytest.mark.asyncio
async def test_skip_marks_complete(tmp_path):
    store = CheckpointStore(tmp_path / "checkpoint.json").load()

    await store.skip("Eletros", 42)

    assert store.get("Eletros").completed
    assert store.get("Eletros").total_products == 42
