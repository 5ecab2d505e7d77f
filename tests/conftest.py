"""Shared fixtures."""

import pytest

from catalog_crawler.config import Settings
from catalog_crawler.db.models import Base
from catalog_crawler.db.session import create_engine, create_session_factory


@pytest.fixture
def settings(tmp_path):
    """Settings isolated from the environment's files."""
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path}/catalog.db",
        checkpoint_file=str(tmp_path / "checkpoint.json"),
        log_dir=str(tmp_path / "logs"),
        image_dir=str(tmp_path / "images"),
        json_logs=False,
        min_page_delay_seconds=0,
        max_page_delay_seconds=0,
        category_delay_seconds=0,
        min_request_interval_seconds=0,
        request_jitter_seconds=0,
    )


@pytest.fixture
async def engine(settings):
    engine = create_engine(settings)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)
