from pathlib import Path

from databases import Database
import pytest
import pytest_asyncio

from app import config
from domain.repository import LunchRepository


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'lunchbuddy.db'}"


@pytest_asyncio.fixture
async def repository(db_url: str):
    db = Database(db_url)
    await db.connect()
    repo = LunchRepository(db)
    await repo.create_tables()
    yield repo
    await db.disconnect()


@pytest.fixture
def cfg(db_url: str) -> config.Config:
    return config.Config(
        db_url=db_url,
        html_dir=Path(__file__).parent.parent / "assets" / "html",
    )
