import pytest
import pytest_asyncio

from sheetpipe.core.db import init_db, close_db
from sheetpipe.models.sheet import Sheet, Column

TEST_DB_URL = "sqlite://:memory:"
OWNER = "user-12345"


@pytest_asyncio.fixture
async def db():
    """Fresh in-memory database per test."""
    await init_db(TEST_DB_URL)
    yield
    await close_db()


@pytest_asyncio.fixture
async def sheet(db):
    """A sheet with three ordered columns, owned by OWNER."""
    sheet = await Sheet.create(user_id=OWNER, name="Cities & Weather (2024)")
    for position, title in enumerate(["City", "Weather", "News"]):
        await Column.create(sheet=sheet, position=position, title=title)
    return sheet


@pytest.fixture
def owner():
    return OWNER
