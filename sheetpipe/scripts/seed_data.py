# sheetpipe/scripts/seed_data.py
import asyncio
import logging
from sheetpipe.core.db import init_db, close_db
from sheetpipe.core.logging import setup_logging
from sheetpipe.models.sheet import ApiUser, Sheet, Column

log = logging.getLogger("sheetpipe.seed")

DEMO_USER = "demo-user"
DEMO_API_KEY = "sk-demo-sheetpipe"

DEMO_COLUMNS = [
    ("City", None),
    ("Weather", "Current weather summary for the city in the previous column."),
    ("Top News", "One-line headline of the most recent local news."),
]


async def seed():
    user, _ = await ApiUser.get_or_create(id=DEMO_USER, defaults={"api_key": DEMO_API_KEY})
    log.info(f"User: {user.id} (API key {user.api_key})")

    sheet, _ = await Sheet.get_or_create(user_id=user.id, name="Demo Sheet")
    log.info(f"Sheet: {sheet.id}")

    # Columns are keyed by position, re-running only refreshes titles and prompts (idempotent)
    for position, (title, prompt) in enumerate(DEMO_COLUMNS):
        column, created = await Column.get_or_create(sheet=sheet, position=position, defaults={"title": title, "prompt": prompt})
        if not created:
            column.title = title
            column.prompt = prompt
            await column.save(update_fields=["title", "prompt"])

    log.info(f"Seeded {len(DEMO_COLUMNS)} columns.")
    return sheet


async def main():
    setup_logging()
    await init_db()
    await seed()
    await close_db()

if __name__ == "__main__":
    asyncio.run(main())
