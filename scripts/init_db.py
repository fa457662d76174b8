"""Create the insight, prediction, interaction, training and model metrics tables."""

import asyncio

from config.settings import settings
from ops_insight.db.connection import make_engine
from ops_insight.db.models import Base


async def init() -> None:
    engine = make_engine(settings.database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    print("[init_db] Tables created successfully.")
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(init())
