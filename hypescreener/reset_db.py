import asyncio
from hypescreener.core.database import db_manager
from hypescreener.core.logging_config import setup_logging, get_logger
from hypescreener.db.models import Base

logger = get_logger("reset_db")


async def reset_db():
    logger.info("reset_db_start", tables=sorted(Base.metadata.tables))
    engine = db_manager.engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    logger.info("reset_db_complete")
    await engine.dispose()

if __name__ == "__main__":
    setup_logging()
    asyncio.run(reset_db())
