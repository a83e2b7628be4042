# init_db.py
import argparse
import asyncio

from app.core.logger import setup_logging, get_logger
from app.db.sql import engine, init_db

logger = get_logger("init_db")


async def init_models(drop: bool) -> None:
    # init_db imports every model module so Base.metadata knows them
    await init_db(engine, drop=drop)
    await engine.dispose()
    logger.info("Database schema %s successfully!", "recreated" if drop else "created")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create the scheduling schema")
    parser.add_argument("--drop", action="store_true", help="drop all tables first (destructive)")
    args = parser.parse_args()
    setup_logging()
    asyncio.run(init_models(args.drop))
