# backend/ridepay/init_db.py
"""Create the ledger tables for local development."""

import logging

from .core.config import get_settings
from .database import create_all_tables, create_db_engine

logger = logging.getLogger(__name__)


def init_db() -> None:
    settings = get_settings()
    engine = create_db_engine(settings.database_url)
    try:
        create_all_tables(engine)
        logger.info("Ledger tables created")
    finally:
        engine.dispose()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    init_db()
