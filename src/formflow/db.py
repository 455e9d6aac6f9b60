"""SQLite connection pool for the DB-backed store."""

import logging
from pathlib import Path

from playhouse.pool import PooledSqliteDatabase

from .consts import DB_MAX_CONNECTIONS, DB_PRAGMAS, DB_STALE_TIMEOUT
from .models import FormRecord, SubmissionRecord, database_proxy

logger = logging.getLogger(__name__)

database = None

TABLES = [FormRecord, SubmissionRecord]


def init_db(db_path: str):
    """Bind the model proxy to a pooled SQLite database at ``db_path``."""
    global database

    db_dir = Path(db_path).parent
    if not db_dir.exists():
        db_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Created database directory: {db_dir}")

    database = PooledSqliteDatabase(
        db_path,
        max_connections=DB_MAX_CONNECTIONS,
        stale_timeout=DB_STALE_TIMEOUT,
        pragmas=DB_PRAGMAS,
        # store queries run in asyncio worker threads
        check_same_thread=False,
    )

    database_proxy.initialize(database)
    logger.info(f"Form store database: {db_path}")


def create_tables():
    database.create_tables(TABLES, safe=True)
    logger.debug(f"Ensured tables: {', '.join(m._meta.table_name for m in TABLES)}")


def open_store_db(db_path: str):
    """Initialize the pool and schema in one step."""
    init_db(db_path)
    create_tables()


def close_db():
    """Close every pooled connection."""
    global database
    if database:
        database.close_all()
        database = None
        logger.debug("Form store database closed")
