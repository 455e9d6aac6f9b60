from formflow.config import Config
from formflow.enums import StoreType
from formflow.errors import ConfigException

from .base import DefinitionStore, SubmissionStore
from .db import DBStore
from .memory import MemoryStore


def get_store(*, config: Config) -> DBStore | MemoryStore:
    """Build the document store selected by ``store.type``.

    The DB store expects ``formflow.db.init_db`` to have been called.
    """
    store_type = config.store.type

    if store_type == StoreType.DB:
        return DBStore()

    if store_type == StoreType.MEMORY:
        return MemoryStore()

    raise ConfigException(f"Unknown store type: {store_type}")


__all__ = [
    "DBStore",
    "DefinitionStore",
    "MemoryStore",
    "SubmissionStore",
    "get_store",
]
