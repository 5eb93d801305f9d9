"""Database module."""

from novelflow.db.config_store import GlobalConfigStore, config_store
from novelflow.db.database import Database, close_database, get_db, init_database
from novelflow.db.documents import EMPTY_DOCUMENT, decode_document, encode_document
from novelflow.db.errors import (
    ConstraintViolationError,
    InitializationError,
    NotFoundError,
    SerializationError,
    StoreBusyError,
    StoreError,
)
from novelflow.db.execution_store import ExecutionStore, execution_store
from novelflow.db.migrations import LATEST_VERSION, MIGRATIONS, Migration, run_migrations
from novelflow.db.setting_store import SettingStore, setting_store
from novelflow.db.workflow_store import WorkflowStore, workflow_store

__all__ = [
    "Database",
    "get_db",
    "init_database",
    "close_database",
    "encode_document",
    "decode_document",
    "EMPTY_DOCUMENT",
    "Migration",
    "MIGRATIONS",
    "LATEST_VERSION",
    "run_migrations",
    "StoreError",
    "InitializationError",
    "NotFoundError",
    "ConstraintViolationError",
    "StoreBusyError",
    "SerializationError",
    "workflow_store",
    "WorkflowStore",
    "setting_store",
    "SettingStore",
    "execution_store",
    "ExecutionStore",
    "config_store",
    "GlobalConfigStore",
]
