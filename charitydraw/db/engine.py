import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from .utils import resolve_sqlite_url

logger = logging.getLogger(__name__)

load_dotenv()
# Repository root; relative SQLite paths in DB_URL resolve against it.
ROOT_DIR = Path(__file__).resolve().parents[2]
DEFAULT_SQLITE_URL = resolve_sqlite_url(
    os.getenv("DB_URL", "sqlite:///./dev.db"), ROOT_DIR
)


def _configure_sqlite(engine: Engine) -> None:
    """Enforce foreign keys and let SQLAlchemy own transaction boundaries.

    pysqlite defers ``BEGIN`` until the first DML statement, which turns a
    leading ``SAVEPOINT`` into an implicit transaction that ``RELEASE``
    commits. Disabling the driver's own handling and emitting ``BEGIN``
    explicitly keeps ``Session.begin_nested()`` scoped correctly.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def make_engine(database_url: Optional[str] = None, echo: bool = False) -> Engine:
    """Create an engine for ``database_url`` (defaults to ``DB_URL``)."""
    url = database_url or DEFAULT_SQLITE_URL
    engine = create_engine(url, echo=echo, future=True)
    if url.startswith("sqlite"):
        _configure_sqlite(engine)
    logger.debug(f"Created engine for {engine.url.render_as_string(hide_password=True)}")
    return engine


def get_sessionmaker(engine: Engine) -> sessionmaker:
    # Objects stay readable after commit; workflows hand them back to callers.
    return sessionmaker(bind=engine, expire_on_commit=False, future=True)
