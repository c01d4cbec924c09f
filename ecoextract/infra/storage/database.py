"""
SQLite store shared by all pipeline workers.

SQLAlchemy Core over a single SQLite file in WAL mode: many concurrent
readers, one writer at a time. Every connection sets a bounded busy timeout,
and writes that still hit "database is locked" are retried a bounded number
of times with a short backoff.

The records table is built from the RecordSchema once per run; schema fields
added after the database was created are appended with ALTER TABLE.
"""

import logging
import random
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, TypeVar, Union

from sqlalchemy import (
    Boolean,
    Column,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Table,
    Text,
    create_engine,
    event,
    inspect,
    text,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import OperationalError

from ecoextract.infra.schema import RecordSchema


logger = logging.getLogger(__name__)

T = TypeVar('T')

STATUS_COLUMNS = {
    "ocr": "ocr_status",
    "metadata": "metadata_status",
    "extraction": "extraction_status",
    "refinement": "refinement_status",
}

SQL_COLUMN_TYPES = {
    "TEXT": Text,
    "INTEGER": Integer,
    "REAL": Float,
    "BOOLEAN": Boolean,
}


def _documents_table(metadata: MetaData) -> Table:
    return Table(
        "documents", metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("file_name", Text, nullable=False),
        Column("file_path", Text, nullable=False),
        Column("file_hash", Text, nullable=False, unique=True),
        Column("file_size", Integer),
        Column("upload_timestamp", Text, nullable=False),

        # Publication metadata
        Column("title", Text),
        Column("first_author_lastname", Text),
        Column("authors", Text),
        Column("publication_year", Integer),
        Column("doi", Text),
        Column("journal", Text),
        Column("volume", Text),
        Column("issue", Text),
        Column("pages", Text),
        Column("issn", Text),
        Column("publisher", Text),
        Column("bibliography", Text),
        Column("language", Text),

        # Content
        Column("document_content", Text),
        Column("ocr_images", Text),

        # Provenance and failed-attempt logs
        Column("ocr_provider", Text),
        Column("ocr_log", Text),
        Column("metadata_llm_model", Text),
        Column("metadata_log", Text),
        Column("extraction_llm_model", Text),
        Column("extraction_log", Text),
        Column("extraction_reasoning", Text),
        Column("refinement_llm_model", Text),
        Column("refinement_log", Text),
        Column("refinement_reasoning", Text),

        *(Column(name, Text) for name in STATUS_COLUMNS.values()),

        Column("records_extracted", Integer, nullable=False, server_default=text("0")),
        Column("reviewed_at", Text),
    )


def _records_table(metadata: MetaData, schema: RecordSchema) -> Table:
    field_columns = [
        Column(spec.name, SQL_COLUMN_TYPES[spec.sql_type])
        for spec in schema.fields.values()
    ]
    table = Table(
        "records", metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("document_id", Integer, ForeignKey("documents.id"), nullable=False),
        Column("record_id", Text, nullable=False),
        *field_columns,
        Column("extraction_timestamp", Text),
        Column("llm_model", Text),
        Column("prompt_hash", Text),
        Column("added_by_user", Boolean, nullable=False, server_default=text("0")),
        Column("deleted_by_user", Boolean, nullable=False, server_default=text("0")),
        Column("human_edited", Boolean, nullable=False, server_default=text("0")),
    )
    Index("idx_records_document", table.c.document_id)
    Index("idx_records_record_id", table.c.document_id, table.c.record_id)
    return table


def _record_edits_table(metadata: MetaData) -> Table:
    table = Table(
        "record_edits", metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("document_id", Integer, ForeignKey("documents.id"), nullable=False),
        Column("record_id", Integer, ForeignKey("records.id"), nullable=False),
        Column("column_name", Text, nullable=False),
        Column("original_value", Text),
        Column("new_value", Text),
        Column("edited_at", Text, nullable=False),
    )
    Index("idx_record_edits_document", table.c.document_id)
    return table


def create_db_engine(db_path: Union[str, Path], busy_timeout_ms: int = 30000) -> Engine:
    """SQLite engine whose connections use WAL, foreign keys and a busy timeout."""
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={
            "timeout": busy_timeout_ms / 1000,
            "check_same_thread": False,
        },
    )

    @event.listens_for(engine, "connect")
    def _configure_connection(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)}")
        cursor.execute("PRAGMA journal_mode = WAL")
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.close()

    return engine


def is_locked_error(error: OperationalError) -> bool:
    message = str(error.orig if error.orig is not None else error).lower()
    return "database is locked" in message or "database is busy" in message


class Database:
    """
    Engine, table definitions and the bounded write retry.

    Usage:
        db = Database("records.db", schema)
        with db.read() as conn:
            ...
        db.write(lambda conn: conn.execute(...))
    """

    def __init__(
        self,
        db_path: Union[str, Path],
        schema: RecordSchema,
        busy_timeout_ms: int = 30000,
        write_retries: int = 5,
        retry_delay: float = 0.1,
    ):
        self.db_path = Path(db_path)
        self.schema = schema
        self.write_retries = max(1, write_retries)
        self.retry_delay = retry_delay

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.engine = create_db_engine(self.db_path, busy_timeout_ms)

        self.metadata = MetaData()
        self.documents = _documents_table(self.metadata)
        self.records = _records_table(self.metadata, schema)
        self.record_edits = _record_edits_table(self.metadata)

        self.initialize()

    def initialize(self):
        """Create missing tables and append columns added since creation."""
        self.metadata.create_all(self.engine)

        inspector = inspect(self.engine)
        missing = []
        for table in (self.documents, self.records):
            existing = {c["name"] for c in inspector.get_columns(table.name)}
            missing.extend(c for c in table.columns if c.name not in existing)
        if not missing:
            return

        def _add_columns(conn: Connection):
            for column in missing:
                sql_type = column.type.compile(dialect=self.engine.dialect)
                conn.execute(text(f'ALTER TABLE {column.table.name} ADD COLUMN "{column.name}" {sql_type}'))
                logger.info(f"Added column {column.table.name}.{column.name} ({sql_type})")

        self.write(_add_columns)

    @contextmanager
    def read(self) -> Iterator[Connection]:
        with self.engine.connect() as conn:
            yield conn

    def write(self, fn: Callable[[Connection], T]) -> T:
        """
        Run fn inside one transaction, retrying on lock contention.

        Raises:
            OperationalError: Lock still held after write_retries attempts,
                or any other database error
        """
        for attempt in range(self.write_retries):
            try:
                with self.engine.begin() as conn:
                    return fn(conn)
            except OperationalError as e:
                if not is_locked_error(e) or attempt == self.write_retries - 1:
                    raise
                delay = self.retry_delay * (2 ** attempt) + random.uniform(0, self.retry_delay)
                logger.debug(f"Database locked, retrying write in {delay:.2f}s ({attempt + 1}/{self.write_retries})")
                time.sleep(delay)

    def dispose(self):
        self.engine.dispose()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.dispose()
        return False
