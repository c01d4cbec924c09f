"""
Persistent store.

Usage:
    store = open_store("records.db", schema)
    doc_id = store.documents.register(pdf_path)
    store.records.list_for_document(doc_id)
"""

from pathlib import Path
from typing import Union

from ecoextract.infra.schema import RecordSchema

from .database import Database, STATUS_COLUMNS, create_db_engine
from .documents import DocumentRepository, METADATA_FIELDS, file_md5, now_iso
from .records import RecordRepository, UpdateResult, make_record_id
from .edits import EditRepository


class Store:
    """Database plus its three repositories."""

    def __init__(self, db: Database):
        self.db = db
        self.documents = DocumentRepository(db)
        self.records = RecordRepository(db)
        self.edits = EditRepository(db)

    @property
    def schema(self) -> RecordSchema:
        return self.db.schema

    def close(self):
        self.db.dispose()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


def open_store(
    db_path: Union[str, Path],
    schema: RecordSchema,
    busy_timeout_ms: int = 30000,
    write_retries: int = 5,
) -> Store:
    return Store(Database(db_path, schema, busy_timeout_ms=busy_timeout_ms, write_retries=write_retries))


__all__ = [
    "Database",
    "Store",
    "open_store",
    "STATUS_COLUMNS",
    "create_db_engine",
    "DocumentRepository",
    "RecordRepository",
    "EditRepository",
    "UpdateResult",
    "METADATA_FIELDS",
    "make_record_id",
    "file_md5",
    "now_iso",
]
