"""
Read-only access to what the pipeline stored.

    records = get_records(store, document_id=3)
    markdown = get_ocr_markdown(store, 3)
    stats = get_db_stats(store)
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select

from ecoextract.infra.storage import STATUS_COLUMNS, Store
from ecoextract.pipeline.status import StageStatus, StatusKind


def get_records(
    store: Store,
    document_id: Optional[int] = None,
    include_deleted: bool = True,
) -> List[Dict[str, Any]]:
    """Records of one document, or of every document when document_id is None."""
    if document_id is None:
        return store.records.list_all(include_deleted=include_deleted)
    return store.records.list_for_document(document_id, include_deleted=include_deleted)


def get_ocr_markdown(store: Store, document_id: int) -> Optional[str]:
    """The document's OCR text with page markers, or None before OCR has run."""
    document = store.documents.get(document_id)
    if document is None:
        return None
    return document.get("document_content") or None


@dataclass
class DatabaseStats:
    documents: int = 0
    reviewed_documents: int = 0
    records: int = 0
    active_records: int = 0
    deleted_records: int = 0
    human_added_records: int = 0
    human_edited_records: int = 0
    record_edits: int = 0
    # stage -> {"completed": n, "failed": n, "desync": n, "pending": n}
    stages: Dict[str, Dict[str, int]] = field(default_factory=dict)

    @property
    def message(self) -> str:
        return f"Database contains {self.documents} documents and {self.records} records"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _count(conn, table, *conditions) -> int:
    query = select(func.count()).select_from(table)
    for condition in conditions:
        query = query.where(condition)
    return conn.execute(query).scalar() or 0


def get_db_stats(store: Store) -> DatabaseStats:
    documents = store.db.documents
    records = store.db.records
    edits = store.db.record_edits

    with store.db.read() as conn:
        stats = DatabaseStats(
            documents=_count(conn, documents),
            reviewed_documents=_count(conn, documents, documents.c.reviewed_at.is_not(None)),
            records=_count(conn, records),
            active_records=_count(conn, records, records.c.deleted_by_user.is_(False)),
            deleted_records=_count(conn, records, records.c.deleted_by_user.is_(True)),
            human_added_records=_count(conn, records, records.c.added_by_user.is_(True)),
            human_edited_records=_count(conn, records, records.c.human_edited.is_(True)),
            record_edits=_count(conn, edits),
        )

        for stage, column_name in STATUS_COLUMNS.items():
            column = documents.c[column_name]
            counts = {"completed": 0, "failed": 0, "desync": 0, "pending": 0}
            rows = conn.execute(select(column, func.count()).group_by(column)).all()
            for value, n in rows:
                kind = StageStatus.from_db(value).kind
                if kind == StatusKind.UNSET:
                    counts["pending"] += n
                else:
                    counts[kind.value] += n
            stats.stages[stage] = counts

    return stats
