import hashlib
import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from sqlalchemy import select, update
from sqlalchemy.engine import Connection

from .database import Database, STATUS_COLUMNS


METADATA_FIELDS = (
    "title",
    "first_author_lastname",
    "authors",
    "publication_year",
    "doi",
    "journal",
    "volume",
    "issue",
    "pages",
    "issn",
    "publisher",
    "bibliography",
    "language",
)

JSON_METADATA_FIELDS = ("authors", "bibliography")


def now_iso() -> str:
    return datetime.now().astimezone().isoformat(timespec="seconds")


def file_md5(file_path: Union[str, Path]) -> str:
    """Content hash used to recognise a document across runs."""
    digest = hashlib.md5()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _decode_document(row: Dict[str, Any]) -> Dict[str, Any]:
    doc = dict(row)
    for name in JSON_METADATA_FIELDS + ("ocr_images",):
        value = doc.get(name)
        if isinstance(value, str):
            try:
                doc[name] = json.loads(value)
            except json.JSONDecodeError:
                pass
    return doc


class DocumentRepository:
    """Document rows: identity, OCR payload, metadata and stage statuses.

    Each method is a single-document write or read; stage statuses are plain
    text (NULL, "completed", or failure/desync text).
    """

    def __init__(self, db: Database):
        self.db = db
        self.table = db.documents

    def register(self, file_path: Union[str, Path]) -> int:
        """Get-or-create the document row for a file by content hash."""
        path = Path(file_path)
        file_hash = file_md5(path)

        def _register(conn: Connection) -> int:
            existing = conn.execute(
                select(self.table.c.id).where(self.table.c.file_hash == file_hash)
            ).scalar()
            if existing is not None:
                return existing

            result = conn.execute(
                self.table.insert().values(
                    file_name=path.name,
                    file_path=str(path.resolve()),
                    file_hash=file_hash,
                    file_size=path.stat().st_size,
                    upload_timestamp=now_iso(),
                )
            )
            return result.inserted_primary_key[0]

        return self.db.write(_register)

    def get(self, document_id: int) -> Optional[Dict[str, Any]]:
        with self.db.read() as conn:
            row = conn.execute(
                select(self.table).where(self.table.c.id == document_id)
            ).mappings().first()
        return _decode_document(row) if row else None

    def get_by_hash(self, file_hash: str) -> Optional[Dict[str, Any]]:
        with self.db.read() as conn:
            row = conn.execute(
                select(self.table).where(self.table.c.file_hash == file_hash)
            ).mappings().first()
        return _decode_document(row) if row else None

    def list_documents(self, reviewed_only: bool = False) -> List[Dict[str, Any]]:
        query = select(self.table).order_by(self.table.c.id)
        if reviewed_only:
            query = query.where(self.table.c.reviewed_at.is_not(None))
        with self.db.read() as conn:
            rows = conn.execute(query).mappings().all()
        return [_decode_document(row) for row in rows]

    def _update(self, document_id: int, values: Dict[str, Any], conn: Optional[Connection] = None):
        statement = update(self.table).where(self.table.c.id == document_id).values(**values)
        if conn is not None:
            conn.execute(statement)
        else:
            self.db.write(lambda c: c.execute(statement))

    def save_ocr(
        self,
        document_id: int,
        content: str,
        images: Optional[List[Dict[str, Any]]] = None,
        provider: Optional[str] = None,
        log: Optional[str] = None,
    ):
        self._update(document_id, {
            "document_content": content,
            "ocr_images": json.dumps(images or []),
            "ocr_provider": provider,
            "ocr_log": log,
        })

    def save_metadata(
        self,
        document_id: int,
        metadata: Dict[str, Any],
        model: Optional[str] = None,
        log: Optional[str] = None,
    ):
        """
        Store publication metadata, keeping existing values where the new
        value is null or empty.
        """
        values: Dict[str, Any] = {}
        for name in METADATA_FIELDS:
            value = metadata.get(name)
            if value is None or value == "" or value == []:
                continue
            if name in JSON_METADATA_FIELDS:
                value = json.dumps(value if isinstance(value, list) else [value])
            values[name] = value

        values["metadata_llm_model"] = model
        values["metadata_log"] = log
        self._update(document_id, values)

    def fill_missing_metadata(self, document_id: int, metadata: Dict[str, Any]) -> List[str]:
        """
        Store metadata only into fields that are currently empty.

        Returns the names of the fields that were filled.
        """
        def _fill(conn: Connection) -> List[str]:
            row = conn.execute(
                select(self.table).where(self.table.c.id == document_id)
            ).mappings().first()
            if row is None:
                raise ValueError(f"Document {document_id} not found")

            values: Dict[str, Any] = {}
            for name in METADATA_FIELDS:
                value = metadata.get(name)
                if value is None or value == "" or value == []:
                    continue
                if row[name] not in (None, "", "[]"):
                    continue
                if name in JSON_METADATA_FIELDS:
                    value = json.dumps(value if isinstance(value, list) else [value])
                values[name] = value

            if values:
                self._update(document_id, values, conn=conn)
            return list(values)

        return self.db.write(_fill)

    def set_stage_model(
        self,
        document_id: int,
        stage: str,
        model: Optional[str],
        log: Optional[str] = None,
        reasoning: Optional[str] = None,
    ):
        self._update(document_id, {
            f"{stage}_llm_model": model,
            f"{stage}_log": log,
            f"{stage}_reasoning": reasoning,
        })

    def set_status(self, document_id: int, stage: str, status: Optional[str]):
        self._update(document_id, {STATUS_COLUMNS[stage]: status})

    def reset_statuses(self, document_id: int, stages: Iterable[str]):
        """Set the given stages' statuses to NULL in one write."""
        values = {STATUS_COLUMNS[stage]: None for stage in stages}
        if values:
            self._update(document_id, values)

    def set_records_extracted(self, document_id: int, count: int):
        self._update(document_id, {"records_extracted": count})

    def mark_reviewed(self, document_id: int, conn: Optional[Connection] = None):
        self._update(document_id, {"reviewed_at": now_iso()}, conn=conn)
