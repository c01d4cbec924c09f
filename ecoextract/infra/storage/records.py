import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import and_, func, select, update
from sqlalchemy.engine import Connection

from .database import Database
from .documents import now_iso


logger = logging.getLogger(__name__)

_SEQUENCE_RE = re.compile(r"-o(\d+)$")


def make_record_id(author_lastname: Optional[str], publication_year: Any, sequence_number: int) -> str:
    """
    Business key in the form {AuthorYear}-o{N}.

    >>> make_record_id("Smith-Jones", 2019, 3)
    'SmithJones2019-o3'
    >>> make_record_id(None, None, 1)
    'Unknownnd-o1'
    """
    clean_author = re.sub(r"[^A-Za-z]", "", author_lastname or "") or "Unknown"
    year = str(publication_year).strip() if publication_year not in (None, "") else "nd"
    return f"{clean_author}{year}-o{sequence_number}"


def max_sequence(record_ids: Iterable[str]) -> int:
    highest = 0
    for record_id in record_ids:
        match = _SEQUENCE_RE.search(record_id or "")
        if match:
            highest = max(highest, int(match.group(1)))
    return highest


@dataclass
class UpdateResult:
    """Outcome of an update-only write."""
    updated: List[str] = field(default_factory=list)
    protected: List[str] = field(default_factory=list)
    unknown: List[str] = field(default_factory=list)


class RecordRepository:
    """Record rows of the schema-driven records table.

    Extraction writes go through insert_new (never touches existing rows);
    refinement writes go through update_existing (never inserts). Human review
    uses the connection-level helpers inside its own transaction.
    """

    def __init__(self, db: Database):
        self.db = db
        self.table = db.records
        self.schema = db.schema

    def list_for_document(self, document_id: int, include_deleted: bool = True) -> List[Dict[str, Any]]:
        query = (
            select(self.table)
            .where(self.table.c.document_id == document_id)
            .order_by(self.table.c.id)
        )
        if not include_deleted:
            query = query.where(self.table.c.deleted_by_user.is_(False))
        with self.db.read() as conn:
            rows = conn.execute(query).mappings().all()
        return [self.schema.from_storage(row) for row in rows]

    def list_for_documents(self, document_ids: Iterable[int]) -> List[Dict[str, Any]]:
        ids = list(document_ids)
        if not ids:
            return []
        query = (
            select(self.table)
            .where(self.table.c.document_id.in_(ids))
            .order_by(self.table.c.id)
        )
        with self.db.read() as conn:
            rows = conn.execute(query).mappings().all()
        return [self.schema.from_storage(row) for row in rows]

    def list_all(self, include_deleted: bool = True) -> List[Dict[str, Any]]:
        query = select(self.table).order_by(self.table.c.document_id, self.table.c.id)
        if not include_deleted:
            query = query.where(self.table.c.deleted_by_user.is_(False))
        with self.db.read() as conn:
            rows = conn.execute(query).mappings().all()
        return [self.schema.from_storage(row) for row in rows]

    def count(self, document_id: int, include_deleted: bool = False) -> int:
        query = select(func.count()).select_from(self.table).where(
            self.table.c.document_id == document_id
        )
        if not include_deleted:
            query = query.where(self.table.c.deleted_by_user.is_(False))
        with self.db.read() as conn:
            return conn.execute(query).scalar() or 0

    def insert_new(
        self,
        document_id: int,
        records: List[Dict[str, Any]],
        author_lastname: Optional[str],
        publication_year: Any,
        llm_model: Optional[str],
        prompt_hash: Optional[str],
    ) -> List[str]:
        """
        Insert records as new rows and return their business keys.

        Sequence numbers continue after the highest existing one for the
        document, soft-deleted rows included, so keys are never reused.
        """
        if not records:
            return []

        def _insert(conn: Connection) -> List[str]:
            existing_ids = conn.execute(
                select(self.table.c.record_id).where(self.table.c.document_id == document_id)
            ).scalars().all()
            next_sequence = max_sequence(existing_ids) + 1
            timestamp = now_iso()

            assigned = []
            rows = []
            for offset, record in enumerate(records):
                record_id = make_record_id(author_lastname, publication_year, next_sequence + offset)
                assigned.append(record_id)
                rows.append({
                    **self.schema.to_storage(record),
                    "document_id": document_id,
                    "record_id": record_id,
                    "extraction_timestamp": timestamp,
                    "llm_model": llm_model,
                    "prompt_hash": prompt_hash,
                })

            conn.execute(self.table.insert(), rows)
            return assigned

        return self.db.write(_insert)

    def update_existing(
        self,
        document_id: int,
        records: List[Dict[str, Any]],
        llm_model: Optional[str],
        prompt_hash: Optional[str],
    ) -> UpdateResult:
        """
        Update rows matched by record_id; never inserts.

        Rows flagged human_edited or deleted_by_user are left untouched, as are
        fields the refined record leaves null. Unknown record_ids are reported
        and dropped.
        """
        result = UpdateResult()

        def _update(conn: Connection) -> UpdateResult:
            for record in records:
                record_id = record.get("record_id")
                values = {
                    name: value
                    for name, value in self.schema.to_storage(record).items()
                    if value is not None
                }
                if not record_id or not values:
                    continue

                statement = (
                    update(self.table)
                    .where(and_(
                        self.table.c.document_id == document_id,
                        self.table.c.record_id == record_id,
                        self.table.c.human_edited.is_(False),
                        self.table.c.deleted_by_user.is_(False),
                    ))
                    .values(**values, llm_model=llm_model, prompt_hash=prompt_hash)
                )
                if conn.execute(statement).rowcount:
                    result.updated.append(record_id)
                    continue

                exists = conn.execute(
                    select(self.table.c.id).where(and_(
                        self.table.c.document_id == document_id,
                        self.table.c.record_id == record_id,
                    ))
                ).first()
                (result.protected if exists else result.unknown).append(record_id)
            return result

        return self.db.write(_update)

    # Connection-level helpers for human review transactions

    def insert_user_record(self, conn: Connection, document_id: int, record: Dict[str, Any]) -> int:
        record_id = record.get("record_id")
        if not record_id:
            existing_ids = conn.execute(
                select(self.table.c.record_id).where(self.table.c.document_id == document_id)
            ).scalars().all()
            record_id = f"user-o{max_sequence(existing_ids) + 1}"

        result = conn.execute(
            self.table.insert().values(
                **self.schema.to_storage(record),
                document_id=document_id,
                record_id=record_id,
                extraction_timestamp=now_iso(),
                added_by_user=True,
            )
        )
        return result.inserted_primary_key[0]

    def apply_human_edit(self, conn: Connection, record_pk: int, values: Dict[str, Any]):
        conn.execute(
            update(self.table)
            .where(self.table.c.id == record_pk)
            .values(**values, human_edited=True)
        )

    def soft_delete(self, conn: Connection, record_pk: int):
        conn.execute(
            update(self.table)
            .where(self.table.c.id == record_pk)
            .values(deleted_by_user=True)
        )
