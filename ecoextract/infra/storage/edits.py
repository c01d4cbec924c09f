from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.engine import Connection

from .database import Database
from .documents import now_iso


class EditRepository:
    """Append-only ledger of column-level human edits."""

    def __init__(self, db: Database):
        self.db = db
        self.table = db.record_edits

    def append(
        self,
        conn: Connection,
        document_id: int,
        record_pk: int,
        column_name: str,
        original_value: Optional[str],
        new_value: Optional[str],
        edited_at: Optional[str] = None,
    ):
        conn.execute(
            self.table.insert().values(
                document_id=document_id,
                record_id=record_pk,
                column_name=column_name,
                original_value=original_value,
                new_value=new_value,
                edited_at=edited_at or now_iso(),
            )
        )

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
            return [dict(row) for row in conn.execute(query).mappings().all()]
