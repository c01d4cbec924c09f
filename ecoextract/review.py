"""
Persisting a human review of a document's records.

The reviewer's edited record set is diffed against the originals by
surrogate id (record_id is editable, so it cannot be the join key):

- an original missing from the edited set is soft-deleted
- changed schema columns (or record_id) are written, each logged as one
  record_edits row, and the record is flagged human_edited
- an edited row without an id is a record the model missed; it is inserted
  with added_by_user set

The document's reviewed_at is always set. Everything happens in a single
transaction.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.engine import Connection

from ecoextract.infra.storage import Store, now_iso


logger = logging.getLogger(__name__)


def _as_text(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def _record_pk(record: Dict[str, Any]) -> Optional[int]:
    value = record.get("id")
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def diff_record(store: Store, original: Dict[str, Any], edited: Dict[str, Any]) -> Dict[str, tuple]:
    """Changed columns as {column: (original_value, new_value)} in storage form."""
    schema = store.schema
    before = schema.to_storage({name: original.get(name) for name in schema.field_names})
    after = schema.to_storage({name: edited.get(name) for name in schema.field_names if name in edited})

    changes = {}
    if "record_id" in edited and edited["record_id"] != original.get("record_id"):
        changes["record_id"] = (original.get("record_id"), edited["record_id"])
    for name, new_value in after.items():
        if new_value != before.get(name):
            changes[name] = (before.get(name), new_value)
    return changes


def save_document(
    store: Store,
    document_id: int,
    edited_records: List[Dict[str, Any]],
    original_records: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, int]:
    """
    Save a reviewed document.

    Args:
        store: Open store
        document_id: Document being reviewed
        edited_records: Records as the reviewer left them
        original_records: Records as shown to the reviewer; when None only
            reviewed_at is set

    Returns:
        Counts of edited, deleted and added records and column edits
    """
    def _save(conn: Connection) -> Dict[str, int]:
        counts = {"edited": 0, "deleted": 0, "added": 0, "column_edits": 0}
        if original_records is not None:
            originals = {_record_pk(r): r for r in original_records if _record_pk(r) is not None}
            kept_ids = set()
            edited_at = now_iso()

            for record in edited_records:
                pk = _record_pk(record)
                if pk is None:
                    store.records.insert_user_record(conn, document_id, record)
                    counts["added"] += 1
                    continue

                if pk not in originals:
                    logger.warning(f"Document {document_id}: record id {pk} is not among the originals, ignoring")
                    continue

                kept_ids.add(pk)
                changes = diff_record(store, originals[pk], record)
                if not changes:
                    continue

                for column, (old, new) in changes.items():
                    store.edits.append(conn, document_id, pk, column, _as_text(old), _as_text(new), edited_at)
                store.records.apply_human_edit(conn, pk, {column: new for column, (_, new) in changes.items()})
                counts["edited"] += 1
                counts["column_edits"] += len(changes)

            for pk, original in originals.items():
                if pk not in kept_ids and not original.get("deleted_by_user"):
                    store.records.soft_delete(conn, pk)
                    counts["deleted"] += 1

        store.documents.mark_reviewed(document_id, conn=conn)
        return counts

    result = store.db.write(_save)
    logger.info(
        f"Document {document_id} reviewed: {result['edited']} edited, "
        f"{result['deleted']} deleted, {result['added']} added"
    )
    return result
