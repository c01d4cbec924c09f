"""
Extraction accuracy from the human review audit trail.

Two layers are reported separately:

- detection: did the model find the records (deleted rows are
  hallucinations, human-added rows are misses)
- fields: partial credit per field, where every column edit on a surviving
  model-extracted record is one wrong field

Edits to unique or required fields are major, all others minor. Only
documents with reviewed_at set are considered. Ratios with a zero
denominator are None.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from ecoextract.infra.schema import RecordSchema
from ecoextract.infra.storage import Store


def _ratio(numerator: float, denominator: float) -> Optional[float]:
    if not denominator:
        return None
    return numerator / denominator


def _f1(precision: Optional[float], recall: Optional[float]) -> Optional[float]:
    if precision is None or recall is None or precision + recall == 0:
        return None
    return 2 * precision * recall / (precision + recall)


@dataclass
class AccuracyReport:
    verified_documents: int = 0
    verified_records: int = 0
    model_extracted: int = 0
    human_added: int = 0
    deleted: int = 0
    records_with_edits: int = 0
    column_edits: Dict[str, int] = field(default_factory=dict)

    # Detection layer
    records_found: int = 0
    records_missed: int = 0
    records_hallucinated: int = 0
    detection_precision: Optional[float] = None
    detection_recall: Optional[float] = None
    perfect_record_rate: Optional[float] = None

    # Field layer
    total_fields: int = 0
    correct_fields: int = 0
    true_fields: int = 0
    field_precision: Optional[float] = None
    field_recall: Optional[float] = None
    field_f1: Optional[float] = None
    column_accuracy: Dict[str, Optional[float]] = field(default_factory=dict)

    # Edit severity
    total_edits: int = 0
    major_edits: int = 0
    minor_edits: int = 0
    major_edit_rate: Optional[float] = None
    avg_edits_per_document: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _truthy(value: Any) -> bool:
    return bool(value) and value not in ("0", "false", "False")


def calculate_accuracy(
    documents: Iterable[Dict[str, Any]],
    records: Iterable[Dict[str, Any]],
    edits: Iterable[Dict[str, Any]],
    schema: RecordSchema,
) -> AccuracyReport:
    """
    Compute accuracy over reviewed documents.

    Args:
        documents: Document rows (id, reviewed_at)
        records: Record rows (id, document_id, added_by_user, deleted_by_user)
        edits: record_edits rows (document_id, record_id, column_name)
        schema: Active record schema (field count, unique/required fields)
    """
    verified_ids = {d["id"] for d in documents if d.get("reviewed_at")}
    num_fields = schema.num_fields
    report = AccuracyReport(verified_documents=len(verified_ids))

    verified = [r for r in records if r.get("document_id") in verified_ids]
    model_records = [r for r in verified if not _truthy(r.get("added_by_user"))]
    surviving_ids = {r["id"] for r in model_records if not _truthy(r.get("deleted_by_user"))}

    report.model_extracted = len(model_records)
    report.deleted = report.model_extracted - len(surviving_ids)
    report.human_added = sum(
        1 for r in verified
        if _truthy(r.get("added_by_user")) and not _truthy(r.get("deleted_by_user"))
    )
    report.verified_records = len(surviving_ids) + report.human_added

    # One wrong field per edited (record, column), however many times it was edited
    edited_fields = {
        (e["record_id"], e["column_name"])
        for e in edits
        if e.get("document_id") in verified_ids
        and e.get("record_id") in surviving_ids
        and e.get("column_name") in schema.fields
    }
    column_edits: Dict[str, int] = {}
    for _, column in edited_fields:
        column_edits[column] = column_edits.get(column, 0) + 1
    report.column_edits = column_edits
    report.records_with_edits = len({record_id for record_id, _ in edited_fields})

    report.records_found = report.model_extracted - report.deleted
    report.records_missed = report.human_added
    report.records_hallucinated = report.deleted
    report.detection_precision = _ratio(report.records_found, report.model_extracted)
    report.detection_recall = _ratio(report.records_found, report.records_found + report.records_missed)
    report.perfect_record_rate = _ratio(report.records_found - report.records_with_edits, report.records_found)

    report.total_edits = len(edited_fields)
    report.total_fields = report.model_extracted * num_fields
    report.correct_fields = report.total_fields - report.deleted * num_fields - report.total_edits
    report.true_fields = (report.records_found + report.human_added) * num_fields
    report.field_precision = _ratio(report.correct_fields, report.total_fields)
    report.field_recall = _ratio(report.correct_fields, report.true_fields)
    report.field_f1 = _f1(report.field_precision, report.field_recall)

    report.column_accuracy = {
        name: (
            None if report.model_extracted == 0
            else 1 - column_edits.get(name, 0) / report.model_extracted
        )
        for name in schema.field_names
    }

    major_fields = schema.major_fields
    report.major_edits = sum(1 for _, column in edited_fields if column in major_fields)
    report.minor_edits = report.total_edits - report.major_edits
    report.major_edit_rate = _ratio(report.major_edits, report.total_edits)
    report.avg_edits_per_document = _ratio(report.total_edits, report.verified_documents)

    return report


def calculate_accuracy_for_database(store: Store) -> AccuracyReport:
    documents = store.documents.list_documents(reviewed_only=True)
    document_ids = [d["id"] for d in documents]
    records = store.records.list_for_documents(document_ids)
    edits = store.edits.list_for_documents(document_ids)
    return calculate_accuracy(documents, records, edits, store.schema)
