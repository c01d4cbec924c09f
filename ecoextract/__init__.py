"""
ecoextract: structured, de-duplicated, auditable records from scientific PDFs.

    from ecoextract import process_documents, save_document, calculate_accuracy
"""

from ecoextract.accuracy import AccuracyReport, calculate_accuracy, calculate_accuracy_for_database
from ecoextract.enrichment import EnrichmentResult, enrich_document, enrich_documents
from ecoextract.pipeline import PipelineSummary, process_documents
from ecoextract.queries import DatabaseStats, get_db_stats, get_ocr_markdown, get_records
from ecoextract.review import save_document

__version__ = "0.1.0"

__all__ = [
    "AccuracyReport",
    "calculate_accuracy",
    "calculate_accuracy_for_database",
    "EnrichmentResult",
    "enrich_document",
    "enrich_documents",
    "PipelineSummary",
    "process_documents",
    "DatabaseStats",
    "get_db_stats",
    "get_ocr_markdown",
    "get_records",
    "save_document",
]
