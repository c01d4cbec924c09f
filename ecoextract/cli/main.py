#!/usr/bin/env python3
"""
ecoextract CLI - structured records from scientific PDFs

Commands:
    ecoextract process <path>     Run OCR, metadata, extraction (and refinement)
    ecoextract status             Show per-document stage statuses
    ecoextract accuracy           Accuracy metrics over reviewed documents
    ecoextract enrich [ID ...]    Fill missing publication metadata from CrossRef
    ecoextract stats              Document, record and stage status counts
    ecoextract records            Stored records as JSON
    ecoextract init               Copy customisable templates into ./ecoextract/
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.table import Table

from ecoextract.accuracy import calculate_accuracy_for_database
from ecoextract.enrichment import enrich_documents
from ecoextract.infra.config import get_config, get_project_root, init_project
from ecoextract.infra.crossref import CrossRefClient
from ecoextract.infra.errors import ConfigurationError
from ecoextract.infra.schema import load_schema
from ecoextract.infra.storage import open_store
from ecoextract.pipeline import process_documents
from ecoextract.pipeline.status import COMPLETED, SKIPPED
from ecoextract.queries import get_db_stats, get_records


console = Console()

STATUS_STYLES = {
    COMPLETED: "green",
    SKIPPED: "dim",
}


def _force_value(values):
    """argparse nargs='*': absent -> None, bare flag -> all, ids -> those ids."""
    if values is None:
        return None
    if len(values) == 0:
        return True
    return values


def _styled(status):
    if status is None:
        return "[dim]-[/dim]"
    style = STATUS_STYLES.get(status, "red")
    return f"[{style}]{status}[/{style}]"


def _db_path(args, config) -> Path:
    path = Path(args.db or config.database)
    return path if path.is_absolute() else get_project_root() / path


def cmd_process(args):
    config = get_config()
    summary = process_documents(
        args.path,
        db_path=_db_path(args, config),
        schema_file=args.schema,
        force_ocr=_force_value(args.force_ocr),
        force_metadata=_force_value(args.force_metadata),
        force_extraction=_force_value(args.force_extraction),
        refine=_force_value(args.refine),
        workers=args.workers,
        config=config,
    )

    table = Table(title=f"Processed {summary.total} document(s) in {summary.elapsed_seconds:.1f}s")
    table.add_column("ID", justify="right")
    table.add_column("File")
    table.add_column("OCR")
    table.add_column("Metadata")
    table.add_column("Extraction")
    table.add_column("Refinement")
    table.add_column("Records", justify="right")

    for result in summary.results:
        table.add_row(
            str(result.document_id or "-"),
            result.file_name,
            _styled(result.ocr_status),
            _styled(result.metadata_status),
            _styled(result.extraction_status),
            _styled(result.refinement_status),
            str(result.records_extracted),
        )
        if result.error:
            table.add_row("", f"[red]{result.error}[/red]", "", "", "", "", "")

    console.print(table)

    if summary.failed:
        console.print(f"[red]{len(summary.failed)} document(s) failed[/red]")
        sys.exit(1)


def cmd_status(args):
    config = get_config()
    schema = load_schema(args.schema or config.schema_file)

    with open_store(_db_path(args, config), schema) as store:
        documents = store.documents.list_documents()

    if not documents:
        console.print("No documents in database. Use 'ecoextract process <path>' first.")
        return

    table = Table(title=f"{len(documents)} document(s)")
    table.add_column("ID", justify="right")
    table.add_column("File")
    table.add_column("Citation")
    table.add_column("OCR")
    table.add_column("Metadata")
    table.add_column("Extraction")
    table.add_column("Refinement")
    table.add_column("Records", justify="right")
    table.add_column("Reviewed")

    for doc in documents:
        citation = f"{doc.get('first_author_lastname') or '?'} ({doc.get('publication_year') or 'n.d.'})"
        table.add_row(
            str(doc["id"]),
            doc["file_name"],
            citation,
            _styled(doc.get("ocr_status")),
            _styled(doc.get("metadata_status")),
            _styled(doc.get("extraction_status")),
            _styled(doc.get("refinement_status")),
            str(doc.get("records_extracted") or 0),
            "yes" if doc.get("reviewed_at") else "",
        )

    console.print(table)


def _fmt(value):
    if value is None:
        return "n/a"
    if isinstance(value, float):
        return f"{value:.3f}"
    return str(value)


def cmd_accuracy(args):
    config = get_config()
    schema = load_schema(args.schema or config.schema_file)

    with open_store(_db_path(args, config), schema) as store:
        report = calculate_accuracy_for_database(store)

    if report.verified_documents == 0:
        console.print("No reviewed documents yet.")
        return

    table = Table(title=f"Accuracy over {report.verified_documents} reviewed document(s)")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    for name in (
        "verified_records", "model_extracted", "human_added", "deleted",
        "records_found", "detection_precision", "detection_recall", "perfect_record_rate",
        "total_fields", "correct_fields", "field_precision", "field_recall", "field_f1",
        "total_edits", "major_edits", "minor_edits", "major_edit_rate", "avg_edits_per_document",
    ):
        table.add_row(name, _fmt(getattr(report, name)))
    console.print(table)

    columns = Table(title="Per-column accuracy")
    columns.add_column("Column")
    columns.add_column("Edits", justify="right")
    columns.add_column("Accuracy", justify="right")
    for name, accuracy in sorted(report.column_accuracy.items(), key=lambda kv: (kv[1] is None, kv[1])):
        columns.add_row(name, str(report.column_edits.get(name, 0)), _fmt(accuracy))
    console.print(columns)


def cmd_enrich(args):
    config = get_config()
    schema = load_schema(args.schema or config.schema_file)
    client = CrossRefClient(mailto=config.crossref.mailto, timeout=config.crossref.timeout)

    with open_store(_db_path(args, config), schema) as store:
        results = enrich_documents(store, client, args.ids or None, rows=config.crossref.rows)

    if not results:
        console.print("No documents to enrich.")
        return

    table = Table(title=f"CrossRef enrichment for {len(results)} document(s)")
    table.add_column("ID", justify="right")
    table.add_column("Result")
    table.add_column("Filled")
    for document_id, result in results.items():
        style = "green" if result.success else "yellow"
        table.add_row(str(document_id), f"[{style}]{result.message}[/{style}]", ", ".join(result.filled))
    console.print(table)


def cmd_stats(args):
    config = get_config()
    schema = load_schema(args.schema or config.schema_file)

    with open_store(_db_path(args, config), schema) as store:
        stats = get_db_stats(store)

    console.print(stats.message)
    table = Table(title="Stage statuses")
    table.add_column("Stage")
    for kind in ("completed", "failed", "desync", "pending"):
        table.add_column(kind.capitalize(), justify="right")
    for stage, counts in stats.stages.items():
        table.add_row(stage, *(str(counts[kind]) for kind in ("completed", "failed", "desync", "pending")))
    console.print(table)
    console.print(
        f"Records: {stats.active_records} active, {stats.deleted_records} deleted, "
        f"{stats.human_added_records} added and {stats.human_edited_records} edited by reviewers"
    )
    console.print(f"Reviewed documents: {stats.reviewed_documents}")


def cmd_records(args):
    config = get_config()
    schema = load_schema(args.schema or config.schema_file)

    with open_store(_db_path(args, config), schema) as store:
        records = get_records(store, args.document, include_deleted=args.include_deleted)

    print(json.dumps(records, indent=2, ensure_ascii=False, default=str))


def cmd_init(args):
    result = init_project(Path(args.dir) if args.dir else None, overwrite=args.overwrite)
    console.print(f"Templates in {result['config_dir']}")
    for name in result["copied"]:
        console.print(f"  [green]copied[/green]  {name}")
    for name in result["skipped"]:
        console.print(f"  [dim]exists[/dim]  {name} (use --overwrite to replace)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='ecoextract',
        description='Extract structured, de-duplicated records from scientific PDFs',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  ecoextract process papers/
  ecoextract process papers/ --workers 4
  ecoextract process papers/ --force-extraction 3 7     # re-extract documents 3 and 7
  ecoextract process papers/ --force-ocr                 # re-run OCR for every document
  ecoextract process papers/ --refine                    # refine every document with records
  ecoextract status
  ecoextract accuracy
  ecoextract enrich 3 7                                  # CrossRef lookup for documents 3 and 7
  ecoextract records --document 3 > smith2020.json
"""
    )
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')

    subparsers = parser.add_subparsers(dest='command', help='Command to run')
    subparsers.required = True

    process_parser = subparsers.add_parser('process', help='Run the pipeline on a PDF or directory')
    process_parser.add_argument('path', help='PDF file or directory of PDFs')
    process_parser.add_argument('--db', help='SQLite database (default: config database)')
    process_parser.add_argument('--schema', help='Record schema JSON (default: project override or packaged)')
    process_parser.add_argument('--workers', type=int, default=None, help='Documents processed in parallel')
    for flag in ('--force-ocr', '--force-metadata', '--force-extraction'):
        process_parser.add_argument(
            flag, nargs='*', type=int, default=None, metavar='ID',
            help='Re-run this stage (no ids: all documents)'
        )
    process_parser.add_argument(
        '--refine', nargs='*', type=int, default=None, metavar='ID',
        help='Refine existing records (no ids: all documents)'
    )
    process_parser.set_defaults(func=cmd_process)

    status_parser = subparsers.add_parser('status', help='Show document stage statuses')
    status_parser.add_argument('--db', help='SQLite database')
    status_parser.add_argument('--schema', help='Record schema JSON')
    status_parser.set_defaults(func=cmd_status)

    accuracy_parser = subparsers.add_parser('accuracy', help='Accuracy metrics from human review')
    accuracy_parser.add_argument('--db', help='SQLite database')
    accuracy_parser.add_argument('--schema', help='Record schema JSON')
    accuracy_parser.set_defaults(func=cmd_accuracy)

    enrich_parser = subparsers.add_parser('enrich', help='Fill missing publication metadata from CrossRef')
    enrich_parser.add_argument('ids', nargs='*', type=int, metavar='ID', help='Documents to enrich (default: all)')
    enrich_parser.add_argument('--db', help='SQLite database')
    enrich_parser.add_argument('--schema', help='Record schema JSON')
    enrich_parser.set_defaults(func=cmd_enrich)

    stats_parser = subparsers.add_parser('stats', help='Database statistics')
    stats_parser.add_argument('--db', help='SQLite database')
    stats_parser.add_argument('--schema', help='Record schema JSON')
    stats_parser.set_defaults(func=cmd_stats)

    records_parser = subparsers.add_parser('records', help='Print stored records as JSON')
    records_parser.add_argument('--document', type=int, default=None, metavar='ID', help='Only this document')
    records_parser.add_argument('--include-deleted', action='store_true', help='Include records deleted in review')
    records_parser.add_argument('--db', help='SQLite database')
    records_parser.add_argument('--schema', help='Record schema JSON')
    records_parser.set_defaults(func=cmd_records)

    init_parser = subparsers.add_parser('init', help='Copy customisable templates into ./ecoextract/')
    init_parser.add_argument('--dir', help='Project directory (default: current directory)')
    init_parser.add_argument('--overwrite', action='store_true', help='Replace existing files')
    init_parser.set_defaults(func=cmd_init)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(levelname)s: %(message)s',
    )

    try:
        args.func(args)
    except (ConfigurationError, ValueError) as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\nInterrupted.")
        sys.exit(130)


if __name__ == '__main__':
    main()
