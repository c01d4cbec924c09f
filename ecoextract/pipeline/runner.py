"""
Batch entry point: register PDFs and run each document end-to-end.

Documents are independent, so they are spread over a ThreadPoolExecutor with
one document per task; stages within a document stay sequential. The schema
and forcing directives are validated once, before any document is touched.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional, Union

from rich.console import Console
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn, TimeElapsedColumn

from ecoextract.infra.config import PipelineConfig, get_config, get_project_root
from ecoextract.infra.embeddings import EmbeddingProvider
from ecoextract.infra.llm import StructuredLLM
from ecoextract.infra.ocr import OCRProvider
from ecoextract.infra.schema import load_schema
from ecoextract.infra.storage import Store, open_store

from .context import PipelineContext
from .orchestrator import DocumentResult, StageOrchestrator
from .prompts import load_prompts
from .status import ForceDirective, StageName


logger = logging.getLogger(__name__)


@dataclass
class PipelineSummary:
    results: List[DocumentResult] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def failed(self) -> List[DocumentResult]:
        return [r for r in self.results if r.failed]

    @property
    def succeeded(self) -> int:
        return self.total - len(self.failed)

    @property
    def records_extracted(self) -> int:
        return sum(r.records_extracted for r in self.results)

    def to_rows(self) -> List[dict]:
        return [r.to_dict() for r in self.results]


def collect_pdfs(path: Union[str, Path]) -> List[Path]:
    """
    A single PDF, or every PDF directly inside a directory (sorted).

    Raises:
        ValueError: Path missing, not a PDF, or a directory without PDFs
    """
    path = Path(path)
    if not path.exists():
        raise ValueError(f"Path does not exist: {path}")

    if path.is_file():
        if path.suffix.lower() != ".pdf":
            raise ValueError(f"Not a PDF file: {path}")
        return [path]

    pdfs = sorted(p for p in path.iterdir() if p.is_file() and p.suffix.lower() == ".pdf")
    if not pdfs:
        raise ValueError(f"No PDF files found in {path}")
    return pdfs


def _register_all(store: Store, pdfs: List[Path]) -> List[DocumentResult]:
    registered = []
    seen = set()
    for pdf in pdfs:
        try:
            document_id = store.documents.register(pdf)
            if document_id in seen:
                logger.info(f"{pdf.name} has the same content as an earlier file, skipping")
                continue
            seen.add(document_id)
            registered.append(DocumentResult(document_id=document_id, file_name=pdf.name))
        except OSError as e:
            registered.append(DocumentResult(document_id=None, file_name=pdf.name, error=f"Could not read file: {e}"))
    return registered


def process_documents(
    path: Union[str, Path],
    db_path: Optional[Union[str, Path]] = None,
    schema_file: Optional[Union[str, Path]] = None,
    force_ocr: Any = None,
    force_metadata: Any = None,
    force_extraction: Any = None,
    refine: Any = None,
    workers: Optional[int] = None,
    config: Optional[PipelineConfig] = None,
    project_root: Optional[Path] = None,
    log_dir: Optional[Union[str, Path]] = None,
    llm: Optional[StructuredLLM] = None,
    ocr: Optional[OCRProvider] = None,
    embedder: Optional[EmbeddingProvider] = None,
    show_progress: bool = True,
) -> PipelineSummary:
    """
    Run the pipeline over a PDF or a directory of PDFs.

    Forcing directives (force_*, refine) accept None/False (normal skip
    logic), True (all documents) or a collection of document ids.

    Raises:
        ValueError: Invalid path
        ConfigurationError: Invalid schema, forcing directive or configuration
    """
    config = config or get_config()
    project_root = Path(project_root) if project_root else get_project_root()

    force = {
        StageName.OCR: ForceDirective.parse(force_ocr, "force_ocr"),
        StageName.METADATA: ForceDirective.parse(force_metadata, "force_metadata"),
        StageName.EXTRACTION: ForceDirective.parse(force_extraction, "force_extraction"),
    }
    refine_directive = ForceDirective.parse(refine, "refine")

    schema = load_schema(schema_file or config.schema_file)
    prompts = load_prompts(config, project_root)
    pdfs = collect_pdfs(path)

    db_path = Path(db_path or config.database)
    if not db_path.is_absolute():
        db_path = project_root / db_path
    if log_dir is None:
        log_dir = project_root / config.log_dir

    store = open_store(db_path, schema, busy_timeout_ms=config.busy_timeout_ms, write_retries=config.write_retries)
    context = PipelineContext(
        store=store,
        schema=schema,
        config=config,
        prompts=prompts,
        log_dir=Path(log_dir),
        llm=llm,
        ocr=ocr,
        embedder=embedder,
    )
    orchestrator = StageOrchestrator(context, force=force, refine=refine_directive)

    start = time.time()
    summary = PipelineSummary()
    try:
        registered = _register_all(store, pdfs)
        pending = [r for r in registered if r.document_id is not None]
        summary.results.extend(r for r in registered if r.document_id is None)

        max_workers = max(1, workers or config.workers)
        logger.info(f"Processing {len(pending)} documents with {max_workers} workers")
        summary.results.extend(_run_parallel(orchestrator, pending, max_workers, show_progress))
    finally:
        store.close()

    summary.results.sort(key=lambda r: (r.document_id is None, r.document_id or 0))
    summary.elapsed_seconds = time.time() - start
    return summary


def _process_one(orchestrator: StageOrchestrator, entry: DocumentResult) -> DocumentResult:
    try:
        return orchestrator.process_document(entry.document_id)
    except Exception as e:
        # Store-level errors outside any stage still become a result row
        logger.exception(f"Document {entry.document_id} ({entry.file_name}) failed")
        return DocumentResult(
            document_id=entry.document_id,
            file_name=entry.file_name,
            error=f"{type(e).__name__}: {e}",
        )


def _run_parallel(
    orchestrator: StageOrchestrator,
    entries: List[DocumentResult],
    max_workers: int,
    show_progress: bool,
) -> List[DocumentResult]:
    results: List[DocumentResult] = []
    if not entries:
        return results

    progress = Progress(
        TextColumn("{task.description}"),
        BarColumn(bar_width=40),
        TaskProgressColumn(),
        TextColumn("•"),
        TimeElapsedColumn(),
        console=Console(stderr=True),
        transient=True,
        disable=not show_progress,
    )

    executor = ThreadPoolExecutor(max_workers=max_workers)
    try:
        with progress:
            task = progress.add_task("Processing documents", total=len(entries))
            futures = {executor.submit(_process_one, orchestrator, entry): entry for entry in entries}
            for future in as_completed(futures):
                results.append(future.result())
                progress.advance(task)
    except KeyboardInterrupt:
        logger.warning("Interrupted: cancelling pending documents")
        executor.shutdown(wait=True, cancel_futures=True)
        raise
    finally:
        executor.shutdown(wait=True)

    return results
