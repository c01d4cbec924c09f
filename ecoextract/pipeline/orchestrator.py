"""
Per-document stage orchestration.

For each status-gated stage in order (OCR, metadata, extraction) the
orchestrator re-reads the document, asks decide() whether to run, and on RUN
first resets every downstream status, then invokes the stage. A failure is
recorded as the stage's status text and ends the document's pass; nothing
raised by a stage escapes this module. Refinement runs last, only for
documents selected by the refine directive that already have records.
"""

import time
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from ecoextract.infra.logger import PipelineLogger

from .context import PipelineContext
from .stages import BaseStage, ExtractionStage, MetadataStage, OCRStage, RefinementStage
from .status import (
    COMPLETED,
    GATED_STAGES,
    NO_FORCE,
    SKIPPED,
    ForceDirective,
    StageName,
    StageOutcome,
    StageStatus,
    decide,
)


@dataclass
class DocumentResult:
    """One row of the pipeline result set."""
    document_id: Optional[int]
    file_name: str
    ocr_status: Optional[str] = None
    metadata_status: Optional[str] = None
    extraction_status: Optional[str] = None
    refinement_status: Optional[str] = None
    records_extracted: int = 0
    error: Optional[str] = None

    def status_for(self, stage: StageName) -> Optional[str]:
        return getattr(self, f"{stage.value}_status")

    @property
    def failed(self) -> bool:
        if self.error:
            return True
        return any(
            self.status_for(stage) not in (COMPLETED, SKIPPED)
            for stage in StageName
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "document_id": self.document_id,
            "file_name": self.file_name,
            "ocr_status": self.ocr_status,
            "metadata_status": self.metadata_status,
            "extraction_status": self.extraction_status,
            "refinement_status": self.refinement_status,
            "records_extracted": self.records_extracted,
            "error": self.error,
        }


class StageOrchestrator:
    def __init__(
        self,
        context: PipelineContext,
        force: Optional[Mapping[StageName, ForceDirective]] = None,
        refine: ForceDirective = NO_FORCE,
    ):
        self.context = context
        self.store = context.store
        self.force = {stage: (force or {}).get(stage, NO_FORCE) for stage in GATED_STAGES}
        self.refine = refine
        self.stages: Dict[StageName, BaseStage] = {
            StageName.OCR: OCRStage(context),
            StageName.METADATA: MetadataStage(context),
            StageName.EXTRACTION: ExtractionStage(context),
        }
        self.refinement = RefinementStage(context)

    def _logger(self, document_id: int) -> PipelineLogger:
        return PipelineLogger(document_id, "pipeline", log_dir=self.context.log_dir)

    def run_gated_stage(
        self,
        stage: BaseStage,
        outcome: StageOutcome,
        document_logger: PipelineLogger,
    ) -> StageOutcome:
        document_id = outcome.document_id
        document = self.store.documents.get(document_id)
        status = StageStatus.from_db(document.get(stage.status_column))

        decision = decide(
            stage.name,
            status,
            stage.data_exists(document),
            self.force[stage.name],
            document_id,
            outcome.upstream_ran(stage.name),
        )

        with document_logger.for_stage(stage.name.value) as logger:
            if not decision.should_run:
                logger.info(f"Skipping {stage.name.value}: {decision.reason}", status=SKIPPED)
                return outcome.with_result(stage.name, SKIPPED, ran=False)

            if decision.status_to_record is not None:
                self.store.documents.set_status(document_id, stage.name.value, decision.status_to_record.to_db())
                logger.warning(decision.status_to_record.message, status="desync")

            if stage.invalidates:
                self.store.documents.reset_statuses(document_id, [s.value for s in stage.invalidates])

            logger.info(f"Running {stage.name.value} ({decision.reason})")
            return self._execute(stage, document, outcome, logger)

    def _execute(
        self,
        stage: BaseStage,
        document: Dict[str, Any],
        outcome: StageOutcome,
        logger: PipelineLogger,
    ) -> StageOutcome:
        start = time.time()
        try:
            stats = stage.run(document, logger) or {}
        except Exception as e:
            failure = StageStatus.failed(stage.name, e)
            self.store.documents.set_status(document["id"], stage.name.value, failure.to_db())
            logger.error(
                failure.message,
                status="failed",
                error=f"{type(e).__name__}: {e}",
                duration_seconds=round(time.time() - start, 2),
            )
            return outcome.with_result(stage.name, failure.message, ran=True)

        self.store.documents.set_status(document["id"], stage.name.value, COMPLETED)
        logger.info(
            f"{stage.name.value} completed",
            status=COMPLETED,
            duration_seconds=round(time.time() - start, 2),
            **{k: v for k, v in stats.items() if k in ("model", "records", "duplicates")},
        )
        return outcome.with_result(stage.name, COMPLETED, ran=True)

    def run_refinement(self, outcome: StageOutcome, document_logger: PipelineLogger) -> StageOutcome:
        document_id = outcome.document_id
        stage = self.refinement

        with document_logger.for_stage(stage.name.value) as logger:
            if outcome.failed:
                return outcome.with_result(stage.name, SKIPPED, ran=False)
            if not self.refine.applies_to(document_id):
                return outcome.with_result(stage.name, SKIPPED, ran=False)
            if not stage.has_records(document_id):
                logger.info("Skipping refinement: document has no records", status=SKIPPED)
                return outcome.with_result(stage.name, SKIPPED, ran=False)

            document = self.store.documents.get(document_id)
            logger.info("Running refinement (selected)")
            return self._execute(stage, document, outcome, logger)

    def process_document(self, document_id: int) -> DocumentResult:
        outcome = StageOutcome(document_id)

        with self._logger(document_id) as document_logger:
            for name in GATED_STAGES:
                if outcome.failed:
                    break
                outcome = self.run_gated_stage(self.stages[name], outcome, document_logger)

            outcome = self.run_refinement(outcome, document_logger)

            document = self.store.documents.get(document_id)
            document_logger.info(
                f"Pass finished{' with a failed stage' if outcome.failed else ''}",
                records=document.get("records_extracted") or 0,
            )

        statuses = {
            name: outcome.statuses.get(name, document.get(f"{name.value}_status"))
            for name in StageName
        }
        return DocumentResult(
            document_id=document_id,
            file_name=document.get("file_name", ""),
            ocr_status=statuses[StageName.OCR],
            metadata_status=statuses[StageName.METADATA],
            extraction_status=statuses[StageName.EXTRACTION],
            refinement_status=statuses[StageName.REFINEMENT],
            records_extracted=document.get("records_extracted") or 0,
        )
