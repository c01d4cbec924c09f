from typing import Any, Dict, List

from ecoextract.dedup import deduplicate
from ecoextract.infra.logger import PipelineLogger
from ecoextract.pipeline.prompts import format_records_context, render_template
from ecoextract.pipeline.status import StageName

from .base import BaseStage


class ExtractionStage(BaseStage):
    """Extract records from the OCR text and insert the new ones.

    Insert-only: existing rows are never modified. Stored records, including
    soft-deleted and human-edited ones, are read fresh right before the call
    so rows lost outside the pipeline are re-admitted as new. Zero records is
    a valid result, so this stage has no data predicate.
    """
    name = StageName.EXTRACTION

    def parse_records(self, data: Dict[str, Any], logger: PipelineLogger) -> List[Dict[str, Any]]:
        raw_records = data.get("records") or []
        if not isinstance(raw_records, list):
            raise ValueError("LLM response 'records' is not a list")

        records = []
        for index, raw in enumerate(raw_records):
            if not isinstance(raw, dict):
                logger.warning(f"Dropping record {index}: not an object")
                continue
            try:
                records.append(self.context.schema.normalize_record(raw, index))
            except ValueError as e:
                logger.warning(f"Dropping record {index}: {e}")
        return records

    def run(self, document: Dict[str, Any], logger: PipelineLogger) -> Dict[str, Any]:
        content = self.require_content(document)
        document_id = document["id"]
        schema = self.context.schema
        prompts = self.context.prompts

        existing = self.store.records.list_for_document(document_id, include_deleted=True)
        visible = [r for r in existing if not r.get("deleted_by_user")]

        context = render_template(
            prompts.extraction_context,
            document_content=content,
            existing_records=format_records_context(visible, schema.field_names),
        )

        result = self.context.get_llm().call(
            prompts.extraction,
            context,
            schema.response_format(),
            self.config.models.extraction,
            "extraction",
            timeout=self.config.llm_timeout,
        )
        candidates = self.parse_records(result.data, logger)

        dedup = deduplicate(
            candidates,
            existing,
            schema.unique_fields,
            self.config.deduplication.method,
            threshold=self.config.deduplication.threshold,
            strategy=self.context.similarity_strategy(),
            judge=self.context.semantic_judge(),
        )

        inserted = self.store.records.insert_new(
            document_id,
            dedup.kept_records,
            document.get("first_author_lastname"),
            document.get("publication_year"),
            llm_model=result.model_used,
            prompt_hash=prompts.extraction_hash,
        )

        self.store.documents.set_stage_model(
            document_id, "extraction", result.model_used, result.format_log(),
            reasoning=self.reasoning(result.data),
        )
        self.store.documents.set_records_extracted(
            document_id, self.store.records.count(document_id)
        )

        logger.info(
            f"Extracted {len(candidates)} records, inserted {len(inserted)}",
            model=result.model_used,
            models_tried=result.models_tried,
            records=len(inserted),
            duplicates=dedup.duplicate_count,
        )
        return {"records": len(inserted), "duplicates": dedup.duplicate_count}
