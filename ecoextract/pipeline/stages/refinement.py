from typing import Any, Dict, List

from ecoextract.infra.logger import PipelineLogger
from ecoextract.pipeline.prompts import format_records_context, render_template
from ecoextract.pipeline.status import StageName

from .base import BaseStage


class RefinementStage(BaseStage):
    """Enrich existing records in place.

    Update-only, matched by record_id: a refined record whose record_id is
    not among the document's current records is dropped. Soft-deleted
    records are withheld from the prompt, and rows flagged human_edited or
    deleted_by_user are never written.
    """
    name = StageName.REFINEMENT

    def has_records(self, document_id: int) -> bool:
        return self.store.records.count(document_id) > 0

    def merge(self, refined: Dict[str, Any], current: Dict[str, Any], index: int) -> Dict[str, Any]:
        schema = self.context.schema
        merged = {name: current.get(name) for name in schema.field_names}
        for name in schema.field_names:
            value = refined.get(name)
            if value not in (None, "", []):
                merged[name] = value
        record = schema.normalize_record(merged, index)
        record["record_id"] = current["record_id"]
        return record

    def run(self, document: Dict[str, Any], logger: PipelineLogger) -> Dict[str, Any]:
        content = self.require_content(document)
        document_id = document["id"]
        schema = self.context.schema
        prompts = self.context.prompts

        visible = self.store.records.list_for_document(document_id, include_deleted=False)
        if not visible:
            raise ValueError("No records to refine")
        by_record_id = {r["record_id"]: r for r in visible}

        context = render_template(
            prompts.refinement_context,
            document_content=content,
            existing_records=format_records_context(visible, schema.field_names),
        )

        result = self.context.get_llm().call(
            prompts.refinement,
            context,
            schema.response_format(include_record_id=True),
            self.config.models.refinement,
            "refinement",
            timeout=self.config.llm_timeout,
        )

        raw_records = result.data.get("records") or []
        if not isinstance(raw_records, list):
            raise ValueError("LLM response 'records' is not a list")

        updates: List[Dict[str, Any]] = []
        dropped = []
        for index, raw in enumerate(raw_records):
            record_id = raw.get("record_id") if isinstance(raw, dict) else None
            if not isinstance(record_id, str) or record_id not in by_record_id:
                dropped.append(record_id)
                continue
            try:
                updates.append(self.merge(raw, by_record_id[record_id], index))
            except ValueError as e:
                logger.warning(f"Dropping refined record {record_id}: {e}")

        if dropped:
            logger.warning(
                f"Dropped {len(dropped)} refined records with unknown record_id: "
                f"{', '.join(str(r) for r in dropped)}"
            )

        outcome = self.store.records.update_existing(
            document_id,
            updates,
            llm_model=result.model_used,
            prompt_hash=prompts.refinement_hash,
        )
        if outcome.protected:
            logger.info(f"Left {len(outcome.protected)} human-reviewed records untouched")

        self.store.documents.set_stage_model(
            document_id, "refinement", result.model_used, result.format_log(),
            reasoning=self.reasoning(result.data),
        )

        logger.info(
            f"Refined {len(outcome.updated)} records",
            model=result.model_used,
            models_tried=result.models_tried,
            records=len(outcome.updated),
        )
        return {"records": len(outcome.updated), "dropped": len(dropped)}
