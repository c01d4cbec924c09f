"""
Tests for pipeline/orchestrator.py

End-to-end passes over one document with a real store and fake
collaborators:
- first pass runs OCR, metadata and extraction
- a second pass skips everything
- forcing a stage cascades to the stages after it
- a completed status whose data vanished is a desync and re-runs
- failures become status text and stop the pass
- refinement is opt-in
"""

import json
from pathlib import Path

import pytest
from sqlalchemy import update

from ecoextract.infra.config import PipelineConfig
from ecoextract.infra.errors import ConfigurationError
from ecoextract.infra.llm import AllModelsFailedError
from ecoextract.pipeline import StageOrchestrator
from ecoextract.pipeline.context import PipelineContext
from ecoextract.pipeline.status import (
    COMPLETED,
    FORCE_ALL,
    SKIPPED,
    ForceSpecific,
    StageName,
)

from fakes import RECORD_EPTESICUS, RECORD_MYOTIS


@pytest.fixture
def document_id(store, make_pdf):
    return store.documents.register(make_pdf("smith2020.pdf"))


def orchestrator(context, refine=None, **force):
    directives = {StageName(name): directive for name, directive in force.items()}
    kwargs = {"refine": refine} if refine is not None else {}
    return StageOrchestrator(context, force=directives, **kwargs)


def log_entries(context, document_id):
    path = context.log_dir / f"document_{document_id}.jsonl"
    with open(path) as f:
        return [json.loads(line) for line in f]


class TestFirstPass:

    def test_runs_gated_stages(self, context, document_id, fake_llm, fake_ocr, store):
        result = orchestrator(context).process_document(document_id)

        assert result.ocr_status == COMPLETED
        assert result.metadata_status == COMPLETED
        assert result.extraction_status == COMPLETED
        assert result.refinement_status == SKIPPED
        assert result.records_extracted == 2
        assert not result.failed

        assert fake_ocr.calls == 1
        assert [c["step_name"] for c in fake_llm.calls] == ["metadata", "extraction"]

        records = store.records.list_for_document(document_id)
        assert [r["record_id"] for r in records] == ["Smith2020-o1", "Smith2020-o2"]
        assert records[0]["llm_model"] == context.config.models.extraction[0]
        assert records[0]["prompt_hash"] == context.prompts.extraction_hash

    def test_persists_payloads_and_provenance(self, context, document_id, store):
        orchestrator(context).process_document(document_id)

        document = store.documents.get(document_id)
        assert document["document_content"]
        assert document["ocr_provider"] == "fake-ocr"
        assert document["first_author_lastname"] == "Smith"
        assert document["publication_year"] == 2020
        assert document["metadata_llm_model"] == context.config.models.metadata[0]
        assert document["extraction_llm_model"] == context.config.models.extraction[0]
        assert document["extraction_log"] is None

    def test_metadata_sees_only_first_pages(self, context, document_id, fake_llm, fake_ocr):
        fake_ocr.text = "\n\n".join(
            f"page {n} text\n\n--- PAGE {n} ---" for n in range(1, 6)
        )
        orchestrator(context).process_document(document_id)

        metadata_context = fake_llm.calls_for("metadata")[0]["context"]
        assert "page 3 text" in metadata_context
        assert "page 4 text" not in metadata_context

        extraction_context = fake_llm.calls_for("extraction")[0]["context"]
        assert "page 5 text" in extraction_context

    def test_logs_to_document_file(self, context, document_id):
        orchestrator(context).process_document(document_id)

        entries = log_entries(context, document_id)
        stages = {e["stage"] for e in entries}
        assert {"ocr", "metadata", "extraction"} <= stages
        completed = [e for e in entries if e.get("status") == COMPLETED]
        assert {e["stage"] for e in completed} == {"ocr", "metadata", "extraction"}
        assert entries[-1]["stage"] == "pipeline"
        assert entries[-1]["message"] == "Pass finished"
        assert entries[-1]["records"] == 2


class TestIdempotence:

    def test_second_pass_skips_everything(self, context, document_id, fake_llm, fake_ocr, store):
        orchestrator(context).process_document(document_id)
        calls_after_first = len(fake_llm.calls)

        result = orchestrator(context).process_document(document_id)

        assert result.ocr_status == SKIPPED
        assert result.metadata_status == SKIPPED
        assert result.extraction_status == SKIPPED
        assert not result.failed
        assert fake_ocr.calls == 1
        assert len(fake_llm.calls) == calls_after_first
        assert store.records.count(document_id) == 2

        document = store.documents.get(document_id)
        assert document["ocr_status"] == COMPLETED
        assert document["extraction_status"] == COMPLETED

    def test_zero_records_is_not_a_desync(self, context, document_id, fake_llm, store):
        fake_llm.respond("extraction", {"records": []})
        orchestrator(context).process_document(document_id)

        result = orchestrator(context).process_document(document_id)

        assert result.extraction_status == SKIPPED
        assert len(fake_llm.calls_for("extraction")) == 1


class TestCascade:

    def test_force_ocr_reruns_downstream(self, context, document_id, fake_llm, fake_ocr, store):
        orchestrator(context).process_document(document_id)

        result = orchestrator(context, ocr=ForceSpecific(frozenset({document_id}))).process_document(document_id)

        assert fake_ocr.calls == 2
        assert result.ocr_status == COMPLETED
        assert result.metadata_status == COMPLETED
        assert result.extraction_status == COMPLETED
        assert len(fake_llm.calls_for("metadata")) == 2
        assert len(fake_llm.calls_for("extraction")) == 2
        # The same records come back and are recognised as duplicates
        assert store.records.count(document_id) == 2

    def test_force_metadata_skips_ocr(self, context, document_id, fake_llm, fake_ocr):
        orchestrator(context).process_document(document_id)

        result = orchestrator(context, metadata=FORCE_ALL).process_document(document_id)

        assert result.ocr_status == SKIPPED
        assert result.metadata_status == COMPLETED
        assert result.extraction_status == COMPLETED
        assert fake_ocr.calls == 1

    def test_force_extraction_only(self, context, document_id, fake_llm):
        orchestrator(context).process_document(document_id)

        result = orchestrator(context, extraction=FORCE_ALL).process_document(document_id)

        assert result.metadata_status == SKIPPED
        assert result.extraction_status == COMPLETED
        assert len(fake_llm.calls_for("metadata")) == 1

    def test_force_other_document_is_noop(self, context, document_id, fake_ocr):
        orchestrator(context).process_document(document_id)
        orchestrator(context, ocr=ForceSpecific(frozenset({document_id + 100}))).process_document(document_id)
        assert fake_ocr.calls == 1

    def test_downstream_status_reset_before_running(self, context, document_id, fake_llm, store):
        orchestrator(context).process_document(document_id)
        fake_llm.respond("metadata", AllModelsFailedError("metadata", ["down"]))

        orchestrator(context, ocr=FORCE_ALL).process_document(document_id)

        document = store.documents.get(document_id)
        assert document["ocr_status"] == COMPLETED
        assert document["metadata_status"].startswith("Metadata extraction failed: ")
        # Reset by the OCR re-run and not re-run after the failure
        assert document["extraction_status"] is None


class TestDesync:

    def _clear(self, store, document_id, **values):
        table = store.db.documents
        store.db.write(lambda conn: conn.execute(update(table).where(table.c.id == document_id).values(**values)))

    def test_missing_ocr_text(self, context, document_id, fake_ocr, fake_llm, store):
        orchestrator(context).process_document(document_id)
        self._clear(store, document_id, document_content=None)

        result = orchestrator(context).process_document(document_id)

        assert fake_ocr.calls == 2
        assert result.ocr_status == COMPLETED
        assert result.metadata_status == COMPLETED
        assert result.extraction_status == COMPLETED
        assert store.documents.get(document_id)["document_content"]

        desync = [e for e in log_entries(context, document_id) if e.get("status") == "desync"]
        assert len(desync) == 1
        assert desync[0]["stage"] == "ocr"
        assert desync[0]["message"].startswith("Desync detected: ")

    def test_missing_metadata(self, context, document_id, fake_ocr, fake_llm, store):
        orchestrator(context).process_document(document_id)
        self._clear(store, document_id, title=None, first_author_lastname=None, publication_year=None)

        result = orchestrator(context).process_document(document_id)

        assert result.ocr_status == SKIPPED
        assert result.metadata_status == COMPLETED
        assert result.extraction_status == COMPLETED
        assert fake_ocr.calls == 1
        assert len(fake_llm.calls_for("metadata")) == 2


class TestFailures:

    def test_ocr_failure_recorded_and_stops_pass(self, context, document_id, fake_ocr, fake_llm, store):
        fake_ocr.error = TimeoutError("OCR timed out after 300s")

        result = orchestrator(context).process_document(document_id)

        assert result.failed
        assert result.ocr_status == "OCR failed: OCR timed out after 300s"
        assert result.metadata_status is None
        assert result.extraction_status is None
        assert fake_llm.calls == []
        assert store.documents.get(document_id)["ocr_status"] == result.ocr_status

    def test_failed_stage_retried_next_pass(self, context, document_id, fake_ocr, fake_llm):
        fake_llm.respond("metadata", AllModelsFailedError("metadata", ["[t] model-a: RefusalError: no"]))
        first = orchestrator(context).process_document(document_id)
        assert first.metadata_status.startswith("Metadata extraction failed: ")

        fake_llm.respond("metadata", {"first_author_lastname": "Smith", "publication_year": 2020})
        second = orchestrator(context).process_document(document_id)

        assert second.ocr_status == SKIPPED
        assert second.metadata_status == COMPLETED
        assert second.extraction_status == COMPLETED
        assert not second.failed

    def test_metadata_without_identity_fails(self, context, document_id, fake_llm, store):
        fake_llm.respond("metadata", {"title": None, "first_author_lastname": None, "publication_year": None})

        first = orchestrator(context).process_document(document_id)

        assert first.failed
        assert first.metadata_status == "Metadata extraction failed: No title, author or year extracted"
        assert first.extraction_status is None
        assert fake_llm.calls_for("extraction") == []
        assert store.documents.get(document_id)["metadata_status"] == first.metadata_status

        second = orchestrator(context).process_document(document_id)

        assert second.metadata_status == first.metadata_status
        assert second.extraction_status is None
        assert len(fake_llm.calls_for("metadata")) == 2
        assert fake_llm.calls_for("extraction") == []

    def test_empty_ocr_text_fails(self, context, document_id, fake_ocr):
        fake_ocr.text = "   "
        result = orchestrator(context).process_document(document_id)
        assert result.ocr_status == "OCR failed: OCR returned no text"

    def test_missing_pdf_fails(self, context, document_id, store):
        Path(store.documents.get(document_id)["file_path"]).unlink()

        result = orchestrator(context).process_document(document_id)

        assert result.ocr_status.startswith("OCR failed: PDF not found")

    def test_missing_api_key_is_a_stage_failure(self, store, schema, prompts, tmp_path, fake_ocr, document_id):
        context = PipelineContext(
            store=store,
            schema=schema,
            config=PipelineConfig(),
            prompts=prompts,
            log_dir=tmp_path / "logs",
            ocr=fake_ocr,
        )

        result = orchestrator(context).process_document(document_id)

        assert result.ocr_status == COMPLETED
        assert result.metadata_status.startswith("Metadata extraction failed: API key 'openrouter'")

    def test_error_logged_with_type(self, context, document_id, fake_ocr):
        fake_ocr.error = ConfigurationError("bad provider")
        orchestrator(context).process_document(document_id)

        errors = [e for e in log_entries(context, document_id) if e["level"] == "ERROR"]
        assert errors[0]["error"] == "ConfigurationError: bad provider"
        assert errors[0]["status"] == "failed"


class TestRefinementOptIn:

    REFINED = {
        "records": [
            {"record_id": "Smith2020-o1", "location": "Kingston, Ontario", "bat_species": None},
            {"record_id": "Invented2020-o9", "bat_species": "Myotis septentrionalis", "interacting_organism": "Moth"},
        ]
    }

    def test_not_selected_by_default(self, context, document_id, fake_llm):
        fake_llm.respond("refinement", self.REFINED)
        result = orchestrator(context).process_document(document_id)
        assert result.refinement_status == SKIPPED
        assert fake_llm.calls_for("refinement") == []

    def test_selected_document_is_refined(self, context, document_id, fake_llm, store):
        fake_llm.respond("refinement", self.REFINED)

        result = orchestrator(context, refine=ForceSpecific(frozenset({document_id}))).process_document(document_id)

        assert result.refinement_status == COMPLETED
        records = store.records.list_for_document(document_id)
        assert len(records) == 2
        assert records[0]["location"] == "Kingston, Ontario"
        assert records[0]["bat_species"] == RECORD_MYOTIS["bat_species"]
        assert records[0]["prompt_hash"] == context.prompts.refinement_hash
        assert records[1]["location"] == RECORD_EPTESICUS["location"]
        assert "Invented2020-o9" not in {r["record_id"] for r in records}
        assert store.documents.get(document_id)["refinement_llm_model"] == context.config.models.refinement[0]

    def test_refinement_runs_after_skipped_stages(self, context, document_id, fake_llm):
        orchestrator(context).process_document(document_id)
        fake_llm.respond("refinement", self.REFINED)

        result = orchestrator(context, refine=FORCE_ALL).process_document(document_id)

        assert result.extraction_status == SKIPPED
        assert result.refinement_status == COMPLETED

    def test_no_records_skips(self, context, document_id, fake_llm):
        fake_llm.respond("extraction", {"records": []})
        fake_llm.respond("refinement", self.REFINED)

        result = orchestrator(context, refine=FORCE_ALL).process_document(document_id)

        assert result.refinement_status == SKIPPED
        assert fake_llm.calls_for("refinement") == []

    def test_skipped_when_pass_failed(self, context, document_id, fake_llm):
        fake_llm.respond("extraction", AllModelsFailedError("extraction", ["down"]))
        result = orchestrator(context, refine=FORCE_ALL).process_document(document_id)
        assert result.refinement_status == SKIPPED
        assert fake_llm.calls_for("refinement") == []

    def test_refinement_failure_recorded(self, context, document_id, fake_llm, store):
        fake_llm.respond("refinement", AllModelsFailedError("refinement", ["down"]))

        result = orchestrator(context, refine=FORCE_ALL).process_document(document_id)

        assert result.failed
        assert result.refinement_status.startswith("Refinement failed: ")
        assert store.documents.get(document_id)["refinement_status"] == result.refinement_status

    def test_refinement_not_in_cascade(self, context, document_id, fake_llm, store):
        fake_llm.respond("refinement", self.REFINED)
        orchestrator(context, refine=FORCE_ALL).process_document(document_id)

        orchestrator(context, ocr=FORCE_ALL).process_document(document_id)

        assert store.documents.get(document_id)["refinement_status"] == COMPLETED
