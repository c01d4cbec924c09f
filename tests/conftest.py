"""
Shared fixtures for ecoextract tests.

All tests use real SQLite databases and real files in temporary directories.
No mocking of the store - we test actual behavior.
"""

import copy
import json

import pytest

from ecoextract.infra.config import DeduplicationConfig, PipelineConfig
from ecoextract.infra.schema import parse_schema
from ecoextract.infra.storage import open_store
from ecoextract.pipeline.context import PipelineContext
from ecoextract.pipeline.prompts import load_prompts

from fakes import (
    METADATA_RESPONSE,
    RECORD_EPTESICUS,
    RECORD_MYOTIS,
    SAMPLE_SCHEMA,
    FakeLLM,
    FakeOCR,
)


@pytest.fixture
def schema():
    return parse_schema(copy.deepcopy(SAMPLE_SCHEMA))


@pytest.fixture
def schema_file(tmp_path):
    path = tmp_path / "schema.json"
    path.write_text(json.dumps(SAMPLE_SCHEMA))
    return path


@pytest.fixture
def store(tmp_path, schema):
    store = open_store(tmp_path / "records.db", schema)
    yield store
    store.close()


@pytest.fixture
def make_pdf(tmp_path):
    """Write a small fake PDF; distinct content gives a distinct document."""
    pdf_dir = tmp_path / "pdfs"
    pdf_dir.mkdir(exist_ok=True)

    def _make(name="paper.pdf", content=None):
        path = pdf_dir / name
        path.write_bytes(b"%PDF-1.4\n" + (content or name).encode() + b"\n%%EOF\n")
        return path

    return _make


@pytest.fixture
def config():
    return PipelineConfig(deduplication=DeduplicationConfig(method="jaccard"))


@pytest.fixture
def prompts(config, tmp_path):
    return load_prompts(config, project_root=tmp_path)


@pytest.fixture
def fake_llm():
    llm = FakeLLM()
    llm.respond("metadata", METADATA_RESPONSE)
    llm.respond("extraction", {"records": [RECORD_MYOTIS, RECORD_EPTESICUS]})
    return llm


@pytest.fixture
def fake_ocr():
    return FakeOCR()


@pytest.fixture
def context(store, schema, config, prompts, tmp_path, fake_llm, fake_ocr):
    return PipelineContext(
        store=store,
        schema=schema,
        config=config,
        prompts=prompts,
        log_dir=tmp_path / "logs",
        llm=fake_llm,
        ocr=fake_ocr,
    )
