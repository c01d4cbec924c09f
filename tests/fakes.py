"""
Sample schema, records and fakes for external collaborators.

The fakes return queued responses so no test touches the network.
"""

import copy
import json

import requests
from sqlalchemy import and_, delete

from ecoextract.infra.embeddings import EmbeddingProvider
from ecoextract.infra.llm import AllModelsFailedError, StructuredResult
from ecoextract.infra.ocr import OCRProvider, OCRResult, join_pages


SAMPLE_SCHEMA = {
    "type": "object",
    "properties": {
        "records": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "bat_species": {"type": "string", "description": "Scientific name of the bat"},
                    "interacting_organism": {"type": "string", "description": "Scientific name of the other organism"},
                    "interaction_type": {"type": ["string", "null"], "description": "Kind of interaction"},
                    "location": {"type": ["string", "null"], "description": "Where it was observed"},
                    "page_number": {"type": ["integer", "null"], "description": "Page of the evidence"},
                    "supporting_sentences": {
                        "type": "array",
                        "items": {"type": "string"},
                        "description": "Verbatim evidence",
                        "x-display": "list",
                    },
                    "confidence": {"type": ["number", "null"]},
                    "verified": {"type": ["boolean", "null"]},
                },
                "required": ["bat_species", "interacting_organism"],
                "x-unique-fields": ["bat_species", "interacting_organism", "interaction_type", "location"],
            },
        }
    },
}

RECORD_MYOTIS = {
    "bat_species": "Myotis lucifugus",
    "interacting_organism": "Aedes vexans",
    "interaction_type": "predation",
    "location": "Ontario",
    "page_number": 3,
    "supporting_sentences": ["Little brown bats fed on mosquitoes."],
}

RECORD_EPTESICUS = {
    "bat_species": "Eptesicus fuscus",
    "interacting_organism": "Coleoptera",
    "interaction_type": "predation",
    "location": "Ontario",
    "page_number": 4,
    "supporting_sentences": ["Big brown bats ate beetles."],
}

METADATA_RESPONSE = {
    "title": "Diet of bats in Ontario",
    "first_author_lastname": "Smith",
    "authors": ["Smith, J.", "Doe, A."],
    "publication_year": 2020,
    "doi": "10.1000/bats.2020",
}

OCR_TEXT = join_pages([
    "# Diet of bats in Ontario\n\nJ. Smith, A. Doe",
    "Little brown bats fed on mosquitoes.",
    "Big brown bats ate beetles.",
])


class FakeLLM:
    """Stands in for StructuredLLM.

    Responses are queued per step name. The last queued response is sticky,
    so repeated passes keep getting it. A queued exception is raised.
    """

    def __init__(self):
        self.responses = {}
        self.calls = []

    def respond(self, step_name, *items):
        self.responses[step_name] = list(items)

    def calls_for(self, step_name):
        return [c for c in self.calls if c["step_name"] == step_name]

    def call(self, system_prompt, context, response_format, models, step_name, timeout=None):
        self.calls.append({
            "system_prompt": system_prompt,
            "context": context,
            "response_format": response_format,
            "models": list(models),
            "step_name": step_name,
        })
        queue = self.responses.get(step_name)
        if not queue:
            raise AllModelsFailedError(step_name, [f"no response queued for {step_name}"])
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return StructuredResult(data=copy.deepcopy(item), model_used=models[0])


class FakeOCR(OCRProvider):
    def __init__(self, text=OCR_TEXT):
        self.text = text
        self.error = None
        self.calls = 0

    @property
    def name(self) -> str:
        return "fake-ocr"

    def process_document(self, file_path, timeout=None):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return OCRResult(text=self.text, num_pages=3, provider=self.name)


class FakeEmbedder(EmbeddingProvider):
    """Embeds a text as letter counts, so similar spellings score close."""

    def __init__(self):
        self.batches = []

    def embed(self, texts):
        self.batches.append(list(texts))
        return [[text.count(letter) for letter in "abcdefghijklmnopqrstuvwxyz"] for text in texts]




def lose_records(store, document_id, ids):
    """Remove record rows behind the pipeline's back, as an external tool might."""
    table = store.db.records

    def _delete(conn):
        return conn.execute(
            delete(table).where(and_(table.c.document_id == document_id, table.c.id.in_(list(ids))))
        ).rowcount

    return store.db.write(_delete)


CROSSREF_WORK = {
    "DOI": "10.1000/bats.2020",
    "title": ["Diet of bats in Ontario"],
    "container-title": ["Journal of Mammalogy"],
    "published-print": {"date-parts": [[2020, 6]]},
    "issued": {"date-parts": [[2019, 12, 1]]},
    "author": [{"given": "Jane", "family": "Smith"}, {"given": "A.", "family": "Doe"}],
    "volume": "101",
    "issue": "3",
    "page": "455-467",
    "ISSN": ["0022-2372", "1545-1542"],
    "publisher": "Oxford University Press",
    "language": "en",
}


def json_response(status_code, payload=None):
    response = requests.Response()
    response.status_code = status_code
    response.url = "https://api.crossref.org/works"
    response._content = json.dumps(payload or {}).encode()
    return response


class FakeSession:
    """Stands in for requests.Session; returns or raises queued items in order."""

    def __init__(self, *items):
        self.items = list(items)
        self.requests = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.requests.append({"url": url, "params": params or {}, "headers": headers or {}, "timeout": timeout})
        item = self.items.pop(0)
        if isinstance(item, Exception):
            raise item
        return item
