"""
Tests for dedup/engine.py and dedup/semantic.py

A new record is discarded only when some stored record matches it on every
unique field both populate. The semantic judge fails open.
"""

import json

import pytest

from ecoextract.dedup import (
    DeduplicationResult,
    EmbeddingStrategy,
    JaccardStrategy,
    SemanticJudge,
    deduplicate,
)
from ecoextract.infra.errors import ConfigurationError
from ecoextract.infra.llm import AllModelsFailedError

from fakes import FakeEmbedder, FakeLLM


UNIQUE = ["bat_species", "interacting_organism", "location"]

STORED = [
    {"bat_species": "Myotis lucifugus", "interacting_organism": "Aedes vexans", "location": "Ontario"},
    {"bat_species": "Eptesicus fuscus", "interacting_organism": "Coleoptera", "location": None},
]


def run(new, existing=STORED, method="jaccard", **kwargs):
    if method == "jaccard":
        kwargs.setdefault("strategy", JaccardStrategy())
    return deduplicate(new, existing, UNIQUE, method, **kwargs)


class StubJudge:
    def __init__(self, indices):
        self.indices = indices
        self.calls = 0

    def unique_indices(self, new_records, existing_records, unique_fields):
        self.calls += 1
        return self.indices


class TestJaccardDeduplication:

    def test_empty_existing_keeps_everything(self):
        new = [dict(STORED[0])]
        result = run(new, existing=[])
        assert result.kept_records == new
        assert result.duplicate_count == 0

    def test_empty_new(self):
        result = run([])
        assert result == DeduplicationResult(kept_records=[], duplicate_count=0, kept_indices=[])

    def test_exact_duplicate_dropped(self):
        result = run([dict(STORED[0])])
        assert result.kept_records == []
        assert result.duplicate_count == 1

    def test_case_and_whitespace_ignored(self):
        result = run([{"bat_species": " myotis LUCIFUGUS", "interacting_organism": "aedes vexans", "location": "ontario"}])
        assert result.duplicate_count == 1

    def test_all_fields_must_match(self):
        new = [{"bat_species": "Myotis lucifugus", "interacting_organism": "Culex pipiens", "location": "Ontario"}]
        assert run(new).kept_records == new

    def test_null_on_one_side_is_not_compared(self):
        # Stored Eptesicus has no location; the new one does
        new = [{"bat_species": "Eptesicus fuscus", "interacting_organism": "Coleoptera", "location": "Kansas"}]
        assert run(new).duplicate_count == 1

    def test_no_comparable_field_is_not_duplicate(self):
        new = [{"bat_species": None, "interacting_organism": None, "location": None}]
        assert run(new).kept_records == new

    def test_threshold(self):
        new = [{"bat_species": "Myotis lucifugus.", "interacting_organism": "Aedes vexans", "location": "Ontario"}]
        assert run(new, threshold=0.9).duplicate_count == 1
        assert run(new, threshold=0.99).duplicate_count == 0

    def test_new_records_not_compared_with_each_other(self):
        twin = {"bat_species": "Lasiurus borealis", "interacting_organism": "Noctuidae", "location": "Iowa"}
        result = run([dict(twin), dict(twin)])
        assert result.kept_indices == [0, 1]

    def test_keeps_original_order(self):
        new = [
            {"bat_species": "Lasiurus borealis", "interacting_organism": "Noctuidae"},
            dict(STORED[0]),
            {"bat_species": "Tadarida brasiliensis", "interacting_organism": "Helicoverpa zea"},
        ]
        result = run(new)
        assert result.kept_indices == [0, 2]
        assert result.kept_records == [new[0], new[2]]

    def test_soft_deleted_rows_still_block_reinsertion(self):
        deleted = dict(STORED[0], deleted_by_user=True)
        assert run([dict(STORED[0])], existing=[deleted]).duplicate_count == 1

    def test_array_fields_compared_by_content(self):
        existing = [{"bat_species": "Myotis lucifugus", "interacting_organism": ["Aedes", "Culex"]}]
        new = [{"bat_species": "Myotis lucifugus", "interacting_organism": ["Aedes", "Culex"]}]
        assert deduplicate(new, existing, ["bat_species", "interacting_organism"], "jaccard",
                           strategy=JaccardStrategy()).duplicate_count == 1


class TestConfigurationErrors:

    def test_unknown_method(self):
        with pytest.raises(ConfigurationError, match="Unknown deduplication method"):
            deduplicate([dict(STORED[0])], STORED, UNIQUE, "exact")

    def test_jaccard_requires_strategy(self):
        with pytest.raises(ConfigurationError):
            deduplicate([dict(STORED[0])], STORED, UNIQUE, "jaccard")

    def test_llm_requires_judge(self):
        with pytest.raises(ConfigurationError):
            deduplicate([dict(STORED[0])], STORED, UNIQUE, "llm")


class TestEmbeddingDeduplication:

    def test_matches_by_cosine(self):
        embedder = FakeEmbedder()
        # Letter counts ignore order, so an anagram scores 1.0
        new = [{"bat_species": "Myotis lucifugus", "interacting_organism": "Aedes vexans", "location": "oiratno"}]
        result = deduplicate(new, STORED, UNIQUE, "embedding", threshold=0.95, strategy=EmbeddingStrategy(embedder))

        assert result.duplicate_count == 1
        assert len(embedder.batches) == 1


class TestSemanticDeduplication:

    def test_keeps_unique_indices(self):
        new = [{"bat_species": "A"}, {"bat_species": "B"}, {"bat_species": "C"}]
        result = run(new, method="llm", judge=StubJudge([2, 0]))
        assert result.kept_indices == [0, 2]
        assert result.duplicate_count == 1

    @pytest.mark.parametrize("indices", [None, []])
    def test_empty_or_failed_response_keeps_everything(self, indices):
        new = [{"bat_species": "A"}, {"bat_species": "B"}]
        result = run(new, method="llm", judge=StubJudge(indices))
        assert result.kept_records == new

    def test_out_of_range_indices_ignored(self):
        new = [{"bat_species": "A"}, {"bat_species": "B"}]
        result = run(new, method="llm", judge=StubJudge([1, 5, -1]))
        assert result.kept_indices == [1]

    def test_only_invalid_indices_keeps_everything(self):
        new = [{"bat_species": "A"}, {"bat_species": "B"}]
        result = run(new, method="llm", judge=StubJudge([7, 9]))
        assert result.kept_records == new
        assert result.kept_indices == [0, 1]

    def test_judge_not_called_without_existing(self):
        judge = StubJudge([])
        run([{"bat_species": "A"}], existing=[], method="llm", judge=judge)
        assert judge.calls == 0


class TestSemanticJudge:

    def _judge(self, llm):
        return SemanticJudge(llm, "model-dedup", prompt="Decide duplicates.")

    def test_unique_indices(self):
        llm = FakeLLM()
        llm.respond("deduplication", {"unique_indices": [0, 2, True, "1"]})

        indices = self._judge(llm).unique_indices([{"a": 1}] * 3, STORED, UNIQUE)

        assert indices == [0, 2]
        call = llm.calls[0]
        assert call["models"] == ["model-dedup"]
        assert call["system_prompt"] == "Decide duplicates."
        assert call["response_format"]["json_schema"]["name"] == "deduplication"

    def test_context_restricted_to_unique_fields(self):
        judge = self._judge(FakeLLM())
        context = judge.build_context(
            [{"bat_species": "A", "location": "X", "page_number": 9}],
            [{"bat_species": "B", "interacting_organism": "C", "supporting_sentences": ["long text"]}],
            ["bat_species", "location"],
        )

        assert "page_number" not in context
        assert "long text" not in context
        new_part = context.split("New records:\n")[1]
        assert json.loads(new_part) == [{"index": 0, "bat_species": "A", "location": "X"}]

    def test_llm_failure_fails_open(self):
        llm = FakeLLM()
        llm.respond("deduplication", AllModelsFailedError("deduplication", ["down"]))
        assert self._judge(llm).unique_indices([{"a": 1}], STORED, UNIQUE) is None

    def test_malformed_response_fails_open(self):
        llm = FakeLLM()
        llm.respond("deduplication", {"keep": [0]})
        assert self._judge(llm).unique_indices([{"a": 1}], STORED, UNIQUE) is None
