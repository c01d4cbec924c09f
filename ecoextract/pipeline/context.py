"""
Shared per-run state handed to every stage.

Collaborators (LLM, OCR, embeddings) are built on first use so a run where
every stage skips needs no API keys. A missing key then surfaces as a failed
stage for the documents that actually needed the call.
"""

import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ecoextract.dedup import EmbeddingStrategy, JaccardStrategy, SemanticJudge, SimilarityStrategy
from ecoextract.infra.config import PipelineConfig
from ecoextract.infra.embeddings import EmbeddingProvider, create_embedding_provider
from ecoextract.infra.errors import ConfigurationError
from ecoextract.infra.llm import LLMClient, StructuredLLM
from ecoextract.infra.ocr import MistralOCRProvider, OCRProvider
from ecoextract.infra.schema import RecordSchema
from ecoextract.infra.storage import Store

from .prompts import Prompts


@dataclass
class PipelineContext:
    store: Store
    schema: RecordSchema
    config: PipelineConfig
    prompts: Prompts
    log_dir: Optional[Path] = None
    llm: Optional[StructuredLLM] = None
    ocr: Optional[OCRProvider] = None
    embedder: Optional[EmbeddingProvider] = None

    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def _require_key(self, name: str) -> str:
        key = self.config.resolve_api_key(name)
        if not key:
            raise ConfigurationError(f"API key '{name}' is not configured (api_keys.{name} in ecoextract.yaml)")
        return key

    def get_llm(self) -> StructuredLLM:
        with self._lock:
            if self.llm is None:
                client = LLMClient(self._require_key("openrouter"), timeout=self.config.llm_timeout)
                self.llm = StructuredLLM(client)
            return self.llm

    def get_ocr(self) -> OCRProvider:
        with self._lock:
            if self.ocr is None:
                if self.config.ocr.type != "mistral-ocr":
                    raise ConfigurationError(f"Unknown OCR provider: {self.config.ocr.type}")
                self.ocr = MistralOCRProvider(
                    self._require_key(self.config.ocr.api_key_ref),
                    model=self.config.ocr.model,
                )
            return self.ocr

    def get_embedder(self) -> EmbeddingProvider:
        with self._lock:
            if self.embedder is None:
                dedup = self.config.deduplication
                self.embedder = create_embedding_provider(
                    dedup.embedding_provider,
                    self._require_key(dedup.embedding_provider),
                    dedup.embedding_model,
                    timeout=self.config.llm_timeout,
                )
            return self.embedder

    def similarity_strategy(self) -> Optional[SimilarityStrategy]:
        """A fresh strategy per document; embedding caches are not shared."""
        method = self.config.deduplication.method
        if method == "jaccard":
            return JaccardStrategy(self.config.deduplication.ngram_size)
        if method == "embedding":
            return EmbeddingStrategy(self.get_embedder())
        return None

    def semantic_judge(self) -> Optional[SemanticJudge]:
        if self.config.deduplication.method != "llm":
            return None
        return SemanticJudge(
            self.get_llm(),
            self.config.models.deduplication,
            self.prompts.deduplication,
            timeout=self.config.llm_timeout,
        )
