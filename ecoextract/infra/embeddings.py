from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from mistralai import Mistral

from ecoextract.infra.errors import ConfigurationError


class EmbeddingProvider(ABC):
    """Maps texts to vectors, one vector per input text, in input order."""

    @abstractmethod
    def embed(self, texts: Sequence[str]) -> List[List[float]]:
        pass


class MistralEmbeddingProvider(EmbeddingProvider):
    def __init__(
        self,
        api_key: str,
        model: str = "mistral-embed",
        batch_size: int = 64,
        timeout: Optional[int] = None,
        client: Mistral = None,
    ):
        if not api_key and client is None:
            raise ConfigurationError("Mistral API key not configured (api_keys.mistral)")

        self.client = client or Mistral(api_key=api_key)
        self.model = model
        self.batch_size = batch_size
        self.timeout = timeout

    def embed(self, texts: Sequence[str]) -> List[List[float]]:
        vectors: List[List[float]] = []
        for start in range(0, len(texts), self.batch_size):
            batch = list(texts[start:start + self.batch_size])
            response = self.client.embeddings.create(
                model=self.model,
                inputs=batch,
                timeout_ms=self.timeout * 1000 if self.timeout else None,
            )
            if len(response.data) != len(batch):
                raise ValueError(
                    f"Embedding provider returned {len(response.data)} vectors for {len(batch)} texts"
                )
            vectors.extend(item.embedding for item in response.data)
        return vectors


def create_embedding_provider(provider: str, api_key: str, model: str, timeout: Optional[int] = None) -> EmbeddingProvider:
    if provider == "mistral":
        return MistralEmbeddingProvider(api_key, model=model, timeout=timeout)
    raise ConfigurationError(f"Unknown embedding provider: {provider}")
