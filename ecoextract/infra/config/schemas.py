"""
Configuration schemas for ecoextract.

Defines the structure of the project configuration file.
The config lives at {project_root}/ecoextract.yaml (or ECOEXTRACT_ROOT).
"""

from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, Field, field_validator
import os
import re


class OCRConfig(BaseModel):
    """Configuration for the OCR provider (PDF to markdown)."""
    type: str = Field("mistral-ocr", description="Provider type: mistral-ocr")
    model: str = Field("mistral-ocr-latest", description="OCR model identifier")
    api_key_ref: str = Field("mistral", description="Reference to api_keys entry")
    timeout: int = Field(300, description="Seconds to wait for OCR to complete")


class ModelsConfig(BaseModel):
    """Ordered model lists per LLM step. The first entry is tried first."""
    metadata: List[str] = Field(
        default=["anthropic/claude-sonnet-4.5", "openai/gpt-4o"],
        description="Fallback chain for publication metadata extraction"
    )
    extraction: List[str] = Field(
        default=["anthropic/claude-sonnet-4.5", "openai/gpt-4o"],
        description="Fallback chain for record extraction"
    )
    refinement: List[str] = Field(
        default=["anthropic/claude-sonnet-4.5", "openai/gpt-4o"],
        description="Fallback chain for record refinement"
    )
    deduplication: str = Field(
        "anthropic/claude-sonnet-4.5",
        description="Model used by the llm deduplication method"
    )

    @field_validator("metadata", "extraction", "refinement")
    @classmethod
    def _non_empty(cls, value: List[str]) -> List[str]:
        if not value:
            raise ValueError("model list cannot be empty")
        return value


class DeduplicationConfig(BaseModel):
    """How newly extracted records are compared against stored ones."""
    method: Literal["llm", "embedding", "jaccard"] = Field(
        "llm", description="Similarity method"
    )
    threshold: float = Field(
        0.9, ge=0.0, le=1.0,
        description="Minimum per-field similarity for a duplicate"
    )
    ngram_size: int = Field(3, ge=1, description="Character n-gram width for jaccard")
    embedding_provider: str = Field("mistral", description="Embedding provider type")
    embedding_model: str = Field("mistral-embed", description="Embedding model identifier")


class CrossRefConfig(BaseModel):
    """Publication metadata lookups against the public CrossRef API."""
    mailto: Optional[str] = Field(
        None, description="Contact address sent to CrossRef for the polite pool"
    )
    timeout: int = Field(30, ge=1, description="Seconds per CrossRef request")
    rows: int = Field(5, ge=1, le=100, description="Candidates fetched by a title search")


class PipelineConfig(BaseModel):
    """
    Project-level configuration.

    Stored at: {project_root}/ecoextract.yaml
    """
    api_keys: Dict[str, str] = Field(
        default_factory=dict,
        description="API keys (can use ${ENV_VAR} syntax)"
    )
    database: str = Field(
        "ecoextract_records.db",
        description="Path to the SQLite database"
    )
    schema_file: Optional[str] = Field(None, description="Custom record schema path")
    extraction_prompt_file: Optional[str] = Field(None, description="Custom extraction prompt")
    refinement_prompt_file: Optional[str] = Field(None, description="Custom refinement prompt")
    metadata_prompt_file: Optional[str] = Field(None, description="Custom metadata prompt")
    log_dir: str = Field("logs", description="Directory for per-document JSONL logs")

    ocr: OCRConfig = Field(default_factory=OCRConfig)
    models: ModelsConfig = Field(default_factory=ModelsConfig)
    deduplication: DeduplicationConfig = Field(default_factory=DeduplicationConfig)
    crossref: CrossRefConfig = Field(default_factory=CrossRefConfig)

    workers: int = Field(1, ge=1, description="Documents processed in parallel")
    llm_timeout: int = Field(300, ge=1, description="Seconds per LLM request")
    busy_timeout_ms: int = Field(30000, ge=0, description="SQLite busy timeout")
    write_retries: int = Field(5, ge=1, description="Attempts for a locked write")

    def resolve_api_key(self, key_name: str) -> Optional[str]:
        """
        Resolve an API key, expanding ${ENV_VAR} references.

        Returns None if key not found or env var not set.
        """
        if key_name not in self.api_keys:
            return None

        return resolve_env_vars(self.api_keys[key_name]) or None

    @classmethod
    def with_defaults(cls) -> "PipelineConfig":
        """Create a config with sensible defaults."""
        return cls(
            api_keys={
                "openrouter": "${OPENROUTER_API_KEY}",
                "mistral": "${MISTRAL_API_KEY}",
            },
        )


def resolve_env_vars(value: str) -> str:
    """
    Resolve ${ENV_VAR} references in a string.

    Examples:
        "${OPENROUTER_API_KEY}" -> actual value from environment
        "literal-value" -> "literal-value"
        "${MISSING_VAR}" -> "" (empty string if not set)
    """
    if not isinstance(value, str):
        return value

    pattern = r'\$\{([^}]+)\}'

    def replace(match):
        return os.environ.get(match.group(1), "")

    return re.sub(pattern, replace, value)
