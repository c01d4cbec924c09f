from ecoextract.infra.config import PipelineConfig, get_config
from ecoextract.infra.errors import EcoExtractError, ConfigurationError, SchemaError
from ecoextract.infra.logger import PipelineLogger
from ecoextract.infra.schema import RecordSchema, FieldSpec, load_schema, parse_schema

__all__ = [
    "PipelineConfig",
    "get_config",
    "EcoExtractError",
    "ConfigurationError",
    "SchemaError",
    "PipelineLogger",
    "RecordSchema",
    "FieldSpec",
    "load_schema",
    "parse_schema",
]
