class EcoExtractError(Exception):
    """Base exception for ecoextract errors."""


class ConfigurationError(EcoExtractError):
    """Raised when configuration is invalid or missing.

    Configuration errors are not document-specific, so they abort a run
    before any document is processed.
    """


class SchemaError(ConfigurationError):
    """Raised when the record schema is missing its required structure."""
