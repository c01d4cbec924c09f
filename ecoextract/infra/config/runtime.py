"""
Runtime configuration access.

Single source of truth: {project_root}/ecoextract.yaml

The only environment variable read here is ECOEXTRACT_ROOT, which locates the
project. API keys are referenced from the config via ${ENV_VAR} and may come
from a .env file in the project root.
"""

import os
from pathlib import Path
from functools import lru_cache

from dotenv import load_dotenv

from .schemas import PipelineConfig
from .project_config import load_project_config


def get_project_root() -> Path:
    """Get the project root from environment."""
    return Path(os.getenv('ECOEXTRACT_ROOT', '.')).expanduser().resolve()


@lru_cache(maxsize=1)
def get_config() -> PipelineConfig:
    """
    Load and cache the project configuration.

    Returns PipelineConfig with defaults if ecoextract.yaml doesn't exist.
    """
    root = get_project_root()
    load_dotenv(root / ".env")
    return load_project_config(root)


def get_api_key(name: str) -> str:
    """
    Get an API key by name, resolving ${ENV_VAR} references.

    Args:
        name: Key name (e.g., "openrouter", "mistral")

    Returns:
        Resolved API key value, or empty string if not found
    """
    return get_config().resolve_api_key(name) or ""


def reload_config() -> PipelineConfig:
    """Force reload of project config (clears cache)."""
    get_config.cache_clear()
    return get_config()
