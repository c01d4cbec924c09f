"""
Configuration management for ecoextract.

Usage:
    from ecoextract.infra.config import ConfigManager, get_config

    manager = ConfigManager(project_root)
    config = manager.load()

    # Cached runtime access (ECOEXTRACT_ROOT or cwd)
    config = get_config()
    key = get_api_key("openrouter")
"""

from .schemas import (
    OCRConfig,
    ModelsConfig,
    DeduplicationConfig,
    CrossRefConfig,
    PipelineConfig,
    resolve_env_vars,
)

from .project_config import (
    ConfigManager,
    load_project_config,
    load_config_file,
    init_project,
)

from .runtime import (
    get_project_root,
    get_config,
    get_api_key,
    reload_config,
)


__all__ = [
    "OCRConfig",
    "ModelsConfig",
    "DeduplicationConfig",
    "CrossRefConfig",
    "PipelineConfig",
    "resolve_env_vars",
    "ConfigManager",
    "load_project_config",
    "load_config_file",
    "init_project",
    "get_project_root",
    "get_config",
    "get_api_key",
    "reload_config",
]
