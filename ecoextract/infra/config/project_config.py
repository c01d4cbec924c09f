"""
Project configuration loading and management.

The project config is stored at {project_root}/ecoextract.yaml and contains:
- API keys (with env var expansion)
- OCR, model and deduplication settings
- Database and prompt/schema overrides

Customisable files (schema, prompts) are resolved separately by
load_config_file() so a project can override any packaged default.
"""

import shutil
from pathlib import Path
from typing import Optional, Union
import yaml

from ecoextract.infra.errors import ConfigurationError
from .schemas import PipelineConfig


CONFIG_FILENAME = "ecoextract.yaml"
PROJECT_DIRNAME = "ecoextract"
PACKAGE_ROOT = Path(__file__).resolve().parent.parent.parent


class ConfigManager:
    """
    Manages the project-level configuration.

    Usage:
        manager = ConfigManager(project_root)
        config = manager.load()  # Returns PipelineConfig
        manager.save(config)     # Persists to disk
    """

    def __init__(self, project_root: Path):
        self.project_root = Path(project_root).expanduser().resolve()
        self.config_path = self.project_root / CONFIG_FILENAME

    def exists(self) -> bool:
        return self.config_path.exists()

    def load(self) -> PipelineConfig:
        """
        Load project config from disk.

        Returns PipelineConfig with defaults if file doesn't exist.
        """
        if not self.config_path.exists():
            return PipelineConfig.with_defaults()

        with open(self.config_path, "r") as f:
            data = yaml.safe_load(f) or {}

        defaults = PipelineConfig.with_defaults().model_dump()
        _deep_merge(defaults, data)
        return PipelineConfig.model_validate(defaults)

    def save(self, config: PipelineConfig) -> None:
        self.project_root.mkdir(parents=True, exist_ok=True)

        data = config.model_dump(exclude_none=True)

        with open(self.config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    def update(self, updates: dict) -> PipelineConfig:
        """
        Update specific fields in the config.

        Args:
            updates: Dict of fields to update (can be nested)

        Returns:
            Updated PipelineConfig
        """
        data = self.load().model_dump()
        _deep_merge(data, updates)

        new_config = PipelineConfig.model_validate(data)
        self.save(new_config)
        return new_config


def _deep_merge(base: dict, updates: dict) -> None:
    """Deep merge updates into base dict (mutates base)."""
    for key, value in updates.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


def load_project_config(project_root: Path) -> PipelineConfig:
    return ConfigManager(project_root).load()


def load_config_file(
    file_path: Optional[Union[str, Path]] = None,
    file_name: Optional[str] = None,
    package_subdir: str = "data",
    return_content: bool = False,
    project_root: Optional[Path] = None,
) -> Union[Path, str]:
    """
    Locate a customisable file, searching in priority order:

    1. Explicit file path (if provided; must exist)
    2. Project ecoextract/ directory
    3. Project root with ecoextract_ prefix
    4. Packaged default

    Args:
        file_path: Explicit path to file (highest priority)
        file_name: Base filename to search for (e.g. "schema.json")
        package_subdir: Packaged subdirectory ("data" or "prompts")
        return_content: Return file content instead of the path
        project_root: Directory searched for overrides (default: cwd)

    Returns:
        Path to the file, or its content if return_content is True
    """
    if file_path is not None:
        path = Path(file_path)
        if not path.exists():
            raise ConfigurationError(f"Specified file not found: {file_path}")
        return path.read_text(encoding="utf-8") if return_content else path

    if not file_name:
        raise ConfigurationError("Either file_path or file_name must be provided")

    root = Path(project_root) if project_root else Path.cwd()
    candidates = [
        root / PROJECT_DIRNAME / file_name,
        root / f"{PROJECT_DIRNAME}_{file_name}",
        PACKAGE_ROOT / package_subdir / file_name,
    ]

    for candidate in candidates:
        if candidate.exists():
            return candidate.read_text(encoding="utf-8") if return_content else candidate

    searched = "\n".join(f"  {i}. {c}" for i, c in enumerate(candidates, 2))
    raise ConfigurationError(
        f"Configuration file '{file_name}' not found in any of the following locations:\n"
        f"  1. Explicit path (none provided)\n{searched}"
    )


# (source file, packaged subdir) copied by init_project
TEMPLATE_FILES = [
    ("SCHEMA_GUIDE.md", "data"),
    ("schema.json", "data"),
    ("extraction_prompt.md", "prompts"),
]


def init_project(project_dir: Optional[Path] = None, overwrite: bool = False) -> dict:
    """
    Copy customisable templates into {project_dir}/ecoextract/.

    Returns:
        Dict with 'copied' and 'skipped' filename lists
    """
    config_dir = Path(project_dir or Path.cwd()) / PROJECT_DIRNAME
    config_dir.mkdir(parents=True, exist_ok=True)

    copied, skipped = [], []
    for file_name, subdir in TEMPLATE_FILES:
        source = PACKAGE_ROOT / subdir / file_name
        dest = config_dir / file_name

        if dest.exists() and not overwrite:
            skipped.append(file_name)
            continue

        shutil.copyfile(source, dest)
        copied.append(file_name)

    return {"config_dir": config_dir, "copied": copied, "skipped": skipped}
