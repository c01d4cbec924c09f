"""
Tests for infra/config/ module.

Tests the project configuration system:
- Defaults when ecoextract.yaml is absent
- YAML loading merged over defaults
- Env var expansion for API keys
- Override search for customisable files
- init_project template copying

All tests use temporary directories - no production data touched.
"""

import pytest
import yaml
from pydantic import ValidationError

from ecoextract.infra.config import (
    ConfigManager,
    DeduplicationConfig,
    ModelsConfig,
    PipelineConfig,
    init_project,
    load_config_file,
    resolve_env_vars,
)
from ecoextract.infra.errors import ConfigurationError


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def project_root(tmp_path):
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def manager(project_root):
    return ConfigManager(project_root)


# =============================================================================
# Env var resolution
# =============================================================================

class TestResolveEnvVars:

    def test_resolves_set_variable(self, monkeypatch):
        monkeypatch.setenv("ECO_TEST_KEY", "secret-123")
        assert resolve_env_vars("${ECO_TEST_KEY}") == "secret-123"

    def test_missing_variable_becomes_empty(self, monkeypatch):
        monkeypatch.delenv("ECO_TEST_MISSING", raising=False)
        assert resolve_env_vars("${ECO_TEST_MISSING}") == ""

    def test_literal_passes_through(self):
        assert resolve_env_vars("literal-value") == "literal-value"

    def test_embedded_reference(self, monkeypatch):
        monkeypatch.setenv("ECO_TEST_HOST", "example.org")
        assert resolve_env_vars("https://${ECO_TEST_HOST}/api") == "https://example.org/api"


# =============================================================================
# Schemas
# =============================================================================

class TestPipelineConfig:

    def test_defaults_reference_env_keys(self):
        config = PipelineConfig.with_defaults()
        assert config.api_keys["openrouter"] == "${OPENROUTER_API_KEY}"
        assert config.api_keys["mistral"] == "${MISTRAL_API_KEY}"
        assert config.deduplication.method == "llm"
        assert config.deduplication.threshold == 0.9
        assert config.workers == 1

    def test_resolve_api_key(self, monkeypatch):
        monkeypatch.setenv("OPENROUTER_API_KEY", "or-key")
        config = PipelineConfig.with_defaults()
        assert config.resolve_api_key("openrouter") == "or-key"

    def test_unset_api_key_is_none(self, monkeypatch):
        monkeypatch.delenv("MISTRAL_API_KEY", raising=False)
        config = PipelineConfig.with_defaults()
        assert config.resolve_api_key("mistral") is None
        assert config.resolve_api_key("unknown") is None

    def test_rejects_unknown_dedup_method(self):
        with pytest.raises(ValidationError):
            DeduplicationConfig(method="exact")

    def test_rejects_threshold_out_of_range(self):
        with pytest.raises(ValidationError):
            DeduplicationConfig(threshold=1.5)

    def test_rejects_empty_model_chain(self):
        with pytest.raises(ValidationError):
            ModelsConfig(extraction=[])


# =============================================================================
# ConfigManager
# =============================================================================

class TestConfigManager:

    def test_load_without_file_returns_defaults(self, manager):
        assert not manager.exists()
        config = manager.load()
        assert config.database == "ecoextract_records.db"
        assert "openrouter" in config.api_keys

    def test_load_merges_over_defaults(self, manager):
        manager.config_path.write_text(yaml.dump({
            "database": "papers.db",
            "deduplication": {"method": "jaccard"},
            "models": {"extraction": ["openai/gpt-4o"]},
        }))

        config = manager.load()

        assert config.database == "papers.db"
        assert config.deduplication.method == "jaccard"
        # Sibling keys in the same section keep their defaults
        assert config.deduplication.threshold == 0.9
        assert config.models.extraction == ["openai/gpt-4o"]
        assert config.models.metadata == ModelsConfig().metadata
        assert config.api_keys["mistral"] == "${MISTRAL_API_KEY}"

    def test_save_and_reload(self, manager):
        config = PipelineConfig.with_defaults()
        config.workers = 4
        manager.save(config)

        assert manager.exists()
        assert manager.load().workers == 4

    def test_update_nested(self, manager):
        manager.update({"ocr": {"timeout": 60}})
        config = manager.load()
        assert config.ocr.timeout == 60
        assert config.ocr.model == "mistral-ocr-latest"


# =============================================================================
# Customisable file search
# =============================================================================

class TestLoadConfigFile:

    def test_explicit_path_wins(self, project_root):
        explicit = project_root / "custom.json"
        explicit.write_text("{}")
        (project_root / "ecoextract").mkdir()
        (project_root / "ecoextract" / "schema.json").write_text('{"x": 1}')

        assert load_config_file(explicit, "schema.json", project_root=project_root) == explicit

    def test_missing_explicit_path_raises(self, project_root):
        with pytest.raises(ConfigurationError, match="not found"):
            load_config_file(project_root / "nope.json", "schema.json", project_root=project_root)

    def test_project_directory_before_prefixed_file(self, project_root):
        (project_root / "ecoextract").mkdir()
        in_dir = project_root / "ecoextract" / "extraction_prompt.md"
        in_dir.write_text("from dir")
        (project_root / "ecoextract_extraction_prompt.md").write_text("from prefix")

        content = load_config_file(None, "extraction_prompt.md", "prompts", return_content=True, project_root=project_root)
        assert content == "from dir"

    def test_prefixed_file_before_packaged(self, project_root):
        (project_root / "ecoextract_extraction_prompt.md").write_text("from prefix")
        content = load_config_file(None, "extraction_prompt.md", "prompts", return_content=True, project_root=project_root)
        assert content == "from prefix"

    def test_falls_back_to_packaged(self, project_root):
        path = load_config_file(None, "schema.json", "data", project_root=project_root)
        assert path.name == "schema.json"
        assert path.parent.name == "data"

    def test_unknown_file_lists_locations(self, project_root):
        with pytest.raises(ConfigurationError, match="not found in any"):
            load_config_file(None, "nothing.md", "prompts", project_root=project_root)

    def test_requires_path_or_name(self):
        with pytest.raises(ConfigurationError):
            load_config_file()


class TestInitProject:

    def test_copies_templates(self, project_root):
        result = init_project(project_root)

        config_dir = project_root / "ecoextract"
        assert result["config_dir"] == config_dir
        assert set(result["copied"]) == {"SCHEMA_GUIDE.md", "schema.json", "extraction_prompt.md"}
        assert (config_dir / "schema.json").exists()

    def test_keeps_existing_files(self, project_root):
        config_dir = project_root / "ecoextract"
        config_dir.mkdir()
        (config_dir / "schema.json").write_text("mine")

        result = init_project(project_root)

        assert "schema.json" in result["skipped"]
        assert (config_dir / "schema.json").read_text() == "mine"

    def test_overwrite(self, project_root):
        config_dir = project_root / "ecoextract"
        config_dir.mkdir()
        (config_dir / "schema.json").write_text("mine")

        result = init_project(project_root, overwrite=True)

        assert "schema.json" in result["copied"]
        assert (config_dir / "schema.json").read_text() != "mine"
