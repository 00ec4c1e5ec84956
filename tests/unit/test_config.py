"""
Unit tests for retrieval configuration loading.

Tests YAML flattening onto RetrievalSettings, keyword overrides, validators
and the mapping of validation failures to ConfigurationError.
"""

import pytest

from src.pipelines.catalog_retrieval.config import ConfigurationLoader, RetrievalSettings
from src.pipelines.catalog_retrieval.exceptions import ConfigurationError
from src.pipelines.catalog_retrieval.pipeline import RetrievalConfig

ENV_VARS = ["TENANT_ID", "LANGUAGE", "LOG_LEVEL", "EMBEDDING_PROVIDER", "SEARCH_POOL_SIZE", "ENABLE_RERANKING"]

SAMPLE_YAML = """
tenant_id: store-1

embedding:
  provider: OpenAI
  model: text-embedding-3-small

search:
  pool_size: 150
  limit: 40

attribute_extraction:
  enabled: false
  fields: [color, size]

rescoring_weights:
  color: 0.3
  sales: 0.0

reranking:
  enabled: true
  top_k: 5

formatting:
  language: EN

cache:
  embeddings:
    ttl_seconds: 60
    max_size: 10
  attributes:
    enabled: false
  sweep_interval_seconds: 30

logging:
  level: debug
"""


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch, tmp_path):
    """Run each test without ambient .env files or environment overrides."""
    monkeypatch.chdir(tmp_path)
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def write_config(tmp_path, content):
    path = tmp_path / "retrieval.yaml"
    path.write_text(content, encoding="utf-8")
    return str(path)


class TestConfigurationLoader:
    """Test YAML loading and flattening."""

    def test_nested_sections_flattened(self, tmp_path):
        settings = ConfigurationLoader(write_config(tmp_path, SAMPLE_YAML)).load_config()

        assert settings.tenant_id == "store-1"
        assert settings.embedding_provider == "openai"
        assert settings.embedding_model == "text-embedding-3-small"
        assert settings.search_pool_size == 150
        assert settings.search_limit == 40
        assert settings.enable_attribute_extraction is False
        assert settings.attribute_fields == ["color", "size"]
        assert settings.rescoring_weight_color == 0.3
        assert settings.rescoring_weight_sales == 0.0
        assert settings.enable_reranking is True
        assert settings.rerank_top_k == 5
        assert settings.language == "en"
        assert settings.embedding_cache_ttl_seconds == 60
        assert settings.embedding_cache_max_size == 10
        assert settings.attribute_cache_enabled is False
        assert settings.cache_sweep_interval_seconds == 30
        assert settings.log_level == "DEBUG"

    def test_unset_values_keep_defaults(self, tmp_path):
        settings = ConfigurationLoader(write_config(tmp_path, SAMPLE_YAML)).load_config()

        assert settings.rescoring_weight_size == 0.10
        assert settings.attribute_cache_ttl_seconds == 1800.0
        assert settings.context_product_count == 8
        assert settings.pinecone_index_name == "catalog-products"

    def test_overrides_win_over_file(self, tmp_path):
        loader = ConfigurationLoader(write_config(tmp_path, SAMPLE_YAML))

        settings = loader.load_config(tenant_id="store-2", search_limit=10)

        assert settings.tenant_id == "store-2"
        assert settings.search_limit == 10

    def test_missing_file_uses_defaults(self, tmp_path):
        settings = ConfigurationLoader(str(tmp_path / "absent.yaml")).load_config()

        assert settings.tenant_id is None
        assert settings.language == "es"
        assert settings.embedding_cache_max_size == 1000
        assert settings.enable_reranking is False

    def test_empty_file_uses_defaults(self, tmp_path):
        settings = ConfigurationLoader(write_config(tmp_path, "")).load_config()

        assert settings.search_pool_size == 200

    def test_invalid_yaml_raises_configuration_error(self, tmp_path):
        loader = ConfigurationLoader(write_config(tmp_path, "search: [unclosed"))

        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            loader.load_config()

    def test_non_mapping_root_rejected(self, tmp_path):
        loader = ConfigurationLoader(write_config(tmp_path, "- just\n- a list\n"))

        with pytest.raises(ConfigurationError, match="must contain a mapping"):
            loader.load_config()

    def test_invalid_values_reported(self, tmp_path):
        loader = ConfigurationLoader(write_config(tmp_path, "search:\n  pool_size: 0\nformatting:\n  language: fr\n"))

        with pytest.raises(ConfigurationError) as exc_info:
            loader.load_config()

        invalid = exc_info.value.invalid_values
        assert "search_pool_size" in invalid
        assert "language" in invalid

    def test_negative_weight_rejected(self, tmp_path):
        loader = ConfigurationLoader(write_config(tmp_path, "rescoring_weights:\n  color: -1\n"))

        with pytest.raises(ConfigurationError) as exc_info:
            loader.load_config()

        assert "rescoring_weight_color" in exc_info.value.invalid_values


class TestRetrievalSettings:
    """Test settings validators and resolution into component configs."""

    @pytest.mark.parametrize("field,value", [
        ("embedding_provider", "cohere"),
        ("language", "de"),
        ("log_level", "VERBOSE"),
    ])
    def test_validators_reject_unsupported_values(self, field, value):
        with pytest.raises(ValueError):
            RetrievalSettings(_env_file=None, **{field: value})

    def test_environment_variables_read(self, monkeypatch):
        monkeypatch.setenv("TENANT_ID", "env-store")
        monkeypatch.setenv("SEARCH_POOL_SIZE", "300")

        settings = RetrievalSettings(_env_file=None)

        assert settings.tenant_id == "env-store"
        assert settings.search_pool_size == 300

    def test_resolved_config_carries_settings(self):
        settings = RetrievalSettings(
            _env_file=None,
            tenant_id="store-1",
            rescoring_weight_color=0.4,
            attribute_fields=["color"],
            embedding_cache_enabled=False,
            include_out_of_stock=True
        )

        config = RetrievalConfig.from_settings(settings)

        assert config.rescoring_weights.color == 0.4
        assert config.extractor_config.allowed_fields == ("color",)
        assert config.embedding_cache_config.enabled is False
        assert config.attribute_cache_config.ttl_seconds == 1800.0
        assert config.include_out_of_stock is True
        assert config.formatter_config.language == "es"

    def test_resolved_config_requires_tenant(self):
        with pytest.raises(ConfigurationError):
            RetrievalConfig.from_settings(RetrievalSettings(_env_file=None))
