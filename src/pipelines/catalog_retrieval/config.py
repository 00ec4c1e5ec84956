"""Configuration management for the catalog retrieval pipeline."""

from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError

DEFAULT_CONFIG_PATH = "config/retrieval.yaml"


class RetrievalSettings(BaseSettings):
    """Environment-based configuration for the catalog retrieval pipeline."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # API Keys (from environment)
    openai_api_key: Optional[str] = Field(default=None)
    voyage_api_key: Optional[str] = Field(default=None)
    pinecone_api_key: Optional[str] = Field(default=None)

    # Scoping
    tenant_id: Optional[str] = Field(default=None, description="Required catalog tenant")

    # Embedding Settings
    embedding_provider: str = Field(default="voyage")
    embedding_model: str = Field(default="voyage-multilingual-2")
    embedding_timeout_seconds: float = Field(default=10.0, gt=0.0, le=120.0)
    normalize_unicode: bool = Field(default=True)

    # Pinecone Settings
    pinecone_index_name: str = Field(default="catalog-products")
    pinecone_namespace: Optional[str] = Field(default=None)

    # Search Settings
    search_pool_size: int = Field(default=200, ge=1, le=10000)
    search_limit: int = Field(default=50, ge=1, le=1000)
    search_timeout_seconds: float = Field(default=10.0, gt=0.0, le=120.0)

    # Rescoring Weights
    rescoring_weight_color: float = Field(default=0.15, ge=0.0)
    rescoring_weight_size: float = Field(default=0.10, ge=0.0)
    rescoring_weight_material: float = Field(default=0.10, ge=0.0)
    rescoring_weight_category: float = Field(default=0.12, ge=0.0)
    rescoring_weight_brand: float = Field(default=0.08, ge=0.0)
    rescoring_weight_popularity: float = Field(default=0.05, ge=0.0)
    rescoring_weight_ctr: float = Field(default=0.10, ge=0.0)
    rescoring_weight_sales: float = Field(default=0.10, ge=0.0)

    # Attribute Extraction Settings
    enable_attribute_extraction: bool = Field(default=True)
    attribute_extraction_model: str = Field(default="gpt-4o-mini")
    attribute_extraction_temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    attribute_extraction_timeout_seconds: float = Field(default=5.0, gt=0.0, le=60.0)
    attribute_fields: List[str] = Field(
        default_factory=lambda: [
            "category", "color", "gender", "brand", "material", "size", "season", "priceMin", "priceMax"
        ]
    )

    # Reranking Settings
    enable_reranking: bool = Field(default=False)
    rerank_model: str = Field(default="rerank-2")
    rerank_top_k: int = Field(default=10, ge=1, le=1000)
    rerank_timeout_seconds: float = Field(default=10.0, gt=0.0, le=120.0)
    rerank_blend_weight: float = Field(default=0.5, ge=0.0, le=1.0)

    # Formatting Settings
    context_product_count: int = Field(default=8, ge=1, le=100)
    language: str = Field(default="es")
    include_out_of_stock: bool = Field(default=False)

    # Cache Settings
    embedding_cache_enabled: bool = Field(default=True)
    embedding_cache_ttl_seconds: float = Field(default=3600.0, gt=0.0)
    embedding_cache_max_size: int = Field(default=1000, ge=1)
    attribute_cache_enabled: bool = Field(default=True)
    attribute_cache_ttl_seconds: float = Field(default=1800.0, gt=0.0)
    attribute_cache_max_size: int = Field(default=500, ge=1)
    cache_sweep_interval_seconds: float = Field(default=300.0, gt=0.0)

    # Logging Settings
    log_level: str = Field(default="INFO")

    @field_validator("embedding_provider")
    @classmethod
    def validate_embedding_provider(cls, v: str) -> str:
        """Validate embedding provider is supported."""
        allowed_providers = ["voyage", "openai"]
        if v.lower() not in allowed_providers:
            raise ValueError(f"embedding_provider must be one of {allowed_providers}")
        return v.lower()

    @field_validator("language")
    @classmethod
    def validate_language(cls, v: str) -> str:
        """Validate context language is supported."""
        allowed_languages = ["en", "es"]
        if v.lower() not in allowed_languages:
            raise ValueError(f"language must be one of {allowed_languages}")
        return v.lower()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is supported."""
        allowed_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed_levels:
            raise ValueError(f"log_level must be one of {allowed_levels}")
        return v.upper()


# YAML section -> {section key: RetrievalSettings field}
_SECTION_FIELDS: Dict[str, Dict[str, str]] = {
    "embedding": {
        "provider": "embedding_provider",
        "model": "embedding_model",
        "timeout_seconds": "embedding_timeout_seconds",
        "normalize_unicode": "normalize_unicode",
    },
    "pinecone": {
        "index_name": "pinecone_index_name",
        "namespace": "pinecone_namespace",
    },
    "search": {
        "pool_size": "search_pool_size",
        "limit": "search_limit",
        "timeout_seconds": "search_timeout_seconds",
    },
    "attribute_extraction": {
        "enabled": "enable_attribute_extraction",
        "llm_model": "attribute_extraction_model",
        "temperature": "attribute_extraction_temperature",
        "timeout_seconds": "attribute_extraction_timeout_seconds",
        "fields": "attribute_fields",
    },
    "reranking": {
        "enabled": "enable_reranking",
        "model": "rerank_model",
        "top_k": "rerank_top_k",
        "timeout_seconds": "rerank_timeout_seconds",
        "blend_weight": "rerank_blend_weight",
    },
    "formatting": {
        "context_product_count": "context_product_count",
        "language": "language",
        "include_out_of_stock": "include_out_of_stock",
    },
    "logging": {
        "level": "log_level",
    },
}

_CACHE_TIERS = {"embeddings": "embedding_cache", "attributes": "attribute_cache"}


class ConfigurationLoader:
    """Loads configuration from YAML files and environment variables."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration loader.

        Args:
            config_path: Path to YAML configuration file (optional)
        """
        self.config_path = config_path or DEFAULT_CONFIG_PATH

    def load_config(self, **overrides: Any) -> RetrievalSettings:
        """Load configuration from YAML file and environment variables.

        Settings missing from the YAML file fall back to environment variables
        and then to defaults. Keyword overrides win over both.

        Returns:
            RetrievalSettings instance with loaded configuration

        Raises:
            ConfigurationError: If configuration validation fails
        """
        merged_config = self._flatten_yaml_config(self._load_yaml_config())
        merged_config.update(overrides)

        try:
            return RetrievalSettings(**merged_config)
        except ValidationError as e:
            missing_keys = self._extract_missing_keys(e)
            invalid_values = self._extract_invalid_values(e)
            raise ConfigurationError(
                f"Configuration validation failed: {e.error_count()} error(s)",
                missing_keys=missing_keys,
                invalid_values=invalid_values
            ) from e

    def _load_yaml_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file.

        Returns:
            Dictionary with configuration values from YAML file

        Raises:
            ConfigurationError: If YAML file is invalid
        """
        config_file = Path(self.config_path)
        if not config_file.exists():
            return {}  # Use defaults if no config file

        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                content = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML configuration in {self.config_path}: {str(e)}") from e
        except OSError as e:
            raise ConfigurationError(f"Failed to read configuration file {self.config_path}: {str(e)}") from e

        if content is None:
            return {}
        if not isinstance(content, dict):
            raise ConfigurationError(
                f"Configuration file {self.config_path} must contain a mapping",
                invalid_values={"root": type(content).__name__}
            )
        return content

    def _flatten_yaml_config(self, yaml_config: Dict[str, Any]) -> Dict[str, Any]:
        """Flatten nested YAML configuration to match RetrievalSettings field names.

        Args:
            yaml_config: Nested YAML configuration dictionary

        Returns:
            Flattened configuration dictionary with field names matching RetrievalSettings
        """
        flattened: Dict[str, Any] = {}

        for section, fields in _SECTION_FIELDS.items():
            section_values = yaml_config.get(section)
            if isinstance(section_values, dict):
                for key, field_name in fields.items():
                    if key in section_values:
                        flattened[field_name] = section_values[key]

        weights = yaml_config.get("rescoring_weights")
        if isinstance(weights, dict):
            for name, value in weights.items():
                flattened[f"rescoring_weight_{name}"] = value

        cache_section = yaml_config.get("cache")
        if isinstance(cache_section, dict):
            for tier, prefix in _CACHE_TIERS.items():
                tier_values = cache_section.get(tier)
                if isinstance(tier_values, dict):
                    for key in ("enabled", "ttl_seconds", "max_size"):
                        if key in tier_values:
                            flattened[f"{prefix}_{key}"] = tier_values[key]
            if "sweep_interval_seconds" in cache_section:
                flattened["cache_sweep_interval_seconds"] = cache_section["sweep_interval_seconds"]

        # Keep other top-level scalars (tenant_id, API keys, ...) as-is
        nested_sections = set(_SECTION_FIELDS) | {"rescoring_weights", "cache"}
        for key, value in yaml_config.items():
            if key not in nested_sections and key not in flattened:
                flattened[key] = value

        return flattened

    def _extract_missing_keys(self, error: ValidationError) -> List[str]:
        """Extract missing required keys from validation error."""
        return [
            ".".join(str(part) for part in item["loc"])
            for item in error.errors()
            if item["type"] == "missing"
        ]

    def _extract_invalid_values(self, error: ValidationError) -> Dict[str, Any]:
        """Extract invalid values from validation error.

        Returns:
            Dictionary of field names to error messages
        """
        return {
            ".".join(str(part) for part in item["loc"]): item["msg"]
            for item in error.errors()
            if item["type"] != "missing"
        }
