"""Configuration management for the workstream engine."""

from pathlib import Path

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ParameterBand(BaseModel):
    """Clustering parameters applied to achievement counts below ``upper_bound``."""

    upper_bound: int | None = None
    min_pts: int
    min_cluster_size: int
    outlier_threshold: float = Field(gt=0.0, lt=1.0)


def default_parameter_bands() -> list[ParameterBand]:
    return [
        ParameterBand(upper_bound=100, min_pts=3, min_cluster_size=3, outlier_threshold=0.7),
        ParameterBand(upper_bound=300, min_pts=3, min_cluster_size=3, outlier_threshold=0.75),
        ParameterBand(upper_bound=None, min_pts=5, min_cluster_size=5, outlier_threshold=0.65),
    ]


class Settings(BaseSettings):
    """Engine settings, loaded from env vars and optionally overridden by a YAML config file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # API keys
    openai_api_key: str = ""
    jina_api_key: str = ""

    # Model config
    openai_model: str = "gpt-4.1-mini"
    openai_base_url: str = ""
    openai_temperature: float = 0.7
    client_max_retries: int = 4
    client_backoff_seconds: float = 1.0
    embedding_provider: str = "openai"
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 1536
    embedding_batch_size: int = 16
    embedding_max_concurrency: int = 4

    # Clustering policy
    minimum_achievements: int = 20
    recluster_percentage_threshold: float = 0.10
    recluster_absolute_threshold: int = 50
    recluster_time_threshold_days: float = 30.0
    max_full_clustering_items: int = 5000
    minimum_epsilon: float = 0.7
    parameter_bands: list[ParameterBand] = Field(default_factory=default_parameter_bands)

    # Naming
    workstream_naming_enabled: bool = True
    workstream_name_sample_size: int = 15

    # Filters
    max_filter_range_months: int = 24

    # Metering
    generation_credit_cost: int = 1
    unlimited_user_levels: list[str] = Field(default_factory=lambda: ["paid", "demo"])

    # Paths
    database_path: Path = Field(default=Path("data/workstreams.sqlite3"))

    @classmethod
    def from_yaml(cls, config_path: str | Path, **overrides) -> "Settings":
        """Load settings from a YAML config file, with env vars and overrides applied on top."""
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                yaml_config = yaml.safe_load(f) or {}
        else:
            yaml_config = {}
        merged = {**yaml_config, **overrides}
        return cls(**merged)

    def resolved_openai_base_url(self) -> str:
        """Return the explicit OpenAI-compatible base URL, normalized with a trailing slash."""

        candidate = self.openai_base_url.strip()
        if not candidate:
            return ""
        return f"{candidate.rstrip('/')}/"

    def resolved_embedding_api_key(self) -> str:
        """Resolve the API key for the configured embedding provider."""

        if self.embedding_provider.strip().lower() == "jina":
            return self.jina_api_key.strip()
        return self.openai_api_key.strip()
