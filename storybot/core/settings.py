"""Pipeline settings and configuration."""
from functools import lru_cache
from typing import Dict, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ClusterSettings(BaseSettings):
    """All clustering tunables, loaded from STORYBOT_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="STORYBOT_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging
    log_level: str = "INFO"
    environment: str = "development"
    diagnostics: bool = False

    # Cache
    redis_url: str = "redis://localhost:6379/0"
    cache_disable_redis: bool = False
    cache_prefix: str = "local:"

    # LLM provider
    llm_provider: str = "dummy"
    llm_api_key: str = ""
    llm_base_url: str = "https://api.groq.com/openai/v1"
    llm_model: str = "llama-3.3-70b-versatile"
    llm_max_concurrency: int = Field(default=2, ge=1)
    llm_retry_max: int = Field(default=3, ge=0)
    llm_retry_base_seconds: float = Field(default=0.8, ge=0)

    # Pre-clustering
    precluster_threshold: float = 0.38
    precluster_min_size: int = 2
    precluster_max_group: int = 60

    # Refinement
    seed_chunk: int = Field(default=25, ge=1)
    seed_overlap: int = Field(default=5, ge=0)
    uncovered_chunk: int = Field(default=40, ge=1)
    uncovered_min: int = 3
    refine_delay_seconds: float = 0.8
    refine_fallback_to_seeds: bool = False

    # Merging
    overlap_jaccard: float = 0.45
    title_merge_threshold: float = 0.72
    entity_min_shared: int = 1
    entity_min_length: int = 4
    entity_min_coherence: float = 0.12
    llm_merge_enabled: bool = True

    # Coherence split
    coherence_threshold: float = 0.52
    coherence_min_size: int = 2

    # Expansion
    expand_enabled: bool = True
    expand_sim_threshold: float = 0.42
    expand_max_add: int = 50
    expand_time_window_hours: int = Field(default=96, ge=1, le=168)
    expand_category_strict: bool = False

    # Enrichment
    per_domain_max: int = 2
    display_cap: int = 20
    max_images: int = 4
    min_image_width: int = 320
    min_image_height: int = 200
    summarize_during_enrich: bool = False
    summarize_top_n: int = 6
    summary_fallback_on_limit: bool = False

    # Severity and ranking
    severity_use_llm: bool = True
    severity_boost_war: float = 10
    severity_boost_deaths: float = 7
    severity_boost_politics: float = 3
    severity_boost_economy: float = 2
    severity_boost_tech: float = 1
    severity_boost_other: float = 0
    score_w_articles: float = 0.6
    score_w_domains: float = 0.8
    score_w_images: float = 0.4
    score_w_recency: float = 0.3

    @property
    def severity_boosts(self) -> Dict[str, float]:
        """Ranking boost per severity label."""
        return {
            "War/Conflict": self.severity_boost_war,
            "Mass Casualty/Deaths": self.severity_boost_deaths,
            "National Politics": self.severity_boost_politics,
            "Economy/Markets": self.severity_boost_economy,
            "Tech/Business": self.severity_boost_tech,
            "Other": self.severity_boost_other,
        }


@lru_cache()
def get_settings() -> ClusterSettings:
    """Get settings singleton."""
    return ClusterSettings()


def resolve_settings(settings: Optional[ClusterSettings] = None) -> ClusterSettings:
    """Use the given settings or fall back to the process-wide instance."""
    return settings if settings is not None else get_settings()
