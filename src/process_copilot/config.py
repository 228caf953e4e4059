"""Configuration models for the process copilot."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ChunkingConfig(BaseModel):
    """Configures paragraph/sentence chunking of long documents."""

    max_chunk_size: int = Field(default=4000, ge=100)
    min_chunk_length: int = Field(default=50, ge=0)


class CacheConfig(BaseModel):
    """Configures the embedding and intent-detection caches."""

    embedding_ttl_seconds: float = Field(default=60 * 60, gt=0.0)
    embedding_max_entries: int = Field(default=1000, ge=1)
    intent_ttl_seconds: float = Field(default=5 * 60, gt=0.0)
    cleanup_interval_seconds: float = Field(default=15 * 60, gt=0.0)


class RetrievalConfig(BaseModel):
    """Configures the tiered retrieval and its scoring heuristics."""

    default_limit: int = Field(default=5, ge=1)
    exact_title_score: float = Field(default=1.0, ge=0.0)
    tag_score: float = Field(default=0.8, ge=0.0)
    vector_weight: float = Field(default=0.6, ge=0.0, le=1.0)
    vector_candidate_factor: int = Field(default=3, ge=1)
    min_keyword_length: int = Field(default=3, ge=1)
    weak_match_threshold: float = Field(default=0.5, ge=0.0)
    fallback_limit: int = Field(default=3, ge=1)
    preview_length: int = Field(default=150, ge=1)
    privileged_roles: tuple[str, ...] = ("admin", "org:admin")


class AdvancedSearchConfig(BaseModel):
    """Configures the filtered vector search and composite scoring."""

    default_limit: int = Field(default=10, ge=1)
    default_min_score: float = Field(default=0.7, ge=0.0)
    candidate_factor: int = Field(default=10, ge=1)
    hit_factor: int = Field(default=3, ge=1)
    title_bonus: float = Field(default=0.15, ge=0.0)
    tag_bonus: float = Field(default=0.10, ge=0.0)
    recency_bonus: float = Field(default=0.10, ge=0.0)
    recency_days: int = Field(default=30, ge=0)


class GenerationConfig(BaseModel):
    """Configures prompt construction for answer generation."""

    max_history_messages: int = Field(default=7, ge=0)


class GuidedConfig(BaseModel):
    """Configures intent detection and guided session lifecycle."""

    detection_confidence: float = Field(default=0.7, ge=0.0, le=1.0)
    fallback_confidence: float = Field(default=0.8, ge=0.0, le=1.0)
    session_timeout_seconds: float = Field(default=30 * 60, gt=0.0)
    sweep_interval_seconds: float = Field(default=10 * 60, gt=0.0)
    fallback_title_length: int = Field(default=50, ge=1)


class RetryConfig(BaseModel):
    """Configures bounded retry with exponential backoff for provider calls."""

    max_attempts: int = Field(default=3, ge=1)
    initial_delay_seconds: float = Field(default=0.5, ge=0.0)
    backoff_factor: float = Field(default=2.0, ge=1.0)
    max_delay_seconds: float = Field(default=8.0, ge=0.0)


class CopilotConfig(BaseModel):
    """Top-level configuration gathering every component's settings."""

    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    advanced_search: AdvancedSearchConfig = Field(default_factory=AdvancedSearchConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    guided: GuidedConfig = Field(default_factory=GuidedConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
