"""Configuration schema using Pydantic."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal, TypeVar

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict

from threadmem.errors import ConfigurationError

MAX_FILTER_KEY_LENGTH = 64

DEFAULT_IMPORTANCE_KEYWORDS = [
    "error", "critical", "urgent", "important", "warning", "issue",
    "problem", "fix", "solution", "bug", "security", "performance",
]


class StrictModel(BaseModel):
    """Base for pipeline configs: camelCase or snake_case keys, unknown keys rejected."""
    model_config = ConfigDict(
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
    )


class CompactionConfig(StrictModel):
    """Importance-driven compaction settings."""
    max_messages: int = Field(default=50, gt=0)
    similarity_threshold: float = Field(default=0.85, ge=0.0, le=1.0)
    importance_keywords: list[str] = Field(default_factory=lambda: list(DEFAULT_IMPORTANCE_KEYWORDS))
    verbose_message_threshold: int = Field(default=500, gt=0)
    recency_reservation_ratio: float = Field(default=0.3, ge=0.0, le=1.0)
    recency_decay_rate: float = Field(default=0.1, ge=0.0)

    @field_validator("importance_keywords")
    @classmethod
    def _normalize_keywords(cls, value: list[str]) -> list[str]:
        return [kw.strip().lower() for kw in value if kw and kw.strip()]


class TopicSegmentationConfig(StrictModel):
    """Topic segmenter; runs after compaction when enabled."""
    enabled: bool = False
    continuity_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    max_segments: int = Field(default=3, gt=0)
    min_messages: int = Field(default=10, ge=0)


class ToolFilterConfig(StrictModel):
    enabled: bool = False
    exclude: list[str] | None = None  # None drops all tool traffic


class TokenLimitConfig(StrictModel):
    """Hard token ceiling applied last."""
    max_tokens: int = Field(default=1_000_000, gt=0)
    tokenizer: Literal["heuristic", "tiktoken"] = "heuristic"
    encoding: str = "cl100k_base"


class RerankWeights(StrictModel):
    """Combined-score weights. Scores compare meaningfully only when the sum is <= 1."""
    semantic: float = Field(default=0.6, ge=0.0, le=1.0)
    vector: float = Field(default=0.3, ge=0.0, le=1.0)
    position: float = Field(default=0.1, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _check_total(self) -> "RerankWeights":
        total = self.semantic + self.vector + self.position
        if total <= 0:
            raise ValueError("at least one rerank weight must be positive")
        if total > 1.0 + 1e-9:
            logger.warning(f"Rerank weights sum to {total:.2f} (> 1); combined scores are not normalized")
        return self


class RetrievalConfig(StrictModel):
    """Search + rerank settings."""
    index_name: str = "messages"
    top_k_initial: int = Field(default=10, gt=0)
    top_k_final: int = Field(default=3, gt=0)
    context_before: int = Field(default=2, ge=0)
    context_after: int = Field(default=1, ge=0)
    weights: RerankWeights = Field(default_factory=RerankWeights)
    model_timeout_seconds: float = Field(default=30.0, gt=0)
    filter: dict[str, Any] | None = None

    @field_validator("filter")
    @classmethod
    def _check_filter(cls, value: dict[str, Any] | None) -> dict[str, Any] | None:
        if value is None:
            return None
        check_filter(value)
        return value


class StorageConfig(BaseModel):
    """Paths for the bundled SQLite store and Chroma index."""
    db_path: str = "~/.threadmem/threadmem.db"
    chroma_path: str = "~/.threadmem/chroma"


class EmbeddingConfig(BaseModel):
    model: str = "all-MiniLM-L6-v2"
    cache_size: int = 1000


class ScoringModelConfig(BaseModel):
    """LLM used for semantic relevance scoring during reranking."""
    model: str = "gemini/gemini-2.0-flash"
    api_key: str = ""
    api_base: str | None = None
    temperature: float = 0.0
    max_tokens: int = 1024
    max_retries: int = 3


class LoggingConfig(BaseModel):
    """Logging configuration."""
    enabled: bool = True
    level: str = "INFO"
    file_enabled: bool = False
    file_path: str = "~/.threadmem/logs/threadmem.log"
    rotation: str = "10 MB"
    retention: str = "7 days"


class Config(BaseSettings):
    """Root configuration for threadmem."""
    compaction: CompactionConfig = Field(default_factory=CompactionConfig)
    topics: TopicSegmentationConfig = Field(default_factory=TopicSegmentationConfig)
    tool_filter: ToolFilterConfig = Field(default_factory=ToolFilterConfig)
    token_limit: TokenLimitConfig = Field(default_factory=TokenLimitConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    scoring: ScoringModelConfig = Field(default_factory=ScoringModelConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="THREADMEM_",
        env_nested_delimiter="__",
    )

    @property
    def db_path(self) -> Path:
        return Path(self.storage.db_path).expanduser()

    @property
    def chroma_path(self) -> Path:
        return Path(self.storage.chroma_path).expanduser()


def check_filter(filter: dict[str, Any]) -> None:
    """Reject filter keys that are empty or too long, and null filter values."""
    for key, value in filter.items():
        if not isinstance(key, str) or not key:
            raise ValueError("filter keys must be non-empty strings")
        if len(key) > MAX_FILTER_KEY_LENGTH:
            raise ValueError(
                f"filter key '{key[:16]}...' exceeds {MAX_FILTER_KEY_LENGTH} characters"
            )
        if value is None:
            raise ValueError(f"filter field '{key}' is null")


ModelT = TypeVar("ModelT", bound=BaseModel)


def coerce_config(model_cls: type[ModelT], value: ModelT | dict[str, Any] | None) -> ModelT:
    """Validate a config object or mapping, raising ConfigurationError on any problem."""
    if value is None:
        return model_cls()
    if isinstance(value, model_cls):
        return value
    if not isinstance(value, dict):
        raise ConfigurationError(
            f"{model_cls.__name__} expected a mapping, got {type(value).__name__}"
        )
    try:
        return model_cls.model_validate(value)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid {model_cls.__name__}: {e}") from e
