"""
Core Pydantic models for the clustering pipeline.

Field names are snake_case; camelCase aliases match the wire format used by
feed collaborators and callers (``clusterTitle``, ``articleIds``, ...).
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ArticleSource(BaseModel):
    """Publisher of an article."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(default="", description="Publisher display name")
    url: str = Field(default="", description="Publisher home URL")


class Article(BaseModel):
    """A single news article. Immutable input to the pipeline."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(..., min_length=1, description="Unique article id")
    title: str = Field(default="")
    description: str = Field(default="")
    content: str = Field(default="")
    url: str = Field(default="")
    url_to_image: Optional[str] = Field(default=None, alias="urlToImage")
    published_at: datetime = Field(..., alias="publishedAt")
    source: ArticleSource = Field(default_factory=ArticleSource)
    category: str = Field(default="")
    image_width: Optional[int] = Field(default=None, alias="imageWidth")
    image_height: Optional[int] = Field(default=None, alias="imageHeight")

    @field_validator("title", "description", "content", "url", "category", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        """Feeds send null for missing text fields."""
        return "" if v is None else v

    @field_validator("published_at")
    @classmethod
    def ensure_timezone(cls, v: datetime) -> datetime:
        """Naive timestamps are read as UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class Severity(BaseModel):
    """Severity assessment of a cluster."""
    level: int = Field(default=0, ge=0, le=5)
    label: str = Field(default="Other")
    reasons: List[str] = Field(default_factory=list)


class StoryCluster(BaseModel):
    """Group of articles describing the same real-world event."""
    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    cluster_title: str = Field(default="", alias="clusterTitle")
    article_ids: List[str] = Field(default_factory=list, alias="articleIds")
    articles: Optional[List[Article]] = None
    summary: Optional[str] = None
    image_urls: Optional[List[str]] = Field(default=None, alias="imageUrls")
    severity: Optional[Severity] = None
    score: Optional[float] = None

    @field_validator("cluster_title", mode="before")
    @classmethod
    def none_title(cls, v):
        return "" if v is None else str(v)

    @field_validator("article_ids")
    @classmethod
    def unique_ids(cls, v: List[str]) -> List[str]:
        """Drop duplicate ids, keeping first-seen order."""
        return list(dict.fromkeys(str(i) for i in v))

    @property
    def size(self) -> int:
        return len(self.article_ids)

    def to_output(self) -> dict:
        """Serialize with camelCase keys."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class PipelineStage(str, Enum):
    """States of a clustering run."""
    IDLE = "idle"
    PRECLUSTERING = "preclustering"
    REFINING = "refining"
    MERGING = "merging"
    SPLITTING = "splitting"
    SEMANTIC_MERGE = "semantic_merge"
    EXPANSION = "expansion"
    ENRICHING = "enriching"
    SCORING = "scoring"
    SORTED = "sorted"
    RATE_LIMITED = "rate_limited"
    FAILED = "failed"


class ClusteringResult(BaseModel):
    """Outcome of a clustering run."""
    model_config = ConfigDict(populate_by_name=True)

    clusters: List[StoryCluster] = Field(default_factory=list)
    rate_limited: bool = Field(default=False, alias="rateLimited")
    stage: PipelineStage = PipelineStage.SORTED
