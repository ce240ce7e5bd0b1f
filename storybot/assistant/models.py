"""
Request and response models for the story assistant.

LLM output is never trusted: each response is parsed into one of these
structs and anything that does not validate is dropped.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Operation(str, Enum):
    """Kinds of completion the pipeline asks for."""
    REFINE = "refine"
    MERGE = "merge"
    SEVERITY = "severity"
    SUMMARIZE = "summarize"


class SummaryLength(str, Enum):
    SHORT = "short"
    LONG = "long"


class CompletionRequest(BaseModel):
    """A single chat completion request sent to a provider."""
    op: Operation
    system: str = Field(..., description="System prompt")
    prompt: str = Field(..., description="User prompt")
    payload: Dict[str, Any] = Field(default_factory=dict, description="Structured input embedded in the prompt")
    temperature: float = Field(default=0.1, ge=0, le=2)
    max_tokens: Optional[int] = Field(default=None, gt=0)
    json_mode: bool = False


class RefinedCluster(BaseModel):
    """One cluster proposed by the refine call."""
    model_config = ConfigDict(populate_by_name=True)

    cluster_title: str = Field(default="", alias="clusterTitle")
    article_ids: List[str] = Field(default_factory=list, alias="articleIds")

    @field_validator("cluster_title", mode="before")
    @classmethod
    def coerce_title(cls, v):
        return "" if v is None else str(v).strip()

    @field_validator("article_ids", mode="before")
    @classmethod
    def coerce_ids(cls, v):
        if not isinstance(v, list):
            raise ValueError("articleIds must be a list")
        return list(dict.fromkeys(str(i) for i in v if i is not None))

    @property
    def is_valid(self) -> bool:
        """Usable only with a title and at least two ids."""
        return bool(self.cluster_title) and len(self.article_ids) >= 2


class MergeGroup(BaseModel):
    """Group of cluster indices the merge call considers one event."""
    title: str = ""
    indices: List[int] = Field(default_factory=list)

    @field_validator("title", mode="before")
    @classmethod
    def coerce_title(cls, v):
        return "" if v is None else str(v).strip()

    @field_validator("indices", mode="before")
    @classmethod
    def coerce_indices(cls, v):
        if not isinstance(v, list):
            return []
        indices = []
        for item in v:
            try:
                indices.append(int(item))
            except (TypeError, ValueError):
                continue
        return indices


class SeverityAssessment(BaseModel):
    """Raw severity answer, normalized before it becomes a Severity."""
    level: int = 0
    label: str = "Other"
    reasons: List[str] = Field(default_factory=list)

    @field_validator("level", mode="before")
    @classmethod
    def coerce_level(cls, v):
        try:
            level = int(float(v))
        except (TypeError, ValueError):
            return 0
        return min(max(level, 0), 5)

    @field_validator("label", mode="before")
    @classmethod
    def coerce_label(cls, v):
        return v if isinstance(v, str) and v else "Other"

    @field_validator("reasons", mode="before")
    @classmethod
    def coerce_reasons(cls, v):
        if not isinstance(v, list):
            return []
        return [str(r) for r in v[:4]]


class ClusterBrief(BaseModel):
    """Compact description of a cluster for the merge prompt."""
    model_config = ConfigDict(populate_by_name=True)

    index: int
    title: str
    headlines: List[str] = Field(default_factory=list)
    date_range: str = Field(default="", alias="dateRange")
    size: int = 0
