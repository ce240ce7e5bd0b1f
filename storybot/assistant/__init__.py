"""
Story Assistant Module

LLM operations used by the clustering pipeline, behind a bounded and
retrying client.

Main Components:
- models: request and response structs parsed from LLM output
- llm_provider: LLM abstraction with offline fallback providers
- client: concurrency cap and rate-limit retries
- story_assistant: refine, merge, severity and summary operations
"""

from .models import CompletionRequest, Operation, RefinedCluster, MergeGroup, SummaryLength
from .llm_provider import (
    LLMProvider,
    OpenAICompatibleProvider,
    DummyLLMProvider,
    NoLLMProvider,
    LLMProviderFactory,
)
from .client import BoundedLLMClient
from .story_assistant import StoryAssistant, cluster_summary_id, parse_json_object

__all__ = [
    # Models
    "CompletionRequest",
    "Operation",
    "RefinedCluster",
    "MergeGroup",
    "SummaryLength",

    # LLM Providers
    "LLMProvider",
    "OpenAICompatibleProvider",
    "DummyLLMProvider",
    "NoLLMProvider",
    "LLMProviderFactory",

    # Client
    "BoundedLLMClient",

    # Operations
    "StoryAssistant",
    "cluster_summary_id",
    "parse_json_object",
]
