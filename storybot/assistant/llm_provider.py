"""
LLM Provider interface and implementations for the story assistant.

Provides abstraction over OpenAI-compatible chat endpoints (Groq by default).
Includes dummy/NoLLM providers for running the pipeline without API access.
"""

import json
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI

from storybot.core.errors import UpstreamError
from storybot.core.logging import get_logger
from storybot.core.settings import ClusterSettings, resolve_settings
from .models import CompletionRequest, Operation

logger = get_logger(__name__)


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    @abstractmethod
    async def complete(self, request: CompletionRequest) -> str:
        """
        Run one chat completion.

        Args:
            request: Prompts, structured payload and generation parameters

        Returns:
            Raw text of the first choice (may be empty)
        """
        pass

    @abstractmethod
    async def health_check(self) -> Dict[str, Any]:
        """Check provider health and availability."""
        pass

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Provider identification name."""
        pass


class OpenAICompatibleProvider(LLMProvider):
    """Chat completions against any OpenAI-compatible API (Groq, OpenRouter, OpenAI)."""

    def __init__(self, api_key: str, base_url: str, model: str, timeout: float = 30.0):
        self.model = model
        self.base_url = base_url
        self.client = AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout)

    @property
    def provider_name(self) -> str:
        return "OpenAICompatible"

    async def health_check(self) -> Dict[str, Any]:
        return {
            "status": "configured",
            "provider": self.provider_name,
            "model": self.model,
            "base_url": self.base_url,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

    async def complete(self, request: CompletionRequest) -> str:
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": request.system},
                {"role": "user", "content": request.prompt},
            ],
            "temperature": request.temperature,
        }
        if request.max_tokens:
            kwargs["max_tokens"] = request.max_tokens
        if request.json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        completion = await self.client.chat.completions.create(**kwargs)
        if not completion.choices:
            return ""
        return (completion.choices[0].message.content or "").strip()


class DummyLLMProvider(LLMProvider):
    """
    Dummy LLM provider for testing and offline runs.

    Answers deterministically from the request payload:
    - refine: one cluster with every article, titled after the first one
    - merge: no groups
    - severity: level 0
    - summarize: the article titles joined into a sentence
    """

    def __init__(self):
        self.call_count = 0
        self.total_processing_time = 0.0
        self.requests: List[CompletionRequest] = []

    @property
    def provider_name(self) -> str:
        return "DummyLLM"

    async def health_check(self) -> Dict[str, Any]:
        """Always healthy for dummy provider."""
        return {
            "status": "healthy",
            "provider": self.provider_name,
            "calls_made": self.call_count,
            "avg_response_time": self.total_processing_time / max(self.call_count, 1),
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

    async def complete(self, request: CompletionRequest) -> str:
        start_time = time.time()
        self.call_count += 1
        self.requests.append(request)

        try:
            if request.op == Operation.REFINE:
                return json.dumps(self._refine(request.payload))
            if request.op == Operation.MERGE:
                return json.dumps({"groups": []})
            if request.op == Operation.SEVERITY:
                return json.dumps({"level": 0, "label": "Other", "reasons": []})
            return self._summarize(request.payload)
        finally:
            self.total_processing_time += time.time() - start_time

    def _refine(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        articles = payload.get("articles", [])
        if len(articles) < 2:
            return {"clusters": []}
        return {
            "clusters": [{
                "clusterTitle": articles[0].get("title") or "Untitled story",
                "articleIds": [a["id"] for a in articles],
            }]
        }

    def _summarize(self, payload: Dict[str, Any]) -> str:
        titles = [a.get("title", "") for a in payload.get("articles", []) if a.get("title")]
        if not titles:
            return "Summary not available."
        return "; ".join(titles) + "."


class NoLLMProvider(LLMProvider):
    """
    Minimal provider that refuses every request.

    Used when no LLM service is available or configured.
    """

    @property
    def provider_name(self) -> str:
        return "NoLLM"

    async def health_check(self) -> Dict[str, Any]:
        """Always returns unavailable status."""
        return {
            "status": "unavailable",
            "provider": self.provider_name,
            "message": "No LLM provider configured",
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

    async def complete(self, request: CompletionRequest) -> str:
        raise UpstreamError("No LLM provider available", op_name=request.op.value)


class LLMProviderFactory:
    """Factory for creating LLM provider instances."""

    _providers = {
        "dummy": DummyLLMProvider,
        "nollm": NoLLMProvider,
        "openai": OpenAICompatibleProvider,
        "groq": OpenAICompatibleProvider,
    }

    @classmethod
    def create_provider(cls, provider_type: str = "dummy", **config) -> LLMProvider:
        """
        Create LLM provider instance.

        Args:
            provider_type: Type of provider ("dummy", "nollm", "groq", "openai")
            **config: api_key, base_url and model for remote providers

        Returns:
            LLMProvider instance
        """
        provider_type = (provider_type or "dummy").lower()
        if provider_type not in cls._providers:
            logger.warning(f"Unknown provider type: {provider_type}, falling back to dummy")
            provider_type = "dummy"

        provider_class = cls._providers[provider_type]
        if provider_class is OpenAICompatibleProvider:
            if not config.get("api_key"):
                logger.warning(f"No API key for {provider_type} provider, falling back to dummy")
                return DummyLLMProvider()
            return provider_class(**config)
        return provider_class()

    @classmethod
    def from_settings(cls, settings: Optional[ClusterSettings] = None) -> LLMProvider:
        settings = resolve_settings(settings)
        return cls.create_provider(
            settings.llm_provider,
            api_key=settings.llm_api_key,
            base_url=settings.llm_base_url,
            model=settings.llm_model,
        )

    @classmethod
    def register_provider(cls, name: str, provider_class):
        """Register a new provider type."""
        cls._providers[name] = provider_class

    @classmethod
    def list_providers(cls) -> List[str]:
        """List available provider types."""
        return list(cls._providers.keys())
