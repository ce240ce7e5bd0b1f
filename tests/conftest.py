"""Shared fixtures for storybot tests."""

from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from storybot.core.cache import ResultCache
from storybot.core.models import Article, ArticleSource, StoryCluster
from storybot.core.settings import ClusterSettings

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


def build_article(id: str, title: str, description: str = "", content: str = "",
                  url: Optional[str] = None, source_name: str = "Test Source",
                  source_url: str = "https://example.com", hours_ago: float = 0.0,
                  category: str = "general", image: Optional[str] = None,
                  width: Optional[int] = None, height: Optional[int] = None) -> Article:
    """Minimal article; only the fields clustering reads."""
    return Article(
        id=id,
        title=title,
        description=description,
        content=content,
        url=url if url is not None else f"https://example.com/{id}",
        url_to_image=image,
        published_at=NOW - timedelta(hours=hours_ago),
        source=ArticleSource(name=source_name, url=source_url),
        category=category,
        image_width=width,
        image_height=height,
    )


def build_cluster(title: str, ids) -> StoryCluster:
    return StoryCluster(cluster_title=title, article_ids=list(ids))


async def no_sleep(seconds: float) -> None:
    return None


@pytest.fixture
def make_article():
    return build_article


@pytest.fixture
def make_cluster():
    return build_cluster


@pytest.fixture
def settings():
    """Offline settings: no redis, no delays, no retries."""
    return ClusterSettings(
        _env_file=None,
        llm_provider="dummy",
        cache_disable_redis=True,
        refine_delay_seconds=0,
        llm_retry_max=0,
        llm_retry_base_seconds=0,
    )


@pytest.fixture
def memory_cache():
    return ResultCache(disable_redis=True)


@pytest.fixture
def now():
    return NOW
