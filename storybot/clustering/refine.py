"""LLM refinement of pre-clustered seeds."""

import asyncio
from typing import Awaitable, Callable, Iterator, List, Optional, Sequence

from storybot.assistant.story_assistant import StoryAssistant
from storybot.core.errors import RateLimitedError
from storybot.core.logging import get_logger
from storybot.core.models import Article, StoryCluster
from storybot.core.settings import ClusterSettings, resolve_settings

logger = get_logger(__name__)


def overlapping_chunks(items: Sequence, size: int, overlap: int = 0) -> Iterator[list]:
    """
    Windows of ``size`` items advancing by ``max(1, size - overlap)``, ending
    with the first window that reaches the last item.

    Sequences no longer than ``size`` yield a single window.
    """
    if len(items) <= size:
        yield list(items)
        return
    step = max(1, size - overlap)
    for start in range(0, len(items), step):
        yield list(items[start:start + size])
        if start + size >= len(items):
            break


class ClusterRefiner:
    """Turns deterministic seeds into LLM-confirmed clusters."""

    def __init__(self, assistant: StoryAssistant, settings: Optional[ClusterSettings] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.assistant = assistant
        self.settings = resolve_settings(settings)
        self._sleep = sleep

    async def _refine_chunk(self, chunk: Sequence[Article]) -> List[StoryCluster]:
        refined = await self.assistant.refine(chunk)
        await self._sleep(self.settings.refine_delay_seconds)
        return [StoryCluster(cluster_title=r.cluster_title, article_ids=r.article_ids)
                for r in refined]

    async def refine(self, articles: Sequence[Article],
                     seeds: Sequence[StoryCluster]) -> List[StoryCluster]:
        """
        Refine every seed, then look for clusters among uncovered articles.

        Seeds larger than ``seed_chunk`` are sent in overlapping windows.

        Raises:
            RateLimitedError: rate limited while refining seeds, unless
                ``refine_fallback_to_seeds`` is set, in which case the seeds
                are returned as they are
        """
        settings = self.settings
        clusters: List[StoryCluster] = []

        try:
            for n, seed in enumerate(seeds, 1):
                member_ids = set(seed.article_ids)
                members = [a for a in articles if a.id in member_ids]
                for chunk in overlapping_chunks(members, settings.seed_chunk, settings.seed_overlap):
                    logger.debug(f"Refining seed {n}/{len(seeds)} ({len(chunk)} articles)")
                    clusters.extend(await self._refine_chunk(chunk))
        except RateLimitedError:
            if not settings.refine_fallback_to_seeds:
                raise
            logger.warning("Rate limit during refinement, falling back to deterministic seeds")
            return list(seeds)

        clusters.extend(await self._refine_uncovered(articles, clusters))
        return clusters

    async def _refine_uncovered(self, articles: Sequence[Article],
                                clusters: Sequence[StoryCluster]) -> List[StoryCluster]:
        covered = {i for c in clusters for i in c.article_ids}
        uncovered = [a for a in articles if a.id not in covered]
        if len(uncovered) < self.settings.uncovered_min:
            return []

        logger.info(f"Refining {len(uncovered)} uncovered articles")
        extra: List[StoryCluster] = []
        size = self.settings.uncovered_chunk
        for start in range(0, len(uncovered), size):
            try:
                extra.extend(await self._refine_chunk(uncovered[start:start + size]))
            except RateLimitedError:
                logger.warning("Rate limit during uncovered refinement, skipping the rest")
                break
        return extra
