"""
Story clustering pipeline.

Stages:
1. Pre-clustering: deterministic TF-IDF seeds over all articles
2. Refinement: LLM confirms membership and names each seed
3. Merging: id overlap, title similarity, shared entities
4. Splitting: incoherent clusters re-clustered at a tighter threshold,
   followed by a second title merge
5. Semantic merge (optional): LLM groups paraphrased duplicates
6. Expansion (optional): pull in close articles the earlier stages missed
7. Enrichment: members, de-duplication, source caps, images
8. Scoring: severity and composite score, best first
"""

from datetime import datetime
from typing import Dict, List, Optional, Sequence

from storybot.assistant.client import BoundedLLMClient
from storybot.assistant.llm_provider import LLMProvider, LLMProviderFactory
from storybot.assistant.models import SummaryLength
from storybot.assistant.story_assistant import (
    SUMMARY_TTL,
    StoryAssistant,
    cluster_summary_id,
    is_fallback_summary,
)
from storybot.core.cache import ResultCache
from storybot.core.errors import RateLimitedError
from storybot.core.logging import get_logger
from storybot.core.models import Article, ClusteringResult, PipelineStage, StoryCluster
from storybot.core.settings import ClusterSettings, resolve_settings

from .cluster import expand_cluster_membership, precluster_articles, split_clusters
from .enrich import ClusterEnricher
from .merge import merge_clusters_by_entity, merge_clusters_by_overlap, merge_clusters_by_title
from .refine import ClusterRefiner
from .score import SeverityScorer

logger = get_logger(__name__)

DIAGNOSTIC_SAMPLES = 5


def get_unclustered_articles(articles: Sequence[Article],
                             clusters: Sequence[StoryCluster]) -> List[Article]:
    """
    Articles that ended up in no cluster, in input order.

    Membership is read from ``article_ids``, so articles dropped from a
    cluster's display list by de-duplication or source caps still count as
    clustered.
    """
    clustered = {i for cluster in clusters for i in cluster.article_ids}
    return [a for a in articles if a.id not in clustered]


class StoryClusterer:
    """Runs the full clustering pipeline over one batch of articles."""

    def __init__(self, settings: Optional[ClusterSettings] = None,
                 provider: Optional[LLMProvider] = None,
                 cache: Optional[ResultCache] = None,
                 assistant: Optional[StoryAssistant] = None):
        self.settings = resolve_settings(settings)
        self.cache = cache or ResultCache.from_settings(self.settings)
        self.assistant = assistant or StoryAssistant(
            provider=provider or LLMProviderFactory.from_settings(self.settings),
            client=BoundedLLMClient.from_settings(self.settings),
            cache=self.cache,
            settings=self.settings,
        )
        self.refiner = ClusterRefiner(self.assistant, self.settings)
        self.enricher = ClusterEnricher(self.settings, self.assistant)
        self.scorer = SeverityScorer(self.settings, self.assistant)
        self.stage = PipelineStage.IDLE

    def _enter(self, stage: PipelineStage) -> None:
        self.stage = stage
        logger.debug(f"Stage: {stage.value}")

    def _sample(self, label: str, clusters: Sequence[StoryCluster]) -> None:
        if not self.settings.diagnostics:
            return
        titles = [c.cluster_title for c in clusters[:DIAGNOSTIC_SAMPLES]]
        logger.info(f"{label}: {len(clusters)} clusters")
        if titles:
            logger.info(f"   • {' | '.join(titles)}")

    async def build_raw_clusters(self, articles: Sequence[Article]) -> List[StoryCluster]:
        """Stages 1 to 6: everything up to enrichment."""
        s = self.settings
        article_map = {a.id: a for a in articles}

        self._enter(PipelineStage.PRECLUSTERING)
        seeds = precluster_articles(articles, threshold=s.precluster_threshold,
                                    min_size=s.precluster_min_size,
                                    max_group=s.precluster_max_group)
        logger.info(f"Generated {len(seeds)} seed groups (threshold={s.precluster_threshold}, "
                    f"min={s.precluster_min_size})")
        self._sample("Seed groups", seeds)

        self._enter(PipelineStage.REFINING)
        refined = await self.refiner.refine(articles, seeds)
        self._sample("LLM refined", refined)

        self._enter(PipelineStage.MERGING)
        merged = merge_clusters_by_overlap(refined, jaccard_threshold=s.overlap_jaccard)
        self._sample("After id-overlap merge", merged)
        merged = merge_clusters_by_title(merged, threshold=s.title_merge_threshold)
        self._sample("After title merge", merged)
        merged = merge_clusters_by_entity(merged, article_map,
                                          min_shared_entities=s.entity_min_shared,
                                          min_entity_length=s.entity_min_length,
                                          min_coherence=s.entity_min_coherence)
        self._sample("After entity merge", merged)

        self._enter(PipelineStage.SPLITTING)
        split = split_clusters(articles, merged, threshold=s.coherence_threshold,
                               min_size=s.coherence_min_size)
        self._sample("After coherence split", split)
        clusters = merge_clusters_by_title(split, threshold=s.title_merge_threshold)
        if len(clusters) < len(split):
            logger.info(f"Post-split title merge: {len(split)} -> {len(clusters)}")

        if s.llm_merge_enabled and len(clusters) > 1:
            self._enter(PipelineStage.SEMANTIC_MERGE)
            try:
                clusters = await self.assistant.merge_similar(clusters, article_map)
                self._sample("After LLM merge", clusters)
            except Exception as e:
                logger.warning(f"LLM merge stage failed, keeping coherence output: {e}")

        if s.expand_enabled:
            self._enter(PipelineStage.EXPANSION)
            try:
                clusters = [
                    expand_cluster_membership(articles, c, sim_threshold=s.expand_sim_threshold,
                                              max_add=s.expand_max_add,
                                              time_window_hours=s.expand_time_window_hours,
                                              category_strict=s.expand_category_strict)
                    for c in clusters
                ]
                self._sample("After expansion", clusters)
            except Exception as e:
                logger.warning(f"Expansion stage failed, keeping unexpanded clusters: {e}")

        return clusters

    async def _summarize_top(self, clusters: Sequence[StoryCluster]) -> None:
        for cluster in clusters[:self.settings.summarize_top_n]:
            if cluster.summary:
                continue
            try:
                cluster.summary = await self.assistant.summarize(cluster.articles or [],
                                                                 SummaryLength.LONG)
            except RateLimitedError:
                logger.warning("Rate limit during top-N summaries, stopping")
                break
            if is_fallback_summary(cluster.summary, cluster.articles or []):
                continue
            self.cache.set(f"Summary-{cluster_summary_id(cluster)}", cluster.summary, SUMMARY_TTL)

    async def run(self, articles: Sequence[Article],
                  now: Optional[datetime] = None) -> ClusteringResult:
        """
        Cluster, enrich and rank a batch of articles.

        Never raises: rate limits end in RATE_LIMITED and any other failure
        in FAILED, both with an empty cluster list.
        """
        logger.info(f"Starting clustering for {len(articles)} articles")
        try:
            raw = await self.build_raw_clusters(articles)

            self._enter(PipelineStage.ENRICHING)
            article_map: Dict[str, Article] = {a.id: a for a in articles}
            enriched = await self.enricher.enrich(raw, article_map)
            valid = [c for c in enriched if c.articles and len(c.articles) >= 2]

            self._enter(PipelineStage.SCORING)
            ranked = await self.scorer.score_and_rank(valid, now)
            await self._summarize_top(ranked)

            self._enter(PipelineStage.SORTED)
            logger.info(f"Clustering finished with {len(ranked)} clusters")
            return ClusteringResult(clusters=ranked, rate_limited=False, stage=self.stage)

        except RateLimitedError as e:
            logger.warning(f"Clustering aborted by rate limit during {self.stage.value}: {e}")
            self.stage = PipelineStage.RATE_LIMITED
            return ClusteringResult(clusters=[], rate_limited=True, stage=self.stage)
        except Exception as e:
            logger.error(f"Clustering failed during {self.stage.value}: {e}", exc_info=True)
            self.stage = PipelineStage.FAILED
            return ClusteringResult(clusters=[], rate_limited=False, stage=self.stage)


async def cluster_articles(articles: Sequence[Article],
                           settings: Optional[ClusterSettings] = None,
                           provider: Optional[LLMProvider] = None,
                           cache: Optional[ResultCache] = None,
                           now: Optional[datetime] = None) -> ClusteringResult:
    """Run the clustering pipeline once over ``articles``."""
    clusterer = StoryClusterer(settings=settings, provider=provider, cache=cache)
    return await clusterer.run(articles, now=now)
