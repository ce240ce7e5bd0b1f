"""
End-to-end tests for the story clustering pipeline.

Runs offline with the dummy LLM provider and the in-memory cache.
"""

import logging
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from storybot.assistant.llm_provider import DummyLLMProvider
from storybot.assistant.story_assistant import SUMMARY_ERROR, StoryAssistant
from storybot.clustering.pipeline import StoryClusterer, cluster_articles, get_unclustered_articles
from storybot.core.models import PipelineStage


@pytest.fixture
def fed_articles(make_article):
    return [
        make_article("f1", "Federal Reserve raises interest rates",
                     source_name="Reuters", source_url="https://reuters.com", hours_ago=1),
        make_article("f2", "Federal Reserve raises interest rates sharply",
                     source_name="AP", source_url="https://apnews.com", hours_ago=2),
        make_article("f3", "Federal Reserve raises interest rates again",
                     source_name="BBC", source_url="https://bbc.com", hours_ago=3),
    ]


@pytest.fixture
def apple_article(make_article):
    return make_article("a1", "Apple unveils iPhone lineup", source_url="https://theverge.com",
                        hours_ago=4)


@pytest.fixture
def lakers_articles(make_article):
    return [
        make_article("l1", "Lakers beat Celtics in overtime thriller",
                     source_url="https://espn.com", hours_ago=1),
        make_article("l2", "Lakers edge Celtics in overtime thriller",
                     source_url="https://espn.com", hours_ago=2),
    ]


def rate_limited_provider():
    provider = MagicMock()
    provider.complete = AsyncMock(side_effect=Exception("429 Too Many Requests"))
    return provider


class TestStoryClusterer:

    @pytest.mark.asyncio
    async def test_full_run(self, settings, memory_cache, fed_articles, apple_article, now):
        """Three outlets on one event become one ranked, summarized cluster."""
        articles = fed_articles + [apple_article]
        clusterer = StoryClusterer(settings, provider=DummyLLMProvider(), cache=memory_cache)

        result = await clusterer.run(articles, now=now)

        assert result.stage == PipelineStage.SORTED
        assert result.rate_limited is False
        assert len(result.clusters) == 1

        cluster = result.clusters[0]
        assert cluster.cluster_title == "Federal Reserve raises interest rates"
        assert sorted(cluster.article_ids) == ["f1", "f2", "f3"]
        assert [a.id for a in cluster.articles] == ["f1", "f2", "f3"]
        assert cluster.image_urls == []
        assert cluster.severity.label == "Economy/Markets"
        assert cluster.score is not None
        assert cluster.summary == "; ".join(a.title for a in fed_articles) + "."
        assert memory_cache.get("Summary-cluster-f1-f2-f3") == cluster.summary

        assert get_unclustered_articles(articles, result.clusters) == [apple_article]

    @pytest.mark.asyncio
    async def test_ranked_by_score(self, settings, memory_cache, fed_articles,
                                   lakers_articles, now):
        clusterer = StoryClusterer(settings, provider=DummyLLMProvider(), cache=memory_cache)

        result = await clusterer.run(lakers_articles + fed_articles, now=now)

        assert [sorted(c.article_ids) for c in result.clusters] == [["f1", "f2", "f3"], ["l1", "l2"]]
        assert result.clusters[0].score > result.clusters[1].score

    @pytest.mark.asyncio
    async def test_rate_limit_during_refinement(self, settings, memory_cache, fed_articles, now):
        clusterer = StoryClusterer(settings, provider=rate_limited_provider(), cache=memory_cache)

        result = await clusterer.run(fed_articles, now=now)

        assert result.stage == PipelineStage.RATE_LIMITED
        assert result.rate_limited is True
        assert result.clusters == []
        assert clusterer.stage == PipelineStage.RATE_LIMITED

    @pytest.mark.asyncio
    async def test_fallback_to_seeds_on_rate_limit(self, settings, memory_cache, fed_articles, now):
        settings = settings.model_copy(update={"refine_fallback_to_seeds": True})
        clusterer = StoryClusterer(settings, provider=rate_limited_provider(), cache=memory_cache)

        result = await clusterer.run(fed_articles, now=now)

        assert result.stage == PipelineStage.SORTED
        assert len(result.clusters) == 1
        assert sorted(result.clusters[0].article_ids) == ["f1", "f2", "f3"]
        # Severity falls back to rules, summaries stop at the rate limit
        assert result.clusters[0].severity.label == "Economy/Markets"
        assert result.clusters[0].summary is None

    @pytest.mark.asyncio
    async def test_unexpected_error_fails_run(self, settings, memory_cache, fed_articles, now):
        clusterer = StoryClusterer(settings, provider=DummyLLMProvider(), cache=memory_cache)

        with patch("storybot.clustering.pipeline.precluster_articles",
                   side_effect=RuntimeError("boom")):
            result = await clusterer.run(fed_articles, now=now)

        assert result.stage == PipelineStage.FAILED
        assert result.rate_limited is False
        assert result.clusters == []

    @pytest.mark.asyncio
    async def test_semantic_merge_failure_keeps_clusters(self, settings, memory_cache,
                                                         fed_articles, lakers_articles, now):
        clusterer = StoryClusterer(settings, provider=DummyLLMProvider(), cache=memory_cache)

        with patch.object(StoryAssistant, "merge_similar",
                          AsyncMock(side_effect=RuntimeError("merge down"))) as merge:
            result = await clusterer.run(fed_articles + lakers_articles, now=now)

        merge.assert_awaited_once()
        assert result.stage == PipelineStage.SORTED
        assert len(result.clusters) == 2

    @pytest.mark.asyncio
    async def test_semantic_merge_disabled(self, settings, memory_cache, fed_articles,
                                           lakers_articles, now):
        settings = settings.model_copy(update={"llm_merge_enabled": False})
        clusterer = StoryClusterer(settings, provider=DummyLLMProvider(), cache=memory_cache)

        with patch.object(StoryAssistant, "merge_similar", AsyncMock()) as merge:
            result = await clusterer.run(fed_articles + lakers_articles, now=now)

        merge.assert_not_awaited()
        assert len(result.clusters) == 2

    @pytest.mark.asyncio
    async def test_diagnostics_logged(self, settings, memory_cache, fed_articles, now, caplog):
        settings = settings.model_copy(update={"diagnostics": True})
        clusterer = StoryClusterer(settings, provider=DummyLLMProvider(), cache=memory_cache)

        with caplog.at_level(logging.INFO):
            await clusterer.run(fed_articles, now=now)

        assert "Seed groups: 1 clusters" in caplog.text
        assert "After coherence split" in caplog.text

    @pytest.mark.asyncio
    async def test_empty_batch(self, settings, memory_cache, now):
        clusterer = StoryClusterer(settings, provider=DummyLLMProvider(), cache=memory_cache)
        result = await clusterer.run([], now=now)

        assert result.stage == PipelineStage.SORTED
        assert result.clusters == []


@pytest.mark.asyncio
async def test_cluster_articles(settings, memory_cache, fed_articles, now):
    result = await cluster_articles(fed_articles, settings=settings, provider=DummyLLMProvider(),
                                    cache=memory_cache, now=now)

    output = result.clusters[0].to_output()
    assert output["clusterTitle"] == "Federal Reserve raises interest rates"
    assert sorted(output["articleIds"]) == ["f1", "f2", "f3"]
    assert "imageUrls" in output


@pytest.mark.asyncio
async def test_query_string_mirrors_collapse_below_minimum(settings, memory_cache,
                                                           make_article, now):
    articles = [
        make_article("m1", "Central bank holds rates steady", url="https://reuters.com/fed?utm=a",
                     source_name="Reuters", source_url="https://reuters.com", hours_ago=1),
        make_article("m2", "Central bank holds rates steady", url="https://reuters.com/fed?utm=b",
                     source_name="Reuters", source_url="https://reuters.com", hours_ago=1),
    ]

    clusterer = StoryClusterer(settings, provider=DummyLLMProvider(), cache=memory_cache)

    raw = await clusterer.build_raw_clusters(articles)
    result = await clusterer.run(articles, now=now)

    assert [sorted(c.article_ids) for c in raw] == [["m1", "m2"]]
    assert result.stage == PipelineStage.SORTED
    assert result.clusters == []


class TestSummarizeTop:

    @pytest.fixture
    def cluster(self, make_cluster, fed_articles):
        cluster = make_cluster("Fed raises rates", ["f1", "f2", "f3"])
        cluster.articles = fed_articles
        return cluster

    @pytest.mark.asyncio
    async def test_generated_summary_cached(self, settings, memory_cache, cluster):
        clusterer = StoryClusterer(settings, provider=DummyLLMProvider(), cache=memory_cache)

        with patch.object(clusterer.assistant, "summarize",
                          AsyncMock(return_value="The Fed lifted rates.")):
            await clusterer._summarize_top([cluster])

        assert cluster.summary == "The Fed lifted rates."
        assert memory_cache.get("Summary-cluster-f1-f2-f3") == "The Fed lifted rates."

    @pytest.mark.asyncio
    async def test_error_summary_not_cached(self, settings, memory_cache, cluster):
        clusterer = StoryClusterer(settings, provider=DummyLLMProvider(), cache=memory_cache)

        with patch.object(clusterer.assistant, "summarize", AsyncMock(return_value=SUMMARY_ERROR)):
            await clusterer._summarize_top([cluster])

        assert cluster.summary == SUMMARY_ERROR
        assert memory_cache.get("Summary-cluster-f1-f2-f3") is None

    @pytest.mark.asyncio
    async def test_headline_fallback_not_cached(self, settings, memory_cache, fed_articles, now):
        settings = settings.model_copy(update={"refine_fallback_to_seeds": True,
                                               "summary_fallback_on_limit": True})
        clusterer = StoryClusterer(settings, provider=rate_limited_provider(), cache=memory_cache)

        result = await clusterer.run(fed_articles, now=now)

        cluster = result.clusters[0]
        assert cluster.summary == " • ".join(a.title for a in cluster.articles)
        assert memory_cache.get("Summary-cluster-f1-f2-f3") is None


class TestUnclusteredArticles:

    def test_uses_ids_without_articles(self, make_article, make_cluster):
        articles = [make_article("a1", "x"), make_article("a2", "y"), make_article("a3", "z")]
        clusters = [make_cluster("A", ["a1", "a3"])]
        assert [a.id for a in get_unclustered_articles(articles, clusters)] == ["a2"]

    def test_deduped_mirror_still_clustered(self, make_article, make_cluster, fed_articles):
        mirror = make_article("f1b", "Federal Reserve raises interest rates",
                              url="https://example.com/f1?utm=feed", source_name="Reuters",
                              source_url="https://reuters.com", hours_ago=1)
        cluster = make_cluster("Fed raises rates", ["f1", "f1b", "f2", "f3"])
        cluster.articles = fed_articles

        unclustered = get_unclustered_articles(fed_articles + [mirror], [cluster])

        assert unclustered == []
