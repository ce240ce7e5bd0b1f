"""
Tests for LLM refinement of pre-clustered seeds.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from storybot.assistant.models import RefinedCluster
from storybot.clustering.refine import ClusterRefiner, overlapping_chunks
from storybot.core.errors import RateLimitedError


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


def echo_refine(chunk):
    """Refinement that confirms every chunk as one cluster."""
    return [RefinedCluster(cluster_title=chunk[0].title, article_ids=[a.id for a in chunk])]


class TestOverlappingChunks:

    def test_short_sequence_single_window(self):
        assert list(overlapping_chunks([1, 2, 3], 5, 2)) == [[1, 2, 3]]

    def test_windows_overlap(self):
        chunks = list(overlapping_chunks(list(range(10)), 4, 1))
        assert chunks == [[0, 1, 2, 3], [3, 4, 5, 6], [6, 7, 8, 9]]

    def test_overlap_not_smaller_than_size(self):
        chunks = list(overlapping_chunks(list(range(4)), 2, 5))
        assert chunks == [[0, 1], [1, 2], [2, 3]]


class TestClusterRefiner:

    @pytest.fixture
    def articles(self, make_article):
        return [make_article(f"a{i}", f"Headline {i}") for i in range(8)]

    @pytest.fixture
    def assistant(self):
        assistant = MagicMock()
        assistant.refine = AsyncMock(side_effect=echo_refine)
        return assistant

    @pytest.mark.asyncio
    async def test_each_seed_refined_with_delay(self, settings, articles, assistant, make_cluster):
        sleep = RecordingSleep()
        settings = settings.model_copy(update={"refine_delay_seconds": 0.8})
        refiner = ClusterRefiner(assistant, settings, sleep=sleep)
        seeds = [make_cluster("S1", ["a0", "a1"]), make_cluster("S2", ["a2", "a3", "a4"])]

        clusters = await refiner.refine(articles[:5], seeds)

        assert [c.article_ids for c in clusters] == [["a0", "a1"], ["a2", "a3", "a4"]]
        assert sleep.delays == [0.8, 0.8]

    @pytest.mark.asyncio
    async def test_large_seed_sent_in_windows(self, settings, articles, assistant, make_cluster):
        settings = settings.model_copy(update={"seed_chunk": 4, "seed_overlap": 1,
                                               "uncovered_min": 100})
        refiner = ClusterRefiner(assistant, settings, sleep=RecordingSleep())

        await refiner.refine(articles, [make_cluster("Big", [a.id for a in articles])])

        sent = [[a.id for a in call.args[0]] for call in assistant.refine.call_args_list]
        assert sent == [["a0", "a1", "a2", "a3"], ["a3", "a4", "a5", "a6"], ["a6", "a7"]]

    @pytest.mark.asyncio
    async def test_uncovered_articles_refined(self, settings, articles, assistant, make_cluster):
        settings = settings.model_copy(update={"uncovered_min": 3, "uncovered_chunk": 10})
        refiner = ClusterRefiner(assistant, settings, sleep=RecordingSleep())

        clusters = await refiner.refine(articles, [make_cluster("S1", ["a0", "a1"])])

        assert len(clusters) == 2
        assert clusters[1].article_ids == ["a2", "a3", "a4", "a5", "a6", "a7"]

    @pytest.mark.asyncio
    async def test_too_few_uncovered(self, settings, articles, assistant, make_cluster):
        refiner = ClusterRefiner(assistant, settings, sleep=RecordingSleep())

        clusters = await refiner.refine(articles[:4], [make_cluster("S1", ["a0", "a1"])])

        assert len(clusters) == 1
        assert assistant.refine.await_count == 1

    @pytest.mark.asyncio
    async def test_rate_limit_propagates(self, settings, articles, make_cluster):
        assistant = MagicMock()
        assistant.refine = AsyncMock(side_effect=RateLimitedError(op_name="refine"))
        refiner = ClusterRefiner(assistant, settings, sleep=RecordingSleep())

        with pytest.raises(RateLimitedError):
            await refiner.refine(articles, [make_cluster("S1", ["a0", "a1"])])

    @pytest.mark.asyncio
    async def test_rate_limit_falls_back_to_seeds(self, settings, articles, make_cluster):
        assistant = MagicMock()
        assistant.refine = AsyncMock(side_effect=RateLimitedError(op_name="refine"))
        settings = settings.model_copy(update={"refine_fallback_to_seeds": True})
        refiner = ClusterRefiner(assistant, settings, sleep=RecordingSleep())
        seeds = [make_cluster("S1", ["a0", "a1"])]

        assert await refiner.refine(articles, seeds) == seeds

    @pytest.mark.asyncio
    async def test_rate_limit_on_uncovered_keeps_seed_clusters(self, settings, articles,
                                                               make_cluster):
        assistant = MagicMock()
        assistant.refine = AsyncMock(side_effect=[
            echo_refine(articles[:2]),
            RateLimitedError(op_name="refine"),
        ])
        settings = settings.model_copy(update={"uncovered_min": 3, "uncovered_chunk": 3})
        refiner = ClusterRefiner(assistant, settings, sleep=RecordingSleep())

        clusters = await refiner.refine(articles, [make_cluster("S1", ["a0", "a1"])])

        assert [c.article_ids for c in clusters] == [["a0", "a1"]]
        assert assistant.refine.await_count == 2
