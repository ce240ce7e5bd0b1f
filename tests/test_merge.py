"""
Tests for overlap, title and entity merge passes.
"""

import pytest

from storybot.clustering.merge import (
    cross_cluster_similarity,
    jaccard,
    merge_clusters_by_entity,
    merge_clusters_by_overlap,
    merge_clusters_by_title,
)
from storybot.clustering.vectorizer import build_tfidf


def test_jaccard():
    assert jaccard({"a", "b"}, {"b", "c"}) == pytest.approx(1 / 3)
    assert jaccard(set(), set()) == 0.0


class TestMergeByOverlap:

    def test_high_overlap_merges(self, make_cluster):
        clusters = [
            make_cluster("Cluster A", ["a1", "a2", "a3"]),
            make_cluster("Cluster B", ["a2", "a3", "a4"]),
        ]
        # 2 shared of 4 total
        merged = merge_clusters_by_overlap(clusters, jaccard_threshold=0.45)

        assert len(merged) == 1
        assert set(merged[0].article_ids) == {"a1", "a2", "a3", "a4"}
        assert len(merged[0].article_ids) == 4

    def test_low_overlap_kept_separate(self, make_cluster):
        clusters = [
            make_cluster("Cluster A", ["a1", "a2", "a3"]),
            make_cluster("Cluster B", ["a4", "a5", "a6"]),
        ]
        assert len(merge_clusters_by_overlap(clusters, jaccard_threshold=0.5)) == 2

    def test_longer_title_wins(self, make_cluster):
        clusters = [
            make_cluster("Short", ["a1", "a2"]),
            make_cluster("A Much Longer Title Here", ["a1", "a2"]),
        ]
        merged = merge_clusters_by_overlap(clusters, jaccard_threshold=0.5)

        assert len(merged) == 1
        assert merged[0].cluster_title == "A Much Longer Title Here"

    def test_inputs_not_mutated(self, make_cluster):
        clusters = [make_cluster("A", ["a1", "a2"]), make_cluster("B", ["a1", "a2"])]
        merge_clusters_by_overlap(clusters)
        assert clusters[0].article_ids == ["a1", "a2"]


class TestMergeByTitle:

    def test_identical_titles(self, make_cluster):
        clusters = [
            make_cluster("Winter Olympics", ["a1", "a2"]),
            make_cluster("Winter Olympics", ["a3", "a4"]),
        ]
        merged = merge_clusters_by_title(clusters, threshold=0.7)

        assert len(merged) == 1
        assert len(merged[0].article_ids) == 4

    def test_very_similar_titles(self, make_cluster):
        clusters = [
            make_cluster("Winter Olympics Medal Count Update", ["a1"]),
            make_cluster("Winter Olympics Medal Count", ["a2"]),
        ]
        merged = merge_clusters_by_title(clusters, threshold=0.7)

        assert len(merged) == 1
        assert merged[0].cluster_title == "Winter Olympics Medal Count Update"

    def test_different_titles_kept_separate(self, make_cluster):
        clusters = [
            make_cluster("Winter Olympics Medal Count", ["a1"]),
            make_cluster("Stock Market Crash Today", ["a2"]),
        ]
        assert len(merge_clusters_by_title(clusters, threshold=0.7)) == 2

    def test_empty_input(self):
        assert merge_clusters_by_title([]) == []

    def test_single_cluster_as_is(self, make_cluster):
        clusters = [make_cluster("Only One", ["a1"])]
        assert merge_clusters_by_title(clusters) == clusters


class TestCrossClusterSimilarity:

    @pytest.fixture
    def index(self, make_article):
        articles = [
            make_article("a1", "Olympics swimming gold medal race results"),
            make_article("a2", "Olympics diving competition medal winners"),
            make_article("a3", "Stock market crashes amid recession fears"),
            make_article("a4", "Wall street sell-off continues as economy weakens"),
        ]
        return build_tfidf(articles)

    def test_related_clusters(self, index):
        assert cross_cluster_similarity(["a1", "a2"], ["a2", "a1"], index) > 0

    def test_unrelated_clusters(self, index):
        assert cross_cluster_similarity(["a1", "a2"], ["a3", "a4"], index) < 0.15

    def test_zero_when_side_has_no_known_ids(self, index):
        assert cross_cluster_similarity(["x1"], ["a1"], index) == 0.0
        assert cross_cluster_similarity(["a1"], ["x1"], index) == 0.0

    def test_sample_size_limits_pairs(self, index):
        first_pair = index.similarity("a1", "a2")
        assert cross_cluster_similarity(["a1", "a2"], ["a2", "a1"], index, sample_size=1) == \
            pytest.approx(first_pair)
        assert cross_cluster_similarity(["a1"], ["a2"], index, sample_size=100) == \
            pytest.approx(first_pair)


class TestMergeByEntity:

    def test_shared_entities_and_coherence_merge(self, make_article, make_cluster):
        articles = [
            make_article("a1", "Olympics Swimming Gold Medal for USA Team"),
            make_article("a2", "USA Team Wins Olympic Gold in Swimming Finals"),
            make_article("a3", "Olympic Swimming Results USA Takes Gold"),
            make_article("a4", "USA Olympic Swimming Victory Gold Medal"),
        ]
        article_map = {a.id: a for a in articles}
        clusters = [
            make_cluster("USA Wins Olympic Swimming Gold", ["a1", "a2"]),
            make_cluster("Olympic Swimming Finals Results", ["a3", "a4"]),
        ]

        merged = merge_clusters_by_entity(clusters, article_map, min_shared_entities=1,
                                          min_entity_length=3, min_coherence=0.05)

        assert len(merged) == 1
        assert len(merged[0].article_ids) == 4

    def test_low_coherence_blocks_merge(self, make_article, make_cluster):
        articles = [
            make_article("a1", "Paris Climate Summit reaches breakthrough agreement"),
            make_article("a2", "Climate Summit in Paris produces new carbon targets"),
            make_article("a3", "Paris Fashion Week showcases spring collection"),
            make_article("a4", "Fashion Week in Paris draws celebrity designers"),
        ]
        article_map = {a.id: a for a in articles}
        clusters = [
            make_cluster("Paris Climate Summit Agreement", ["a1", "a2"]),
            make_cluster("Paris Fashion Week Highlights", ["a3", "a4"]),
        ]

        merged = merge_clusters_by_entity(clusters, article_map, min_shared_entities=1,
                                          min_entity_length=4, min_coherence=0.15)

        assert len(merged) == 2

    def test_entities_do_not_snowball(self, make_article, make_cluster):
        articles = [
            make_article("a1", "Apple WWDC Conference announces new MacBook Pro lineup"),
            make_article("a2", "Apple iPhone Pro launch at WWDC Developer Conference"),
            make_article("a3", "Samsung Galaxy Pro launch event shows new phone lineup"),
        ]
        article_map = {a.id: a for a in articles}
        clusters = [
            make_cluster("Apple WWDC Conference", ["a1"]),
            make_cluster("Apple iPhone Pro Launch", ["a2"]),
            make_cluster("Samsung Galaxy Pro Launch", ["a3"]),
        ]

        merged = merge_clusters_by_entity(clusters, article_map, min_shared_entities=2,
                                          min_entity_length=3, min_coherence=0.01)

        assert len(merged) == 2
        apple = next(c for c in merged if "a1" in c.article_ids)
        assert "a2" in apple.article_ids
        assert "a3" not in apple.article_ids

    def test_min_shared_entities(self, make_article, make_cluster):
        articles = [
            make_article("a1", "Olympic event in Paris for athletes"),
            make_article("a2", "Concert event in Paris for musicians"),
        ]
        article_map = {a.id: a for a in articles}
        clusters = [
            make_cluster("Olympic Paris Event", ["a1"]),
            make_cluster("Paris Music Concert", ["a2"]),
        ]

        merged = merge_clusters_by_entity(clusters, article_map, min_shared_entities=3,
                                          min_entity_length=4, min_coherence=0.01)

        assert len(merged) == 2

    def test_min_entity_length(self, make_article, make_cluster):
        articles = [
            make_article("a1", "The EU and US discuss trade in talks"),
            make_article("a2", "EU and US tariff negotiations continue at summit"),
        ]
        article_map = {a.id: a for a in articles}
        clusters = [
            make_cluster("EU US Trade Talks", ["a1"]),
            make_cluster("EU US Tariff Summit", ["a2"]),
        ]

        merged = merge_clusters_by_entity(clusters, article_map, min_shared_entities=2,
                                          min_entity_length=4, min_coherence=0.01)

        assert len(merged) == 2

    def test_single_cluster_unchanged(self, make_article, make_cluster):
        article_map = {"a1": make_article("a1", "Test")}
        clusters = [make_cluster("Test", ["a1"])]
        assert merge_clusters_by_entity(clusters, article_map) == clusters
