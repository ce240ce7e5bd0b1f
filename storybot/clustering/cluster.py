"""Greedy centroid clustering over TF-IDF vectors.

- Pre-clustering of a whole batch into candidate seeds
- Re-splitting of incoherent clusters at a tighter threshold
- Expansion of a cluster with close articles the earlier stages missed
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from storybot.core.logging import get_logger
from storybot.core.models import Article, StoryCluster
from storybot.core.time import hours_between, latest

from .vectorizer import (
    SparseVector,
    add_to_centroid,
    build_centroid,
    build_tfidf,
    centroid_similarity,
)

logger = get_logger(__name__)

# Configuration
DEFAULT_PRECLUSTER_THRESHOLD = 0.38
DEFAULT_PRECLUSTER_MIN_SIZE = 2
DEFAULT_PRECLUSTER_MAX_GROUP = 60
SPLIT_MAX_GROUP = 50
MAX_EXPAND_WINDOW_HOURS = 168


@dataclass
class Seed:
    """Candidate cluster grown during pre-clustering."""
    title: str
    ids: List[str] = field(default_factory=list)
    centroid: SparseVector = field(default_factory=dict)

    def add(self, article_id: str, vector: SparseVector) -> None:
        self.ids.append(article_id)
        add_to_centroid(self.centroid, vector)


def precluster_articles(articles: Sequence[Article],
                        threshold: float = DEFAULT_PRECLUSTER_THRESHOLD,
                        min_size: int = DEFAULT_PRECLUSTER_MIN_SIZE,
                        max_group: int = DEFAULT_PRECLUSTER_MAX_GROUP) -> List[StoryCluster]:
    """
    Single-pass greedy clustering, newest articles first.

    Each article joins the seed whose centroid it is most similar to, provided
    the similarity reaches ``threshold`` and the seed holds fewer than
    ``max_group`` members; otherwise it starts a new seed titled after itself.
    Seeds with fewer than ``min_size`` members are dropped.

    Args:
        articles: Articles to cluster
        threshold: Minimum centroid similarity to join a seed
        min_size: Minimum members for a seed to be returned
        max_group: Maximum members per seed

    Returns:
        Clusters in seed creation order
    """
    if not articles:
        return []

    index = build_tfidf(articles)
    ordered = sorted(articles, key=lambda a: a.published_at, reverse=True)

    seeds: List[Seed] = []
    for article in ordered:
        vector = index.vectors[article.id]

        best_idx, best_sim = -1, 0.0
        for i, seed in enumerate(seeds):
            sim = centroid_similarity(seed.centroid, vector)
            if sim > best_sim:
                best_idx, best_sim = i, sim

        if best_idx >= 0 and best_sim >= threshold and len(seeds[best_idx].ids) < max_group:
            seeds[best_idx].add(article.id, vector)
        else:
            seed = Seed(title=article.title)
            seed.add(article.id, vector)
            seeds.append(seed)

    clusters = [
        StoryCluster(cluster_title=s.title, article_ids=s.ids)
        for s in seeds
        if len(s.ids) >= min_size
    ]
    logger.debug(f"Pre-clustered {len(articles)} articles into {len(seeds)} seeds, "
                 f"{len(clusters)} kept")
    return clusters


def split_incoherent_cluster(articles: Sequence[Article], cluster: StoryCluster,
                             threshold: float = 0.52, min_size: int = 2) -> List[StoryCluster]:
    """
    Re-cluster a cluster's own members at a stricter threshold.

    Returns the tighter sub-clusters, or an empty list when the cluster has
    too few resolvable members or no sub-group reaches ``min_size``.
    """
    member_ids = set(cluster.article_ids)
    subset = [a for a in articles if a.id in member_ids]
    if len(subset) < min_size:
        return []
    return precluster_articles(subset, threshold=threshold, min_size=min_size,
                               max_group=SPLIT_MAX_GROUP)


def split_clusters(articles: Sequence[Article], clusters: Sequence[StoryCluster],
                   threshold: float = 0.52, min_size: int = 2) -> List[StoryCluster]:
    """Apply split_incoherent_cluster to every cluster."""
    result: List[StoryCluster] = []
    for cluster in clusters:
        subs = split_incoherent_cluster(articles, cluster, threshold=threshold,
                                        min_size=min_size)
        if subs:
            if len(subs) > 1:
                logger.debug(f"Split '{cluster.cluster_title}' into {len(subs)} sub-clusters")
            result.extend(subs)
        elif cluster.size >= min_size:
            result.append(cluster)
    return result


def dominant_category(articles: Sequence[Article]) -> Optional[str]:
    """Most frequent non-empty category; first seen wins ties."""
    counts = Counter(a.category for a in articles if a.category)
    if not counts:
        return None
    return counts.most_common(1)[0][0]


def expand_cluster_membership(all_articles: Sequence[Article], cluster: StoryCluster,
                              sim_threshold: float = 0.42,
                              max_add: int = 50,
                              time_window_hours: float = 96,
                              category_strict: bool = False) -> StoryCluster:
    """
    Pull in non-member articles close to the cluster centroid.

    Candidates must be within ``time_window_hours`` of the latest member and,
    when ``category_strict`` is set, share the members' dominant category.
    The best ``max_add`` candidates scoring at least ``sim_threshold`` are
    appended to the member ids.
    """
    if time_window_hours > MAX_EXPAND_WINDOW_HOURS:
        raise ValueError(f"time_window_hours must be <= {MAX_EXPAND_WINDOW_HOURS}")

    member_ids = set(cluster.article_ids)
    members = [a for a in all_articles if a.id in member_ids]
    if not members:
        return cluster

    index = build_tfidf(all_articles)
    centroid = build_centroid(index.vectors[m.id] for m in members if m.id in index)
    category = dominant_category(members)
    newest = latest(m.published_at for m in members)

    candidates = []
    for article in all_articles:
        if article.id in member_ids or article.id not in index:
            continue
        if category_strict and category and article.category and article.category != category:
            continue
        if newest and hours_between(newest, article.published_at) > time_window_hours:
            continue
        score = centroid_similarity(centroid, index.vectors[article.id])
        if score >= sim_threshold:
            candidates.append((article.id, score))

    if not candidates:
        return cluster

    candidates.sort(key=lambda c: c[1], reverse=True)
    added = [article_id for article_id, _ in candidates[:max_add]]
    logger.debug(f"Expanded '{cluster.cluster_title}' with {len(added)} articles")
    return cluster.model_copy(update={"article_ids": list(dict.fromkeys(cluster.article_ids + added))})
