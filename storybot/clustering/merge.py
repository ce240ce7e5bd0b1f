"""Cluster merge passes.

All passes are greedy and order dependent: cluster ``i`` absorbs every later
cluster ``j`` that matches it, and absorbed clusters are never revisited.
Merges keep the longer title and the exact union of article ids.
"""

from typing import Dict, List, Sequence, Set

from storybot.core.logging import get_logger
from storybot.core.models import Article, StoryCluster

from .entities import extract_cluster_entities
from .vectorizer import TfidfIndex, build_tfidf, tokenize

logger = get_logger(__name__)

COHERENCE_SAMPLE_PAIRS = 20


def jaccard(a: Set[str], b: Set[str]) -> float:
    """Jaccard index of two sets; 0 when both are empty."""
    union = len(a | b)
    return len(a & b) / (union or 1)


def title_tokens(title: str) -> Set[str]:
    return set(tokenize(title or ''))


def _combine(base: StoryCluster, other: StoryCluster) -> StoryCluster:
    """Union of ids under the longer title (base wins ties)."""
    base_title = base.cluster_title or ''
    other_title = other.cluster_title or ''
    title = base_title if len(base_title) >= len(other_title) else other_title
    return StoryCluster(cluster_title=title, article_ids=base.article_ids + other.article_ids)


def merge_clusters_by_overlap(clusters: Sequence[StoryCluster],
                              jaccard_threshold: float = 0.45) -> List[StoryCluster]:
    """Merge clusters whose article-id sets overlap by at least ``jaccard_threshold``."""
    merged: List[StoryCluster] = []
    used: Set[int] = set()

    for i, base in enumerate(clusters):
        if i in used:
            continue
        for j in range(i + 1, len(clusters)):
            if j in used:
                continue
            other = clusters[j]
            if jaccard(set(base.article_ids), set(other.article_ids)) >= jaccard_threshold:
                base = _combine(base, other)
                used.add(j)
        merged.append(base)

    if len(merged) < len(clusters):
        logger.debug(f"Overlap merge: {len(clusters)} -> {len(merged)} clusters")
    return merged


def merge_clusters_by_title(clusters: Sequence[StoryCluster],
                            threshold: float = 0.72) -> List[StoryCluster]:
    """Merge clusters whose title token sets are near-identical."""
    if len(clusters) <= 1:
        return list(clusters)

    tokens = [title_tokens(c.cluster_title) for c in clusters]
    merged: List[StoryCluster] = []
    used: Set[int] = set()

    for i, base in enumerate(clusters):
        if i in used:
            continue
        base_tokens = tokens[i]
        for j in range(i + 1, len(clusters)):
            if j in used:
                continue
            if jaccard(base_tokens, tokens[j]) >= threshold:
                base = _combine(base, clusters[j])
                base_tokens = title_tokens(base.cluster_title)
                used.add(j)
        merged.append(base)

    if len(merged) < len(clusters):
        logger.debug(f"Title merge: {len(clusters)} -> {len(merged)} clusters")
    return merged


def cross_cluster_similarity(ids_a: Sequence[str], ids_b: Sequence[str], index: TfidfIndex,
                             sample_size: int = COHERENCE_SAMPLE_PAIRS) -> float:
    """
    Average cosine over the first ``sample_size`` cross-cluster article pairs.

    Pairs are taken in nested order (every B for the first A, then the next A)
    over ids present in the index. Returns 0 when either side has none.
    """
    known_a = [i for i in ids_a if i in index]
    known_b = [i for i in ids_b if i in index]
    if not known_a or not known_b:
        return 0.0

    total, count = 0.0, 0
    for id_a in known_a:
        for id_b in known_b:
            total += index.similarity(id_a, id_b)
            count += 1
            if count >= sample_size:
                return total / count
    return total / count


def merge_clusters_by_entity(clusters: Sequence[StoryCluster],
                             article_map: Dict[str, Article],
                             min_shared_entities: int = 1,
                             min_entity_length: int = 4,
                             min_coherence: float = 0.12) -> List[StoryCluster]:
    """
    Merge clusters that name the same entities and read alike.

    A pair qualifies when it shares at least ``min_shared_entities`` entities
    and the average TF-IDF cosine across its articles reaches
    ``min_coherence``. The base cluster keeps matching on its own original
    entity set, so it cannot chain into unrelated clusters through the
    entities of the clusters it absorbed.
    """
    if len(clusters) <= 1:
        return list(clusters)

    referenced = dict.fromkeys(i for c in clusters for i in c.article_ids)
    index = build_tfidf([article_map[i] for i in referenced if i in article_map])

    entity_sets = [
        {e for e in extract_cluster_entities(c, article_map) if len(e) >= min_entity_length}
        for c in clusters
    ]

    merged: List[StoryCluster] = []
    used: Set[int] = set()

    for i, base in enumerate(clusters):
        if i in used:
            continue
        base_entities = entity_sets[i]
        for j in range(i + 1, len(clusters)):
            if j in used:
                continue
            shared = len(base_entities & entity_sets[j])
            if shared < min_shared_entities:
                continue
            coherence = cross_cluster_similarity(base.article_ids, clusters[j].article_ids, index)
            if coherence < min_coherence:
                logger.debug(f"Entity merge blocked: '{base.cluster_title}' / "
                             f"'{clusters[j].cluster_title}' coherence {coherence:.3f}")
                continue
            base = _combine(base, clusters[j])
            used.add(j)
        merged.append(base)

    if len(merged) < len(clusters):
        logger.debug(f"Entity merge: {len(clusters)} -> {len(merged)} clusters")
    return merged
