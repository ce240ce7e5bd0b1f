"""Story clustering package.

This package contains modules for:
- TF-IDF vectors and cosine similarity (vectorizer.py)
- Heuristic entity extraction (entities.py)
- Pre-clustering, coherence splitting and expansion (cluster.py)
- Overlap, title and entity merges (merge.py)
- LLM refinement of seeds (refine.py)
- Enrichment with articles and images (enrich.py)
- Severity and ranking (score.py)
- Processing pipeline (pipeline.py)
"""

from .vectorizer import ArticleVectorizer, TfidfIndex, build_tfidf, cosine, tokenize

from .entities import extract_entities, extract_cluster_entities

from .cluster import (
    precluster_articles,
    split_incoherent_cluster,
    expand_cluster_membership
)

from .merge import (
    merge_clusters_by_overlap,
    merge_clusters_by_title,
    merge_clusters_by_entity
)

from .refine import ClusterRefiner
from .enrich import ClusterEnricher, enrich_clusters
from .score import SeverityScorer, compute_severity, score_cluster

from .pipeline import StoryClusterer, cluster_articles, get_unclustered_articles

__all__ = [
    # Vectors
    'ArticleVectorizer',
    'TfidfIndex',
    'build_tfidf',
    'cosine',
    'tokenize',

    # Entities
    'extract_entities',
    'extract_cluster_entities',

    # Clustering
    'precluster_articles',
    'split_incoherent_cluster',
    'expand_cluster_membership',

    # Merging
    'merge_clusters_by_overlap',
    'merge_clusters_by_title',
    'merge_clusters_by_entity',

    # Stages
    'ClusterRefiner',
    'ClusterEnricher',
    'enrich_clusters',
    'SeverityScorer',
    'compute_severity',
    'score_cluster',

    # Pipeline
    'StoryClusterer',
    'cluster_articles',
    'get_unclustered_articles'
]
