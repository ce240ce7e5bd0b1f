"""TF-IDF vectors and similarity helpers for article clustering.

Vectors are sparse ``{term: weight}`` dicts so centroids can be accumulated
term by term and dot products only touch the smaller operand. Term counting
and vocabulary are delegated to scikit-learn; weighting is

    tf  = 1 + ln(count)
    idf = ln(1 + N / (1 + df))
"""

import math
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Sequence

import numpy as np
from sklearn.feature_extraction.text import CountVectorizer

from storybot.core.logging import get_logger
from storybot.core.models import Article
from storybot.core.utils import clean_text

logger = get_logger(__name__)

SparseVector = Dict[str, float]

CONTENT_CHARS = 500

STOPWORDS = frozenset([
    'the', 'a', 'an', 'of', 'and', 'or', 'to', 'in', 'on', 'for', 'with', 'at',
    'by', 'from', 'as', 'that', 'this', 'these', 'those', 'is', 'are', 'was',
    'were', 'be', 'been', 'being', 'it', 'its', 'into', 'about', 'after',
    'before', 'over', 'under', 'up', 'down', 'out', 'off', 'than', 'then',
    'but', 'not', 'no', 'so', 'just', 'only', 'more', 'most', 'less', 'least',
    'new', 'latest',
])

URL_PATTERN = re.compile(r'https?://\S+')
NON_ALNUM_PATTERN = re.compile(r'[^a-z0-9\s]')


def tokenize(text: str) -> List[str]:
    """Normalize and lowercase, strip URLs and punctuation, drop short tokens and stopwords."""
    if not text:
        return []
    text = URL_PATTERN.sub(' ', clean_text(text).lower())
    text = NON_ALNUM_PATTERN.sub(' ', text)
    return [t for t in text.split() if len(t) > 2 and t not in STOPWORDS]


def document_text(article: Article) -> str:
    """Title + description + the first few hundred characters of content."""
    content = (article.content or '')[:CONTENT_CHARS]
    return ' '.join([article.title or '', article.description or '', content])


@dataclass
class TfidfIndex:
    """Per-article TF-IDF vectors, their L2 norms and the idf table."""
    vectors: Dict[str, SparseVector] = field(default_factory=dict)
    norms: Dict[str, float] = field(default_factory=dict)
    idf: Dict[str, float] = field(default_factory=dict)

    def __contains__(self, article_id: str) -> bool:
        return article_id in self.vectors

    def similarity(self, id_a: str, id_b: str) -> float:
        """Cosine similarity between two indexed articles."""
        return cosine(self.vectors[id_a], self.vectors[id_b],
                      self.norms[id_a], self.norms[id_b])


class ArticleVectorizer:
    """Builds a TfidfIndex over a collection of articles."""

    def __init__(self):
        self.counter = CountVectorizer(analyzer=tokenize)

    def fit_transform(self, articles: Sequence[Article]) -> TfidfIndex:
        if not articles:
            return TfidfIndex()

        docs = [document_text(a) for a in articles]
        try:
            counts = self.counter.fit_transform(docs).tocsr()
        except ValueError:
            # No article produced a single token
            logger.debug(f"Empty vocabulary for {len(articles)} articles")
            return TfidfIndex(
                vectors={a.id: {} for a in articles},
                norms={a.id: 1.0 for a in articles},
            )

        terms = self.counter.get_feature_names_out()
        n_docs = counts.shape[0]
        df = np.bincount(counts.indices, minlength=len(terms))
        idf = np.log1p(n_docs / (1.0 + df))

        weights = counts.astype(np.float64)
        weights.data = (1.0 + np.log(weights.data)) * idf[weights.indices]

        index = TfidfIndex(idf={str(t): float(w) for t, w in zip(terms, idf)})
        for row, article in enumerate(articles):
            start, end = weights.indptr[row], weights.indptr[row + 1]
            vec = {
                str(terms[col]): float(w)
                for col, w in zip(weights.indices[start:end], weights.data[start:end])
                if w
            }
            index.vectors[article.id] = vec
            index.norms[article.id] = vector_norm(vec)
        return index


def build_tfidf(articles: Sequence[Article]) -> TfidfIndex:
    """Shortcut for ``ArticleVectorizer().fit_transform(articles)``."""
    return ArticleVectorizer().fit_transform(articles)


def vector_norm(vec: SparseVector) -> float:
    """L2 norm, with zero mapped to 1 so it is always safe to divide by."""
    return math.sqrt(sum(w * w for w in vec.values())) or 1.0


def dot(a: SparseVector, b: SparseVector) -> float:
    """Sparse dot product iterating over the smaller vector."""
    if len(a) > len(b):
        a, b = b, a
    total = 0.0
    for term, wa in a.items():
        wb = b.get(term)
        if wb:
            total += wa * wb
    return total


def cosine(a: SparseVector, b: SparseVector, norm_a: float, norm_b: float) -> float:
    """Cosine similarity given precomputed norms."""
    return dot(a, b) / ((norm_a * norm_b) or 1.0)


def add_to_centroid(centroid: SparseVector, doc: SparseVector) -> SparseVector:
    """Element-wise add ``doc`` into ``centroid`` (in place, not re-normalized)."""
    for term, w in doc.items():
        centroid[term] = centroid.get(term, 0.0) + w
    return centroid


def build_centroid(vectors: Iterable[SparseVector]) -> SparseVector:
    centroid: SparseVector = {}
    for vec in vectors:
        add_to_centroid(centroid, vec)
    return centroid


def centroid_similarity(centroid: SparseVector, doc: SparseVector) -> float:
    """Cosine between a summed centroid and a document, norms computed fresh."""
    return dot(centroid, doc) / (vector_norm(centroid) * vector_norm(doc))
