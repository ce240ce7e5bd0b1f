"""Cluster enrichment: resolve members, de-duplicate, diversify and pick images."""

from typing import Callable, Dict, List, Optional, Sequence, Tuple

from storybot.assistant.story_assistant import StoryAssistant
from storybot.core.errors import RateLimitedError
from storybot.core.logging import get_logger
from storybot.core.models import Article, StoryCluster
from storybot.core.settings import ClusterSettings, resolve_settings
from storybot.core.utils import canonical_url, has_useful_image, resolve_article_host

logger = get_logger(__name__)

ImageDimsHook = Callable[[str], Tuple[Optional[int], Optional[int]]]


def dedupe_articles(articles: Sequence[Article]) -> List[Article]:
    """
    Drop mirrors and re-posts, keeping first occurrences.

    First by canonical URL, then by (publisher host, title) so one outlet's
    headline only appears once while different outlets sharing a headline
    are all kept.
    """
    seen_urls = set()
    by_url = []
    for article in articles:
        key = canonical_url(article)
        if key not in seen_urls:
            seen_urls.add(key)
            by_url.append(article)

    seen_titles = set()
    result = []
    for article in by_url:
        key = f"{resolve_article_host(article)}|{article.title.lower().strip()}"
        if key not in seen_titles:
            seen_titles.add(key)
            result.append(article)
    return result


def diversify_articles(articles: Sequence[Article], per_domain_max: int = 2,
                       display_cap: int = 20) -> List[Article]:
    """
    Newest first, at most ``per_domain_max`` per host and ``display_cap`` total.

    Articles without a resolvable host are never capped per domain.
    """
    # Image-first, then recency; the stable recency sort below keeps image
    # articles ahead of image-less ones published at the same instant
    ordered = sorted(articles, key=lambda a: (not has_useful_image(a), -a.published_at.timestamp()))
    ordered = sorted(ordered, key=lambda a: a.published_at, reverse=True)

    counts: Dict[str, int] = {}
    diverse: List[Article] = []
    for article in ordered:
        host = resolve_article_host(article)
        if not host:
            diverse.append(article)
        elif counts.get(host, 0) < per_domain_max:
            counts[host] = counts.get(host, 0) + 1
            diverse.append(article)
        if len(diverse) >= display_cap:
            break
    return diverse


def select_image_urls(articles: Sequence[Article], fallback: Sequence[Article],
                      min_width: int = 320, min_height: int = 200, max_images: int = 4,
                      infer_image_dims: Optional[ImageDimsHook] = None) -> List[str]:
    """
    Up to ``max_images`` distinct image URLs for a collage.

    Uses ``fallback`` when none of ``articles`` has a useful image. Minimum
    dimensions are only enforced for dimensions that are known.
    """
    sources = articles if any(has_useful_image(a) for a in articles) else fallback

    urls: List[str] = []
    for article in sources:
        if not has_useful_image(article):
            continue
        width, height = article.image_width, article.image_height
        if (not width or not height) and infer_image_dims is not None:
            inferred_w, inferred_h = infer_image_dims(article.url_to_image)
            width = width or inferred_w
            height = height or inferred_h
        if width and width > 0 and width < min_width:
            continue
        if height and height > 0 and height < min_height:
            continue
        if article.url_to_image not in urls:
            urls.append(article.url_to_image)
    return urls[:max_images]


class ClusterEnricher:
    """Attaches articles, images and optionally a summary to raw clusters."""

    def __init__(self, settings: Optional[ClusterSettings] = None,
                 assistant: Optional[StoryAssistant] = None,
                 infer_image_dims: Optional[ImageDimsHook] = None):
        self.settings = resolve_settings(settings)
        self.assistant = assistant
        self.infer_image_dims = infer_image_dims

    async def enrich_cluster(self, cluster: StoryCluster,
                             article_map: Dict[str, Article]) -> Optional[StoryCluster]:
        s = self.settings
        members = [article_map[i] for i in cluster.article_ids if i in article_map]
        if len(members) < 2:
            return None

        deduped = dedupe_articles(members)
        shown = diversify_articles(deduped, s.per_domain_max, s.display_cap)
        images = select_image_urls(shown, deduped, s.min_image_width, s.min_image_height,
                                   s.max_images, self.infer_image_dims)

        summary = None
        if s.summarize_during_enrich and self.assistant is not None:
            summary = await self.assistant.summarize(shown)

        return cluster.model_copy(update={
            "articles": shown,
            "image_urls": images,
            "summary": summary or cluster.summary,
        })

    async def enrich(self, clusters: Sequence[StoryCluster],
                     article_map: Dict[str, Article]) -> List[StoryCluster]:
        """
        Enrich every cluster, skipping those with fewer than two known articles.

        Raises:
            RateLimitedError: rate limited while summarizing
        """
        enriched: List[StoryCluster] = []
        for cluster in clusters:
            try:
                result = await self.enrich_cluster(cluster, article_map)
            except RateLimitedError:
                logger.warning("Rate limit hit during enrichment, stopping")
                raise
            except Exception as e:
                logger.error(f"Error enriching cluster '{cluster.cluster_title}': {e}")
                continue
            if result is not None:
                enriched.append(result)
        logger.info(f"Enriched {len(enriched)}/{len(clusters)} clusters")
        return enriched


async def enrich_clusters(raw: Sequence[StoryCluster], article_map: Dict[str, Article],
                          settings: Optional[ClusterSettings] = None,
                          assistant: Optional[StoryAssistant] = None) -> List[StoryCluster]:
    """Shortcut for ``ClusterEnricher(settings, assistant).enrich(raw, article_map)``."""
    return await ClusterEnricher(settings, assistant).enrich(raw, article_map)
