"""Severity rating and ranking of enriched clusters.

Composite score:
- Volume: ln(1 + articles), diminishing returns
- Diversity: number of distinct publisher domains
- Images: +2 with two or more images, +1 with one, -1 with none
- Recency: exp(-hours since newest article / 24)
- Severity: fixed boost per severity label
"""

import math
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Pattern, Sequence

from storybot.assistant.story_assistant import StoryAssistant
from storybot.core.logging import get_logger
from storybot.core.models import Severity, StoryCluster
from storybot.core.settings import ClusterSettings, resolve_settings
from storybot.core.time import get_age_hours, latest
from storybot.core.utils import extract_host

logger = get_logger(__name__)

# Scoring configuration
ARTICLES_WEIGHT = 0.6
DOMAINS_WEIGHT = 0.8
IMAGES_WEIGHT = 0.4
RECENCY_WEIGHT = 0.3
RECENCY_TAU_HOURS = 24.0

DEFAULT_SEVERITY_BOOSTS = {
    "War/Conflict": 10,
    "Mass Casualty/Deaths": 7,
    "National Politics": 3,
    "Economy/Markets": 2,
    "Tech/Business": 1,
    "Other": 0,
}


@dataclass
class SeverityRule:
    label: str
    level: int
    patterns: List[Pattern] = field(default_factory=list)

    def matches(self, text: str) -> bool:
        return any(p.search(text) for p in self.patterns)


def _rule(label: str, level: int, *alternations: str) -> SeverityRule:
    return SeverityRule(label, level, [re.compile(rf"\b(?:{a})", re.IGNORECASE) for a in alternations])


# Highest level first
SEVERITY_RULES = [
    _rule("War/Conflict", 5,
          "war|invasion|missile|airstrike|shelling|artillery|frontline|offensive|counteroffensive",
          "drone strike|ballistic|cruise missile|rocket attack",
          "mobilization|troops|military escalation|ceasefire"),
    _rule("Mass Casualty/Deaths", 4,
          "killed|dead|deaths|casualties|fatalities|mass shooting|stampede|crash|collapse",
          "earthquake|hurricane|typhoon|wildfire|floods?|tsunami|landslide",
          "outbreak|pandemic|epidemic"),
    _rule("National Politics", 3,
          "election|president|prime minister|parliament|congress|senate|cabinet|impeach"),
    _rule("Economy/Markets", 2,
          "inflation|recession|gdp|unemployment|interest rate|market crash|bond yield"),
    _rule("Tech/Business", 1,
          "iphone|launch|earnings|ipo|merger|acquisition|crypto|token|blockchain"),
]


def severity_text(cluster: StoryCluster) -> str:
    """Cluster title, member titles and member descriptions."""
    articles = cluster.articles or []
    parts = [cluster.cluster_title or ""] + [a.title or "" for a in articles]
    parts += [a.description for a in articles if a.description]
    return " \n ".join(parts)


def compute_severity(cluster: StoryCluster) -> Severity:
    """
    Keyword severity: the highest-level matching rule wins.

    ``reasons`` records each label that raised the level, in rule order.
    """
    text = severity_text(cluster)
    level, label, reasons = 0, "Other", []
    for rule in SEVERITY_RULES:
        if rule.level > level and rule.matches(text):
            level, label = rule.level, rule.label
            reasons.append(rule.label)
    return Severity(level=level, label=label, reasons=reasons)


def image_bonus(image_count: int) -> int:
    if image_count >= 2:
        return 2
    if image_count == 1:
        return 1
    return -1


def score_cluster(cluster: StoryCluster,
                  w_articles: float = ARTICLES_WEIGHT,
                  w_domains: float = DOMAINS_WEIGHT,
                  w_images: float = IMAGES_WEIGHT,
                  w_recency: float = RECENCY_WEIGHT,
                  severity_boosts: Optional[Dict[str, float]] = None,
                  now: Optional[datetime] = None) -> float:
    """Composite ranking score of an enriched cluster."""
    boosts = severity_boosts if severity_boosts is not None else DEFAULT_SEVERITY_BOOSTS
    articles = cluster.articles or []

    domains = {extract_host(a.url) for a in articles} - {""}
    newest = latest(a.published_at for a in articles)
    recency = math.exp(-get_age_hours(newest, now) / RECENCY_TAU_HOURS) if newest else 0.0

    base = (w_articles * math.log1p(len(articles))
            + w_domains * len(domains)
            + w_images * image_bonus(len(cluster.image_urls or []))
            + w_recency * recency)

    label = cluster.severity.label if cluster.severity else "Other"
    return base + boosts.get(label, 0)


class SeverityScorer:
    """Assigns severity and score to clusters and ranks them."""

    def __init__(self, settings: Optional[ClusterSettings] = None,
                 assistant: Optional[StoryAssistant] = None):
        self.settings = resolve_settings(settings)
        self.assistant = assistant

    async def assess(self, cluster: StoryCluster) -> Severity:
        """LLM severity when enabled and conclusive, keyword rules otherwise."""
        if self.settings.severity_use_llm and self.assistant is not None:
            severity = await self.assistant.assess_severity(cluster)
            if severity.level > 0:
                return severity
        return compute_severity(cluster)

    def score(self, cluster: StoryCluster, now: Optional[datetime] = None) -> float:
        s = self.settings
        return score_cluster(
            cluster,
            w_articles=s.score_w_articles,
            w_domains=s.score_w_domains,
            w_images=s.score_w_images,
            w_recency=s.score_w_recency,
            severity_boosts=s.severity_boosts,
            now=now,
        )

    async def score_and_rank(self, clusters: Sequence[StoryCluster],
                             now: Optional[datetime] = None) -> List[StoryCluster]:
        """Set severity and score on every cluster; return them best first."""
        for cluster in clusters:
            cluster.severity = await self.assess(cluster)
            cluster.score = self.score(cluster, now)
        # sorted() is stable, ties keep enrichment order
        ranked = sorted(clusters, key=lambda c: c.score, reverse=True)
        if ranked:
            logger.info(f"Ranked {len(ranked)} clusters, top: '{ranked[0].cluster_title}' "
                        f"({ranked[0].score:.2f})")
        return ranked
