"""
Story assistant: the four LLM operations used by the clustering pipeline.

- refine: confirm which pre-clustered articles really cover one event
- merge_similar: group paraphrased or translated cluster candidates
- assess_severity: rate a cluster 0-5
- summarize: synthesize one summary from several articles

All calls go through a BoundedLLMClient and are memoized in the result
cache. Rate limits propagate as RateLimitedError; malformed answers are
treated as empty.
"""

import json
import re
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from storybot.core.cache import ResultCache
from storybot.core.errors import MalformedResponseError, RateLimitedError, UpstreamError
from storybot.core.logging import get_logger
from storybot.core.models import Article, Severity, StoryCluster
from storybot.core.settings import ClusterSettings, resolve_settings
from storybot.core.utils import fingerprint_ids

from .client import BoundedLLMClient
from .llm_provider import LLMProvider, LLMProviderFactory
from .models import (
    ClusterBrief,
    CompletionRequest,
    MergeGroup,
    Operation,
    RefinedCluster,
    SeverityAssessment,
    SummaryLength,
)

logger = get_logger(__name__)

# Cache TTLs (seconds)
REFINE_TTL = 600
MERGE_TTL = 600
SEVERITY_TTL = 1800
SUMMARY_TTL = 3600

SEVERITY_SAMPLE = 6
SEVERITY_KEY_IDS = 20
MERGE_HEADLINES = 3
SHORT_SUMMARY_CHARS = 140
SUMMARY_ERROR = "An error occurred while generating the cluster summary."

REFINE_PROMPT = """You are a news categorization engine. Group only truly similar articles referring to the SAME event.
Return ONLY JSON: {{"clusters": [{{"clusterTitle": string, "articleIds": string[]}}, ...]}}.

Strict rules:
- Make a cluster ONLY if there are 2+ highly similar items about a single event.
- Do NOT cluster unrelated topics or categories together.
- Prefer clusters within ~72 hours; different dates often mean different events.
- If unsure, return {{"clusters": []}}.
- Cluster titles must describe the event (avoid generic titles like "Live Coverage").

Articles JSON:
{articles}"""

REFINE_STRICT_PROMPT = """Respond ONLY with a JSON object of shape {{"clusters": [{{"clusterTitle": string, "articleIds": string[]}}, ...]}}. No prose. If unsure, return {{"clusters": []}}.
Articles JSON:
{articles}"""

MERGE_PROMPT = """You are grouping cluster candidates that describe the SAME news event, even across languages and paraphrases.
Return ONLY JSON with shape {{"groups": [{{"title": string, "indices": number[]}}, ...]}} where indices refer to the input array order.

Rules:
- Group clusters that clearly refer to the same event (same place, actors and timing), even if titles are paraphrased or translated.
- Do NOT merge different events.
- Prefer descriptive group titles; reuse an existing title if suitable.

Input clusters (JSON array with {{index,title,headlines,dateRange,size}}):
{briefs}"""

SEVERITY_PROMPT = """You are rating the NEWS SEVERITY of a single event cluster. Output ONLY JSON with keys: level (0-5), label (string), reasons (string array).

Guidelines:
- 5 War/Conflict: active war, missile/drone strikes, widespread violence.
- 4 Mass Casualty/Deaths: many killed, disasters, major outbreaks.
- 3 National Politics: head of state or government, elections, parliament, impeachment.
- 2 Economy/Markets: major macro shifts, crises.
- 1 Tech/Business: launches, earnings, corporate news.
- 0 Other: everything else.

Be conservative and justify briefly in reasons.
Cluster JSON follows:
{brief}"""

SUMMARY_PROMPT = """Synthesize a {shape} summary from multiple articles covering the same event.
Requirements:
{length_rule}
- Integrate key facts that multiple sources agree on; avoid duplication.
- Note any major disagreements or uncertainty if present.
- Prefer numbers, timeframes and concrete details; avoid rhetoric.
- Do not list sources; write a unified narrative.
Sources:
{sources}"""

FIRST_SENTENCE = re.compile(r"(.+?[.!?])(\s|$)")


def parse_json_object(raw: Optional[str]) -> Dict[str, Any]:
    """
    Parse a JSON object out of an LLM answer.

    Tries the whole text first, then the outermost ``{...}`` substring.

    Raises:
        MalformedResponseError: no JSON object could be recovered
    """
    if not raw or not raw.strip():
        raise MalformedResponseError("Empty response", raw=raw or "")

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        start, end = raw.find("{"), raw.rfind("}")
        if start == -1 or end <= start:
            raise MalformedResponseError("No JSON object in response", raw=raw)
        try:
            parsed = json.loads(raw[start:end + 1])
        except json.JSONDecodeError as e:
            raise MalformedResponseError(f"Invalid JSON in response: {e}", raw=raw) from e

    if not isinstance(parsed, dict):
        raise MalformedResponseError("Response is not a JSON object", raw=raw)
    return parsed


def cluster_summary_id(cluster: StoryCluster) -> str:
    """Deterministic id of a cluster's summary, stable across runs."""
    ids = cluster.article_ids or [a.id for a in (cluster.articles or [])]
    key = "-".join(sorted(i for i in ids if i))
    if key:
        return f"cluster-{key}"
    return f"cluster-{(cluster.cluster_title or 'unknown').strip()}"


def title_fallback_summary(articles: Sequence[Article]) -> str:
    """Up to three headlines joined by bullets, used when the LLM is rate limited."""
    return " • ".join([a.title for a in articles if a.title][:3])


def is_fallback_summary(summary: Optional[str], articles: Sequence[Article]) -> bool:
    """True for the error text or the headline fallback rather than a generated summary."""
    return summary == SUMMARY_ERROR or summary == title_fallback_summary(articles)


def shorten_summary(summary: str) -> str:
    """Reduce a summary to its first sentence, or a ~140 char cut."""
    normalized = re.sub(r"\s+", " ", summary).strip()
    match = FIRST_SENTENCE.match(normalized)
    if match:
        return match.group(1)
    cut = normalized[:SHORT_SUMMARY_CHARS]
    last_dot = cut.rfind(".")
    if last_dot > 40:
        cut = cut[:last_dot + 1]
    return cut


def _article_brief(article: Article, description_chars: int = 160) -> Dict[str, Any]:
    return {
        "id": article.id,
        "title": article.title,
        "description": (article.description or "")[:description_chars],
        "publishedAt": article.published_at.isoformat(),
        "source": article.source.name,
        "category": article.category,
    }


class StoryAssistant:
    """LLM-backed helper operations with caching and tolerant parsing."""

    def __init__(self, provider: Optional[LLMProvider] = None,
                 client: Optional[BoundedLLMClient] = None,
                 cache: Optional[ResultCache] = None,
                 settings: Optional[ClusterSettings] = None):
        self.settings = resolve_settings(settings)
        self.provider = provider or LLMProviderFactory.from_settings(self.settings)
        self.client = client or BoundedLLMClient.from_settings(self.settings)
        self.cache = cache or ResultCache.from_settings(self.settings)

    async def _complete(self, op_name: str, request: CompletionRequest) -> str:
        return await self.client.call(op_name, lambda: self.provider.complete(request))

    # ------------------------------------------------------------------
    # Refinement
    # ------------------------------------------------------------------

    async def refine(self, articles: Sequence[Article]) -> List[RefinedCluster]:
        """
        Ask the LLM which of ``articles`` describe the same event.

        Only clusters with a title and at least two of the given ids are
        returned. Non-empty results are cached for ten minutes.

        Raises:
            RateLimitedError: upstream quota exhausted
        """
        if len(articles) < 2:
            return []

        cache_key = f"clusters-{fingerprint_ids(a.id for a in articles)}"
        cached = self.cache.get(cache_key)
        if cached:
            logger.debug(f"Returning cached refinement for {len(articles)} articles")
            return [RefinedCluster.model_validate(c) for c in cached]

        briefs = [_article_brief(a) for a in articles]
        articles_json = json.dumps(briefs)
        request = CompletionRequest(
            op=Operation.REFINE,
            system="You are a helpful assistant that only responds with valid, well-formed JSON.",
            prompt=REFINE_PROMPT.format(articles=articles_json),
            payload={"articles": briefs},
            temperature=0.1,
            json_mode=True,
        )

        try:
            raw = await self._complete("refine.json", request)
        except UpstreamError as e:
            if e.code != "json_validate_failed" and "json_validate_failed" not in str(e):
                logger.error(f"Error refining {len(articles)} articles: {e}")
                return []
            logger.warning("JSON validation failed, retrying refinement without JSON mode")
            strict = request.model_copy(update={
                "system": "Output valid JSON only. No explanations.",
                "prompt": REFINE_STRICT_PROMPT.format(articles=articles_json),
                "temperature": 0.0,
                "max_tokens": 800,
                "json_mode": False,
            })
            try:
                raw = await self._complete("refine.retry", strict)
            except UpstreamError as retry_error:
                logger.error(f"Refinement retry failed: {retry_error}")
                return []

        clusters = self._parse_refined(raw, {a.id for a in articles})
        if clusters:
            self.cache.set(cache_key, [c.model_dump(by_alias=True) for c in clusters], REFINE_TTL)
            logger.debug(f"Refined {len(articles)} articles into {len(clusters)} clusters")
        else:
            logger.debug("No clusters found, not caching empty refinement")
        return clusters

    def _parse_refined(self, raw: str, known_ids: set) -> List[RefinedCluster]:
        try:
            data = parse_json_object(raw)
        except MalformedResponseError as e:
            logger.warning(f"Failed to parse refinement response: {e}")
            return []

        items = data.get("clusters")
        if not isinstance(items, list):
            return []

        clusters = []
        for item in items:
            try:
                cluster = RefinedCluster.model_validate(item)
            except ValidationError:
                continue
            cluster.article_ids = [i for i in cluster.article_ids if i in known_ids]
            if cluster.is_valid:
                clusters.append(cluster)
        return clusters

    # ------------------------------------------------------------------
    # Semantic merge
    # ------------------------------------------------------------------

    def _cluster_brief(self, index: int, cluster: StoryCluster,
                       article_map: Dict[str, Article]) -> ClusterBrief:
        members = [article_map[i] for i in cluster.article_ids if i in article_map]
        dates = [a.published_at for a in members]
        date_range = f"{min(dates).isoformat()}–{max(dates).isoformat()}" if dates else ""
        return ClusterBrief(
            index=index,
            title=cluster.cluster_title,
            headlines=[f"{a.source.name}: {a.title}" for a in members[:MERGE_HEADLINES]],
            date_range=date_range,
            size=cluster.size,
        )

    async def merge_similar(self, clusters: Sequence[StoryCluster],
                            article_map: Dict[str, Article]) -> List[StoryCluster]:
        """
        Merge clusters the LLM judges to be the same event.

        Clusters not named in any group are kept unchanged. On any failure,
        rate limits included, the input clusters are returned.
        """
        if len(clusters) <= 1:
            return list(clusters)

        briefs = [self._cluster_brief(i, c, article_map) for i, c in enumerate(clusters)]
        cache_key = f"llm-merge-{fingerprint_ids(['|'.join(b.title for b in briefs)])}"
        cached_groups = self.cache.get(cache_key)
        if cached_groups is not None:
            return self._apply_groups(clusters, cached_groups)

        brief_dicts = [b.model_dump(by_alias=True) for b in briefs]
        request = CompletionRequest(
            op=Operation.MERGE,
            system="You return strict JSON only.",
            prompt=MERGE_PROMPT.format(briefs=json.dumps(brief_dicts)),
            payload={"clusters": brief_dicts},
            temperature=0.1,
            max_tokens=800,
            json_mode=True,
        )

        try:
            raw = await self._complete("merge", request)
            data = parse_json_object(raw)
        except (RateLimitedError, UpstreamError, MalformedResponseError) as e:
            logger.warning(f"LLM merge failed, returning original clusters: {e}")
            return list(clusters)

        groups = data.get("groups")
        if not isinstance(groups, list):
            groups = []
        merged = self._apply_groups(clusters, groups)
        # Index groups only; membership always comes from the current clusters
        self.cache.set(cache_key, groups, MERGE_TTL)
        if len(merged) < len(clusters):
            logger.info(f"LLM merge: {len(clusters)} -> {len(merged)} clusters")
        return merged

    def _apply_groups(self, clusters: Sequence[StoryCluster], groups: Any) -> List[StoryCluster]:
        if not isinstance(groups, list):
            groups = []

        used = set()
        merged: List[StoryCluster] = []
        for item in groups:
            try:
                group = MergeGroup.model_validate(item)
            except ValidationError:
                continue
            indices = [i for i in group.indices if 0 <= i < len(clusters) and i not in used]
            if not indices:
                continue
            used.update(indices)
            ids = [aid for i in indices for aid in clusters[i].article_ids]
            candidates = sorted((clusters[i].cluster_title for i in indices if clusters[i].cluster_title),
                                key=len, reverse=True)
            title = group.title or (candidates[0] if candidates else "Merged Event")
            merged.append(StoryCluster(cluster_title=title, article_ids=ids))

        merged.extend(c for i, c in enumerate(clusters) if i not in used)
        return merged

    # ------------------------------------------------------------------
    # Severity
    # ------------------------------------------------------------------

    async def assess_severity(self, cluster: StoryCluster) -> Severity:
        """LLM severity rating; ``Severity()`` (level 0, Other) on any failure."""
        articles = (cluster.articles or [])[:SEVERITY_SAMPLE]
        cache_key = f"sev-llm-{'-'.join(sorted(cluster.article_ids[:SEVERITY_KEY_IDS]))}"

        try:
            cached = self.cache.get(cache_key)
            if cached:
                return Severity.model_validate(cached)

            brief = {
                "title": cluster.cluster_title,
                "size": len(cluster.articles or []),
                "headlines": [
                    {
                        "source": a.source.name,
                        "title": a.title,
                        "desc": (a.description or "")[:200],
                        "date": a.published_at.isoformat(),
                    }
                    for a in articles
                ],
            }
            request = CompletionRequest(
                op=Operation.SEVERITY,
                system="Return valid JSON only.",
                prompt=SEVERITY_PROMPT.format(brief=json.dumps(brief)),
                payload=brief,
                temperature=0.1,
                max_tokens=200,
                json_mode=True,
            )
            raw = await self._complete("severity", request)
            assessment = SeverityAssessment.model_validate(parse_json_object(raw))
        except Exception as e:
            logger.warning(f"LLM severity failed, defaulting to Other: {e}")
            return Severity()

        severity = Severity(**assessment.model_dump())
        self.cache.set(cache_key, severity.model_dump(), SEVERITY_TTL)
        return severity

    # ------------------------------------------------------------------
    # Summaries
    # ------------------------------------------------------------------

    async def summarize(self, articles: Sequence[Article],
                        length: SummaryLength = SummaryLength.LONG) -> str:
        """
        One synthesized summary for articles covering the same event.

        Raises:
            RateLimitedError: when rate limited and summary fallback is off
        """
        length = SummaryLength(length)
        cache_key = f"cluster-summary-{fingerprint_ids(a.id for a in articles)}"
        cached = self.cache.get(cache_key)
        if cached:
            logger.debug("Returning cached cluster summary")
            return cached

        short = length == SummaryLength.SHORT
        sources = "--- \n".join(
            f"Source: {a.source.name}\nTitle: {a.title}\nSummary: {a.description}\n"
            f"Content: {a.content}\nPublished: {a.published_at.isoformat()}\nURL: {a.url}\n\n"
            for a in articles
        )
        request = CompletionRequest(
            op=Operation.SUMMARIZE,
            system="You are a senior news editor.",
            prompt=SUMMARY_PROMPT.format(
                shape="single-sentence" if short else "single, cohesive",
                length_rule=("- Exactly one sentence (18 to 30 words), neutral and precise." if short
                             else "- One paragraph, 4 to 6 sentences, neutral and precise."),
                sources=sources,
            ),
            payload={"articles": [_article_brief(a) for a in articles], "length": length.value},
            temperature=0.3 if short else 0.4,
            max_tokens=90 if short else 320,
        )

        try:
            summary = (await self._complete("summarize", request)).strip()
        except RateLimitedError:
            logger.warning("Rate limit during cluster summarization")
            if not self.settings.summary_fallback_on_limit:
                raise
            return title_fallback_summary(articles)
        except UpstreamError as e:
            logger.error(f"Error summarizing cluster: {e}")
            return SUMMARY_ERROR

        summary = summary or "Summary could not be generated."
        if short:
            summary = shorten_summary(summary)
        self.cache.set(cache_key, summary, SUMMARY_TTL)
        return summary
