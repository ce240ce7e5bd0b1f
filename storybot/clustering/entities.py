"""Heuristic named-entity extraction from headline text.

No word lists and no NLP model: an entity is anything that looks like a
proper noun by capitalization.

1. Runs of capitalized words become compounds ("White House" -> white_house)
2. Capitalized words not starting a sentence ("...talks with Russia")
3. Acronyms of 2-6 capitals ("NATO", "FBI")
4. Capitalized word followed by a number ("Paris 2024" -> paris_2024)
"""

import re
from typing import Dict, Optional, Set

from storybot.core.models import Article, StoryCluster

COMPOUND_PATTERN = re.compile(r"[A-Z][a-zA-Z'’]*(?:\s+[A-Z][a-zA-Z'’]*)+")
CAPITALIZED_WORD = re.compile(r"[A-Z][a-zA-Z'’]*")
SENTENCE_BREAK = re.compile(r"[.!?]\s+")
ACRONYM_PATTERN = re.compile(r"\b[A-Z]{2,6}\b")
NAMED_EVENT_PATTERN = re.compile(r"[A-Z][a-zA-Z]*\s*\d{2,4}")
APOSTROPHES = re.compile(r"['’]")
WHITESPACE = re.compile(r"\s+")

MIN_WORD_LENGTH = 3
CLUSTER_TITLE_SAMPLE = 10


def extract_entities(text: Optional[str]) -> Set[str]:
    """Extract lowercase entity keys from free text."""
    entities: Set[str] = set()
    if not text:
        return entities

    for compound in COMPOUND_PATTERN.findall(text):
        key = WHITESPACE.sub('_', compound.lower())
        entities.add(APOSTROPHES.sub('', key))

    for sentence in SENTENCE_BREAK.split(text):
        for position, word in enumerate(sentence.split()):
            # Sentence-initial capitals are grammar, not names
            if position == 0:
                continue
            if len(word) >= MIN_WORD_LENGTH and CAPITALIZED_WORD.fullmatch(word):
                entities.add(APOSTROPHES.sub('', word.lower()))

    for acronym in ACRONYM_PATTERN.findall(text):
        entities.add(acronym.lower())

    for event in NAMED_EVENT_PATTERN.findall(text):
        entities.add(WHITESPACE.sub('_', event.lower()))

    return entities


def extract_cluster_entities(cluster: StoryCluster,
                             article_map: Optional[Dict[str, Article]] = None) -> Set[str]:
    """
    Entities of a cluster: its title plus the titles of its first members.

    Titles are joined with ". " so each one is its own sentence and only its
    first word is skipped.
    """
    parts = [cluster.cluster_title or '']
    if article_map:
        for article_id in cluster.article_ids[:CLUSTER_TITLE_SAMPLE]:
            article = article_map.get(article_id)
            if article is not None and article.title:
                parts.append(article.title)
    return extract_entities('. '.join(parts))
