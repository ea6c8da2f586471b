from __future__ import annotations

from collections.abc import Iterable
from dataclasses import replace
from typing import Protocol

from tuberesolve.app.models.contracts import SearchResultItem

DEFAULT_SENSITIVE_TERMS: tuple[str, ...] = (
    "nsfw",
    "18+",
    "porn",
    "xxx",
    "sex",
    "nude",
    "naked",
    "boobs",
    "ass",
    "thicc",
    "hot girl",
    "bikini",
    "lingerie",
    "onlyfans",
    "dick",
    "cock",
    "pussy",
    "hentai",
    "ahegao",
    "gore",
    "death",
    "murder",
    "kill",
    "suicide",
    "strip",
    "stripper",
)


class Classifier(Protocol):
    def classify(self, text: str | None) -> bool:
        ...


class KeywordClassifier:
    """
    Substring match against a fixed term set, case-insensitive.

    Terms match as plain substrings, so "class" matches "ass".
    """

    def __init__(self, terms: Iterable[str] = DEFAULT_SENSITIVE_TERMS) -> None:
        normalized: list[str] = []
        seen: set[str] = set()
        for term in terms:
            lowered = term.strip().lower()
            if not lowered or lowered in seen:
                continue
            seen.add(lowered)
            normalized.append(lowered)
        self._terms: tuple[str, ...] = tuple(normalized)

    @property
    def terms(self) -> tuple[str, ...]:
        return self._terms

    def classify(self, text: str | None) -> bool:
        if not text or not self._terms:
            return False
        lowered = text.lower()
        return any(term in lowered for term in self._terms)


def annotate_items(
    items: Iterable[SearchResultItem],
    classifier: Classifier,
) -> tuple[SearchResultItem, ...]:
    annotated: list[SearchResultItem] = []
    for item in items:
        sensitive = classifier.classify(item.title)
        if not sensitive and item.kind == "channel":
            sensitive = classifier.classify(item.channel_title)
        annotated.append(replace(item, is_sensitive=sensitive))
    return tuple(annotated)
