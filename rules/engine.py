"""
Rules Engine - Keyword matching for inbound messages
====================================================

This module implements the keyword rule set that decides whether an
incoming message is relayed. Matching is a case-insensitive substring
test, OR-ed across all keywords.
"""

from typing import Iterable, List, Optional, Tuple


def normalize_keywords(keywords: Optional[Iterable[str]]) -> List[str]:
    """
    Clean up a keyword collection.

    Keywords are trimmed, blanks are dropped, and duplicates are removed
    case-insensitively. The first spelling seen wins and the original
    order is kept.

    Args:
        keywords: Raw keywords (may be None)

    Returns:
        List of normalized keywords
    """
    if not keywords:
        return []

    if isinstance(keywords, str):
        keywords = [keywords]

    seen = set()
    result: List[str] = []
    for keyword in keywords:
        if keyword is None:
            continue
        cleaned = str(keyword).strip()
        if not cleaned:
            continue
        key = cleaned.lower()
        if key in seen:
            continue
        seen.add(key)
        result.append(cleaned)
    return result


class KeywordRuleSet:
    """
    Case-insensitive keyword rule set.

    A message matches when at least one keyword occurs anywhere in it.

    Example:
        rules = KeywordRuleSet(["urgent", "Bank"])

        keyword = rules.match("URGENT: call now")
        if keyword:
            print(keyword)  # "urgent"
    """

    def __init__(self, keywords: Optional[Iterable[str]] = None):
        self._keywords: Tuple[str, ...] = tuple(normalize_keywords(keywords))
        self._lowered: Tuple[str, ...] = tuple(k.lower() for k in self._keywords)

    @property
    def keywords(self) -> Tuple[str, ...]:
        """Normalized keywords in configured order."""
        return self._keywords

    def __len__(self) -> int:
        return len(self._keywords)

    def __bool__(self) -> bool:
        return bool(self._keywords)

    def __contains__(self, keyword: str) -> bool:
        return str(keyword).strip().lower() in self._lowered

    def match(self, text: str) -> Optional[str]:
        """
        Find the first keyword (in configured order) contained in text.

        Args:
            text: Message text to check

        Returns:
            The configured keyword if any is present, None otherwise
        """
        if not text:
            return None

        lowered = text.lower()
        for keyword, needle in zip(self._keywords, self._lowered):
            if needle in lowered:
                return keyword
        return None

    def __repr__(self) -> str:
        return f"KeywordRuleSet({list(self._keywords)!r})"
