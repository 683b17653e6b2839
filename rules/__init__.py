"""
Rules Module - Keyword rule set
===============================

This module provides the keyword rules that decide which incoming
messages get forwarded:
- Keyword normalization (trim, drop blanks, case-insensitive dedup)
- Case-insensitive substring matching
"""

from .engine import KeywordRuleSet, normalize_keywords

__all__ = [
    "KeywordRuleSet",
    "normalize_keywords",
]
