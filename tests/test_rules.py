"""
Test Rules Engine Module
=======================

Unit tests for keyword normalization and matching.
"""

import pytest
from pathlib import Path
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from rules.engine import KeywordRuleSet, normalize_keywords


class TestNormalizeKeywords:
    """Tests for normalize_keywords()."""

    def test_none_and_empty(self):
        assert normalize_keywords(None) == []
        assert normalize_keywords([]) == []

    def test_trims_and_drops_blanks(self):
        assert normalize_keywords(["  urgent ", "", "   ", None]) == ["urgent"]

    def test_case_insensitive_dedup_keeps_first(self):
        assert normalize_keywords(["Urgent", "URGENT", "bank", "urgent"]) == ["Urgent", "bank"]

    def test_single_string(self):
        assert normalize_keywords("urgent") == ["urgent"]


class TestKeywordRuleSet:
    """Tests for KeywordRuleSet."""

    def test_contains_match(self):
        rules = KeywordRuleSet(["urgent"])
        assert rules.match("this is urgent, call me") == "urgent"

    def test_case_insensitive_keyword(self):
        """Keyword 'Urgent' matches body 'this is urgent'."""
        rules = KeywordRuleSet(["Urgent"])
        assert rules.match("this is urgent") == "Urgent"

    def test_case_insensitive_body(self):
        rules = KeywordRuleSet(["urgent"])
        assert rules.match("URGENT: call now") is not None

    def test_no_match(self):
        rules = KeywordRuleSet(["urgent", "bank"])
        assert rules.match("hello there") is None

    def test_any_keyword_is_enough(self):
        rules = KeywordRuleSet(["bank", "otp", "urgent"])
        assert rules.match("Your OTP is 1234") == "otp"

    def test_first_configured_keyword_reported(self):
        rules = KeywordRuleSet(["code", "otp"])
        assert rules.match("otp code 1234") == "code"

    def test_substring_inside_word(self):
        rules = KeywordRuleSet(["card"])
        assert rules.match("Your cardholder statement") == "card"

    def test_empty_text(self):
        rules = KeywordRuleSet(["urgent"])
        assert rules.match("") is None
        assert rules.match(None) is None

    def test_empty_rule_set(self):
        rules = KeywordRuleSet([])
        assert not rules
        assert len(rules) == 0
        assert rules.match("anything") is None

    def test_keywords_normalized(self):
        rules = KeywordRuleSet([" Bank ", "bank", ""])
        assert rules.keywords == ("Bank",)
        assert "BANK" in rules
        assert "otp" not in rules

    def test_non_ascii_keyword(self):
        rules = KeywordRuleSet(["긴급"])
        assert rules.match("[알림] 긴급 연락 바랍니다") is not None
