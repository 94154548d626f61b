"""
Tests for duplicate-submission rules.

Tests cover:
- Rule loading from positional and named rows
- Key normalization (dates, lists, case)
- Policy handling (reject, ignore, merge)
- Localized messages
"""

from datetime import date, datetime

from formdesk.dedup import (
    DEFAULT_MESSAGE,
    ExistingRecord,
    compute_signature,
    evaluate,
    find_conflict,
    load_dedup_rules,
    normalize_key_value,
    resolve_message,
)
from formdesk.models import ConflictPolicy, DedupRule, MatchMode


def rule(**kwargs) -> DedupRule:
    defaults = {"id": "r1", "keys": ["A", "B"]}
    defaults.update(kwargs)
    return DedupRule(**defaults)


class TestLoadRules:
    """Configuration rows to DedupRule."""

    def test_positional_row(self):
        rules = load_dedup_rules([["unique", "form", "NAME, DATE", "caseInsensitive", "ignore", "Dup!"]])
        assert len(rules) == 1
        assert rules[0].keys == ["NAME", "DATE"]
        assert rules[0].match_mode == MatchMode.CASE_INSENSITIVE
        assert rules[0].on_conflict == ConflictPolicy.IGNORE
        assert rules[0].message == "Dup!"

    def test_named_row_with_key_list(self):
        rules = load_dedup_rules([{"id": "k", "keys": ["A", " ", "B"], "match_mode": "exact"}])
        assert rules[0].keys == ["A", "B"]
        assert rules[0].scope == "form"

    def test_blank_ids_skipped(self):
        assert load_dedup_rules([["", "form", "A"], {"keys": "A"}]) == []

    def test_unknown_values_fall_back(self):
        rules = load_dedup_rules([{"id": "k", "keys": "A", "match_mode": "fuzzy", "on_conflict": "explode"}])
        assert rules[0].match_mode == MatchMode.EXACT
        assert rules[0].on_conflict == ConflictPolicy.REJECT

    def test_json_message_parsed(self):
        rules = load_dedup_rules([{"id": "k", "keys": "A", "message": '{"en": "Dup", "fr": "Doublon"}'}])
        assert rules[0].message == {"en": "Dup", "fr": "Doublon"}


class TestNormalization:
    """Composite key construction."""

    def test_dates_normalized(self):
        assert normalize_key_value(datetime(2024, 3, 5, 14, 30)) == "2024-03-05"
        assert normalize_key_value(date(2024, 3, 5)) == "2024-03-05"

    def test_lists_joined_and_trimmed(self):
        assert normalize_key_value([" a ", "b"]) == "a|b"

    def test_case_insensitive_lowercases(self):
        assert normalize_key_value(" Soup ", MatchMode.CASE_INSENSITIVE) == "soup"
        assert normalize_key_value(" Soup ", MatchMode.EXACT) == "Soup"

    def test_signature_none_when_any_part_empty(self):
        assert compute_signature(rule(), {"A": "x", "B": ""}) is None
        assert compute_signature(rule(), {"A": "x"}) is None
        assert compute_signature(rule(keys=[]), {"A": "x"}) is None
        assert compute_signature(rule(), {"A": "x", "B": 2}) == "x||2"


class TestFindConflict:
    """Rule evaluation against existing records."""

    def test_exact_conflict_on_new_id(self):
        existing = [ExistingRecord(id="old", values={"A": "x", "B": "y"}, row_number=2)]
        conflict = find_conflict([rule()], ExistingRecord(id="new", values={"A": "x", "B": "y"}), existing)

        assert conflict is not None
        assert conflict.rule_id == "r1"
        assert conflict.existing_record_id == "old"
        assert conflict.existing_row_number == 2
        assert conflict.message == DEFAULT_MESSAGE

    def test_exact_mode_is_case_sensitive(self):
        existing = [ExistingRecord(id="old", values={"A": "Soup", "B": "y"})]
        assert find_conflict([rule()], ExistingRecord(id="new", values={"A": "soup", "B": "y"}), existing) is None

    def test_case_insensitive_collides(self):
        existing = [ExistingRecord(id="old", values={"A": "Soup", "B": "y"})]
        candidate = ExistingRecord(id="new", values={"A": "soup", "B": "Y"})
        conflict = find_conflict([rule(match_mode=MatchMode.CASE_INSENSITIVE)], candidate, existing)
        assert conflict is not None

    def test_self_update_never_conflicts(self):
        existing = [ExistingRecord(id="same", values={"A": "x", "B": "y"})]
        assert find_conflict([rule()], ExistingRecord(id="same", values={"A": "x", "B": "y"}), existing) is None

    def test_existing_with_empty_part_skipped(self):
        existing = [ExistingRecord(id="old", values={"A": "x", "B": ""})]
        assert find_conflict([rule()], ExistingRecord(id="new", values={"A": "x", "B": "y"}), existing) is None
        assert find_conflict([rule(keys=["A"])], ExistingRecord(id="new", values={"A": "x"}), existing) is not None

    def test_candidate_with_empty_part_skips_rule(self):
        existing = [ExistingRecord(id="old", values={"A": "x", "B": ""})]
        assert find_conflict([rule()], ExistingRecord(id="new", values={"A": "x", "B": " "}), existing) is None

    def test_ignore_stops_checking(self):
        rules = [
            rule(id="soft", keys=["A"], on_conflict=ConflictPolicy.IGNORE),
            rule(id="hard", keys=["A"]),
        ]
        existing = [ExistingRecord(id="old", values={"A": "x"})]
        assert find_conflict(rules, ExistingRecord(id="new", values={"A": "x"}), existing) is None

    def test_merge_behaves_as_reject(self):
        rules = [rule(keys=["A"], on_conflict=ConflictPolicy.MERGE)]
        existing = [ExistingRecord(id="old", values={"A": "x"})]
        assert find_conflict(rules, ExistingRecord(id="new", values={"A": "x"}), existing) is not None

    def test_rules_checked_in_order(self):
        rules = [rule(id="first", keys=["A"]), rule(id="second", keys=["B"])]
        existing = [ExistingRecord(id="old", values={"A": "x", "B": "y"})]
        conflict = find_conflict(rules, ExistingRecord(id="new", values={"A": "x", "B": "y"}), existing)
        assert conflict.rule_id == "first"

    def test_no_rules(self):
        assert find_conflict(None, ExistingRecord(values={"A": "x"}), []) is None


class TestMessages:
    """Localized conflict messages."""

    def test_language_then_english(self):
        message = {"en": "Duplicate", "fr": "Doublon"}
        assert resolve_message(message, "FR") == "Doublon"
        assert resolve_message(message, "NL") == "Duplicate"

    def test_json_text_message(self):
        assert resolve_message('{"EN": "Dup", "NL": "Dubbel"}', "nl") == "Dubbel"

    def test_default_message(self):
        assert resolve_message(None) == DEFAULT_MESSAGE
        assert resolve_message({"de": "Doppelt"}, "FR") == DEFAULT_MESSAGE

    def test_evaluate_returns_message(self):
        rules = [rule(keys=["A"], message={"en": "Taken", "fr": "Pris"})]
        existing = [ExistingRecord(id="old", values={"A": "x"})]
        assert evaluate(rules, ExistingRecord(id="new", values={"A": "x"}), existing, "FR") == "Pris"
