"""Tests for the reconciliation engine."""

import json
from unittest.mock import patch

from models import ChangeType
from services.reconciliation_service import (
    ReconciliationEngine,
    compare_fields,
    expected_target_fields,
    source_display_name,
    source_surname,
)
from tests.fixtures.mocks import source_user, target_user


def _by_type(result, change_type):
    return [c for c in result.candidates if c.change_type == change_type]


class TestOrphanDetection:
    def test_single_orphan(self):
        source = [source_user("alice", "a@x.com", "Alice A")]
        target = [target_user("bob", "b@x.com", "Bob B")]

        result = ReconciliationEngine().detect(source, target)

        assert len(result.candidates) == 1
        orphan = result.candidates[0]
        assert orphan.change_type == ChangeType.ORPHAN
        assert orphan.entity_type == "user"
        assert orphan.entity_id == "bob"
        assert orphan.source_value is None
        assert json.loads(orphan.target_value)["mail"] == "b@x.com"
        assert orphan.metadata["dn"] == "uid=bob,ou=people,dc=example,dc=com"

    def test_one_orphan_per_missing_identifier(self):
        source = [source_user("alice", "a@x.com"), source_user("bob", "b@x.com")]
        target = [
            target_user("alice", "a@x.com"),
            target_user("bob", "b@x.com"),
            target_user("carol"),
            target_user("erin"),
        ]

        result = ReconciliationEngine().detect(source, target)

        orphans = _by_type(result, ChangeType.ORPHAN)
        assert sorted(o.entity_id for o in orphans) == ["carol", "erin"]

    def test_no_orphans_when_rosters_match(self):
        source = [source_user("alice", "a@x.com", "Alice A")]
        target = [target_user("alice", "a@x.com", "Alice A", "A")]

        result = ReconciliationEngine().detect(source, target)

        assert result.candidates == []


class TestFieldMismatchDetection:
    def test_email_mismatch(self):
        source = [source_user("carol", "c@x.com", "Carol C")]
        target = [target_user("carol", "old@x.com", "Carol C")]

        result = ReconciliationEngine().detect(source, target)

        assert len(result.candidates) == 1
        mismatch = result.candidates[0]
        assert mismatch.change_type == ChangeType.FIELD_MISMATCH
        assert mismatch.entity_id == "carol"
        assert mismatch.field_name == "email"
        assert mismatch.source_value == "c@x.com"
        assert mismatch.target_value == "old@x.com"

    def test_name_and_surname_mismatch(self):
        source = [source_user("carol", "c@x.com", "Carol Clark")]
        target = [target_user("carol", "c@x.com", "Carol Smith", "Smith")]

        result = ReconciliationEngine().detect(source, target)

        fields = {c.field_name: c for c in result.candidates}
        assert set(fields) == {"name", "sn"}
        assert fields["name"].source_value == "Carol Clark"
        assert fields["sn"].source_value == "Clark"
        assert fields["sn"].target_value == "Smith"

    def test_comparison_is_case_sensitive(self):
        source = [source_user("carol", "Carol@x.com", "Carol C")]
        target = [target_user("carol", "carol@x.com", "Carol C")]

        result = ReconciliationEngine().detect(source, target)

        assert [c.field_name for c in result.candidates] == ["email"]

    def test_email_skipped_when_either_side_empty(self):
        source = [
            source_user("carol", None, "Carol C"),
            source_user("dan", "d@x.com", "Dan D"),
        ]
        target = [target_user("carol", "c@x.com", "Carol C"), target_user("dan", None, "Dan D")]

        result = ReconciliationEngine().detect(source, target)

        assert result.candidates == []

    def test_display_name_falls_back_to_identifier(self):
        source = [source_user("carol", "c@x.com", None)]
        target = [target_user("carol", "c@x.com", "Carol C", "C")]

        result = ReconciliationEngine().detect(source, target)

        fields = {c.field_name: c for c in result.candidates}
        assert fields["name"].source_value == "carol"
        assert fields["sn"].source_value == "carol"

    def test_unprovisioned_user_is_not_a_mismatch(self):
        source = [source_user("carol", "c@x.com", "Carol C")]

        result = ReconciliationEngine().detect(source, [])

        assert result.candidates == []


class TestInactiveUserDetection:
    def test_user_without_credential(self):
        source = [source_user("dave", "d@x.com", "Dave D", has_credential=False)]

        result = ReconciliationEngine().detect(source, [])

        assert len(result.candidates) == 1
        inactive = result.candidates[0]
        assert inactive.change_type == ChangeType.INACTIVE_USER
        assert inactive.entity_id == "dave"
        assert inactive.field_name is None
        assert inactive.target_value is None
        assert inactive.metadata["email"] == "d@x.com"
        assert "password" in inactive.metadata["reason"].lower()

    def test_user_with_credential_is_not_inactive(self):
        source = [source_user("alice", "a@x.com", "Alice A")]

        result = ReconciliationEngine().detect(source, [])

        assert _by_type(result, ChangeType.INACTIVE_USER) == []


class TestDetectorIsolation:
    def test_failing_detector_does_not_suppress_others(self):
        source = [
            source_user("alice", "a@x.com", "Alice A"),
            source_user("dave", "d@x.com", "Dave D", has_credential=False),
        ]
        target = [target_user("bob", "b@x.com", "Bob B")]

        with patch.object(
            ReconciliationEngine, "detect_field_mismatches", side_effect=RuntimeError("boom")
        ):
            result = ReconciliationEngine().detect(source, target)

        assert len(result.errors) == 1
        assert result.errors[0].detector == "field_mismatches"
        assert result.errors[0].message == "boom"
        assert result.summary() == {"orphans": 1, "mismatches": 0, "inactive": 1, "total": 2}

    def test_detect_is_deterministic(self):
        source = [source_user("carol", "c@x.com", "Carol C"), source_user("dave", has_credential=False)]
        target = [target_user("carol", "old@x.com", "Carol C"), target_user("bob")]

        first = ReconciliationEngine().detect(source, target)
        second = ReconciliationEngine().detect(source, target)

        assert [c.key for c in first.candidates] == [c.key for c in second.candidates]


class TestFieldHelpers:
    def test_surname_is_last_token(self):
        assert source_surname(source_user("x", display_name="Mary Jane Watson")) == "Watson"

    def test_blank_display_name_uses_identifier(self):
        user = source_user("x", display_name="   ")
        assert source_display_name(user) == "x"
        assert source_surname(user) == "x"

    def test_expected_fields(self):
        user = source_user("alice", "a@x.com", "Alice Anders")
        assert expected_target_fields(user) == {
            "email": "a@x.com",
            "name": "Alice Anders",
            "sn": "Anders",
        }

    def test_compare_fields_ignores_missing_target_values(self):
        user = source_user("alice", "a@x.com", "Alice Anders")
        assert compare_fields(user, target_user("alice")) == []
