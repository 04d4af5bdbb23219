"""
Unit tests for the status lifecycle.

Tests cover:
- Default visibility of queries
- Timestamp format
- Transition guard
"""

from datetime import datetime, timezone

import pytest

from catalogdb.errors import AlreadyDeleted, UnsupportedOperation
from catalogdb.lifecycle import (
    STATUS_DATE_KEY,
    STATUS_KEY,
    Status,
    any_status_query,
    check_transition,
    default_visibility,
    hidden_status_query,
    reject_remove,
    reject_restore,
    status_document,
    status_patch,
    timestamp,
)
from catalogdb.query.model import Query


class TestVisibility:
    """Tests for the default status constraint."""

    def test_adds_status_constraint(self):
        query = default_visibility(Query({"name": "ALL"}))
        assert query[STATUS_KEY] == "!=DELETED;!=REMOVED"

    def test_returns_new_query(self):
        original = Query({"name": "ALL"})
        default_visibility(original)
        assert STATUS_KEY not in original

    def test_keeps_explicit_status(self):
        query = Query({STATUS_KEY: "DELETED"})
        assert default_visibility(query) is query

    def test_hidden_and_any(self):
        assert hidden_status_query(Query())[STATUS_KEY] == "DELETED,REMOVED"
        assert any_status_query(Query())[STATUS_KEY] == "ACTIVE,DELETED,REMOVED"


class TestStatusWrites:
    """Tests for status documents and patches."""

    def test_timestamp_has_milliseconds(self):
        moment = datetime(2024, 3, 1, 12, 5, 9, 123456, tzinfo=timezone.utc)
        assert timestamp(moment) == "20240301120509123"

    def test_status_document(self):
        doc = status_document(Status.ACTIVE)
        assert doc["name"] == "ACTIVE"
        assert len(doc["date"]) == 17
        assert doc["message"] == ""

    def test_patch_sets_name_and_date_together(self):
        patch = status_patch(Status.DELETED, "obsolete")
        assert patch[STATUS_KEY] == "DELETED"
        assert len(patch[STATUS_DATE_KEY]) == 17
        assert patch["status.message"] == "obsolete"


class TestTransitions:
    """Tests for the transition guard."""

    def test_active_to_deleted(self):
        check_transition("Cohort", 7, "ACTIVE", Status.DELETED)

    @pytest.mark.parametrize("current", ["DELETED", "REMOVED"])
    def test_delete_twice(self, current):
        with pytest.raises(AlreadyDeleted) as exc_info:
            check_transition("Cohort", 7, current, Status.DELETED)
        assert exc_info.value.status == current
        assert str(exc_info.value) == f"The cohort {{7}} was already {current}"

    def test_restore_not_implemented(self):
        with pytest.raises(UnsupportedOperation):
            check_transition("Cohort", 7, "DELETED", Status.ACTIVE)

    def test_unknown_current_status(self):
        with pytest.raises(UnsupportedOperation):
            check_transition("Cohort", 7, "PENDING", Status.DELETED)

    def test_remove_and_restore_rejected(self):
        with pytest.raises(UnsupportedOperation):
            reject_remove("Cohort")
        with pytest.raises(UnsupportedOperation):
            reject_restore("Cohort")
