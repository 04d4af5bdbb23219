"""
Unit tests for permission tokens and entries.

Tests cover:
- Permission validation and ordering
- PermissionEntry serialization
"""

import pytest

from catalogdb.acl import PermissionEntry, normalize_permissions
from catalogdb.adaptors.cohort import CohortPermission
from catalogdb.errors import InvalidPermission


class TestNormalizePermissions:
    """Tests for permission normalization."""

    def test_declaration_order(self):
        """Order of the request does not matter."""
        assert normalize_permissions(["UPDATE", "VIEW"], CohortPermission) == ["VIEW", "UPDATE"]

    def test_case_insensitive(self):
        assert normalize_permissions(["view", " share "], CohortPermission) == ["VIEW", "SHARE"]

    def test_enum_members(self):
        assert normalize_permissions([CohortPermission.DELETE], CohortPermission) == ["DELETE"]

    def test_duplicates_collapse(self):
        assert normalize_permissions(["VIEW", "view"], CohortPermission) == ["VIEW"]

    def test_unknown_permission(self):
        with pytest.raises(InvalidPermission) as exc_info:
            normalize_permissions(["ADMIN"], CohortPermission)
        assert exc_info.value.token == "ADMIN"
        assert "VIEW" in exc_info.value.allowed

    def test_empty_set_allowed(self):
        assert normalize_permissions([], CohortPermission) == []


class TestPermissionEntry:
    """Tests for PermissionEntry."""

    def test_to_dict(self):
        entry = PermissionEntry(("VIEW",), ("alice", "@team"))
        assert entry.to_dict() == {"permissions": ["VIEW"], "members": ["alice", "@team"]}

    def test_from_dict(self):
        entry = PermissionEntry.from_dict({"permissions": ["VIEW"], "members": ["bob"]})
        assert entry == PermissionEntry(("VIEW",), ("bob",))

    def test_from_partial_dict(self):
        assert PermissionEntry.from_dict({}) == PermissionEntry((), ())
