"""
Unit tests for the document matcher.

Tests cover:
- Filter evaluation, including array "any element" semantics
- Update operators and the positional "$" segment
- Projections
- Aggregation pipeline stages
"""

import pytest

from catalogdb.store.base import StoreError
from catalogdb.store.matcher import (
    apply_update,
    check_filter,
    distinct_values,
    matches,
    project,
    run_pipeline,
    sort_documents,
)


class TestMatches:
    """Tests for filter evaluation."""

    def test_empty_filter_matches(self):
        assert matches({"a": 1}, {})

    def test_nested_path(self):
        doc = {"status": {"name": "ACTIVE"}}
        assert matches(doc, {"status.name": {"$eq": "ACTIVE"}})
        assert not matches(doc, {"status.name": {"$nin": ["ACTIVE"]}})

    def test_array_in(self):
        assert matches({"samples": [1, 2]}, {"samples": {"$in": [2, 5]}})

    def test_array_nin_means_no_element(self):
        assert not matches({"samples": [1, 2]}, {"samples": {"$nin": [2]}})
        assert matches({"samples": [1, 2]}, {"samples": {"$nin": [3]}})

    def test_missing_field_ne(self):
        assert matches({}, {"a": {"$ne": 1}})

    def test_numbers_do_not_compare_with_strings(self):
        assert not matches({"a": "5"}, {"a": {"$gt": 1}})

    def test_booleans_are_not_numbers(self):
        assert not matches({"a": True}, {"a": 1})

    def test_regex(self):
        assert matches({"name": "COHORT_A"}, {"name": {"$regex": "^CO"}})
        assert not matches({"name": "A_COHORT"}, {"name": {"$regex": "^CO"}})

    def test_or_and(self):
        doc = {"a": 1, "b": 2}
        assert matches(doc, {"$or": [{"a": 5}, {"b": 2}]})
        assert not matches(doc, {"$and": [{"a": 1}, {"b": 3}]})

    def test_elem_match_with_nested_and(self):
        """Conditions in one $elemMatch must hold within a single element."""
        doc = {
            "annotationSets": [
                {"variableSetId": 3, "annotations": {"age": 45}},
                {"variableSetId": 4, "annotations": {"age": 10}},
            ]
        }

        def flt(variable_set_id):
            return {
                "annotationSets": {
                    "$elemMatch": {
                        "$and": [
                            {"variableSetId": {"$eq": variable_set_id}},
                            {"annotations.age": {"$gt": 40}},
                        ]
                    }
                }
            }

        assert matches(doc, flt(3))
        assert not matches(doc, flt(4))

    def test_check_filter_rejects_unknown_operator(self):
        with pytest.raises(StoreError):
            check_filter({"a": {"$near": 1}})
        with pytest.raises(StoreError):
            check_filter({"$where": "1"})

    def test_check_filter_accepts_nested_and(self):
        check_filter({"acls": {"$elemMatch": {"$and": [{"members": "a"}]}}})


class TestApplyUpdate:
    """Tests for update operators."""

    def test_set_creates_path(self):
        assert apply_update({"_id": 1}, {"$set": {"status.name": "DELETED"}}) == {
            "_id": 1,
            "status": {"name": "DELETED"},
        }

    def test_original_not_mutated(self):
        doc = {"_id": 1, "name": "a"}
        apply_update(doc, {"$set": {"name": "b"}})
        assert doc["name"] == "a"

    def test_id_is_immutable(self):
        with pytest.raises(StoreError):
            apply_update({"_id": 1}, {"$set": {"_id": 2}})

    def test_push_and_add_to_set(self):
        doc = apply_update({"_id": 1, "tags": ["a"]}, {"$addToSet": {"tags": {"$each": ["a", "b"]}}})
        assert doc["tags"] == ["a", "b"]
        doc = apply_update(doc, {"$push": {"tags": "a"}})
        assert doc["tags"] == ["a", "b", "a"]

    def test_pull_by_subdocument(self):
        doc = {"_id": 1, "acls": [{"members": []}, {"members": ["a"]}]}
        updated = apply_update(doc, {"$pull": {"acls": {"members": []}}})
        assert updated["acls"] == [{"members": ["a"]}]

    def test_positional_pull(self):
        doc = {
            "_id": 1,
            "acls": [
                {"permissions": ["VIEW"], "members": ["a"]},
                {"permissions": ["UPDATE"], "members": ["b", "c"]},
            ],
        }
        flt = {"$and": [{"_id": 1}, {"acls": {"$elemMatch": {"members": "b"}}}]}
        updated = apply_update(doc, {"$pull": {"acls.$.members": "b"}}, flt)
        assert updated["acls"][1]["members"] == ["c"]
        assert updated["acls"][0]["members"] == ["a"]

    def test_positional_without_condition(self):
        with pytest.raises(StoreError):
            apply_update({"_id": 1, "acls": [{"members": []}]}, {"$push": {"acls.$.members": "x"}}, {})

    def test_unknown_operator(self):
        with pytest.raises(StoreError):
            apply_update({"_id": 1}, {"$rename": {"a": "b"}})


class TestProject:
    """Tests for projections."""

    DOC = {"_id": 7, "name": "ALL", "status": {"name": "ACTIVE", "date": "2024"}, "acls": []}

    def test_include(self):
        assert project(self.DOC, {"name": 1}) == {"_id": 7, "name": "ALL"}

    def test_include_only_id(self):
        assert project(self.DOC, {"_id": 1}) == {"_id": 7}

    def test_include_nested(self):
        assert project(self.DOC, {"status.name": 1}) == {"_id": 7, "status": {"name": "ACTIVE"}}

    def test_exclude(self):
        assert project(self.DOC, {"acls": 0, "status.date": 0}) == {
            "_id": 7,
            "name": "ALL",
            "status": {"name": "ACTIVE"},
        }


class TestPipeline:
    """Tests for aggregation stages."""

    DOCS = [
        {"_id": 1, "type": "FAMILY", "samples": [1, 2]},
        {"_id": 2, "type": "TRIO", "samples": [2]},
        {"_id": 3, "type": "FAMILY", "samples": []},
    ]

    def test_unwind_group_sort(self):
        ranked = run_pipeline(
            self.DOCS,
            [
                {"$unwind": "$samples"},
                {"$group": {"_id": "$samples", "count": {"$sum": 1}}},
                {"$sort": {"count": -1}},
            ],
        )
        assert ranked == [{"_id": 2, "count": 2}, {"_id": 1, "count": 1}]

    def test_group_by_document_key(self):
        groups = run_pipeline(
            self.DOCS,
            [{"$group": {"_id": {"type": "$type"}, "count": {"$sum": 1}, "ids": {"$push": "$_id"}}}],
        )
        assert {"_id": {"type": "FAMILY"}, "count": 2, "ids": [1, 3]} in groups

    def test_match_skip_limit_count(self):
        result = run_pipeline(self.DOCS, [{"$match": {"type": "FAMILY"}}, {"$skip": 1}, {"$count": "n"}])
        assert result == [{"n": 1}]

    def test_unknown_stage(self):
        with pytest.raises(StoreError):
            run_pipeline(self.DOCS, [{"$lookup": {}}])

    def test_distinct_flattens_lists(self):
        assert distinct_values(self.DOCS, "samples") == [1, 2]

    def test_sort_missing_first(self):
        ordered = sort_documents([{"_id": 1, "a": 2}, {"_id": 2}], [("a", 1)])
        assert [d["_id"] for d in ordered] == [2, 1]
