"""
Unit tests for the filter compiler.

Tests cover:
- Default status visibility
- Strategy dispatch (direct, id alias, attribute maps, annotations)
- Annotation $elemMatch grouping and variable typing
- Rejection of unknown keys and mistyped values
"""

import pytest

from catalogdb.adaptors.cohort import COHORT_PARAMS
from catalogdb.directory import Variable, VariableType
from catalogdb.errors import InvalidQueryValue, UnknownQueryParam
from catalogdb.query.compiler import compile_filter, needs_variables, referenced_variable_set
from catalogdb.query.model import Query

VISIBLE = {"status.name": {"$nin": ["DELETED", "REMOVED"]}}

VARIABLES = {
    "age": Variable("age", VariableType.INTEGER),
    "phenotype": Variable("phenotype", VariableType.CATEGORICAL, ("cancer", "healthy")),
    "extra": Variable("extra", VariableType.OBJECT),
}


class TestStatusDefault:
    """Tests for default visibility."""

    def test_empty_query_hides_deleted(self):
        """An empty query selects only visible entities."""
        assert compile_filter(Query(), COHORT_PARAMS) == VISIBLE

    def test_default_added_after_caller_keys(self):
        flt = compile_filter(Query({"name": "ALL"}), COHORT_PARAMS)
        assert flt == {"$and": [{"name": {"$eq": "ALL"}}, VISIBLE]}

    def test_explicit_status_is_kept(self):
        """A status constraint replaces the default."""
        flt = compile_filter(Query({"status.name": "DELETED"}), COHORT_PARAMS)
        assert flt == {"status.name": {"$eq": "DELETED"}}

    def test_caller_query_not_mutated(self):
        query = Query({"name": "ALL"})
        compile_filter(query, COHORT_PARAMS)
        assert "status.name" not in query

    def test_plain_dict_accepted(self):
        raw = {"name": "ALL"}
        compile_filter(raw, COHORT_PARAMS)
        assert raw == {"name": "ALL"}


class TestStrategies:
    """Tests for each compiler strategy."""

    def test_id_alias(self):
        flt = compile_filter(Query({"id": 5, "status.name": "ACTIVE"}), COHORT_PARAMS)
        assert flt == {"$and": [{"_id": {"$eq": 5}}, {"status.name": {"$eq": "ACTIVE"}}]}

    def test_study_alias_list(self):
        flt = compile_filter(Query({"studyId": "1,2", "status.name": "ACTIVE"}), COHORT_PARAMS)
        assert flt["$and"][0] == {"_studyId": {"$in": [1, 2]}}

    def test_numeric_attributes(self):
        flt = compile_filter(Query({"nattributes.age": ">20"}), COHORT_PARAMS)
        assert flt == {"$and": [{"attributes.age": {"$gt": 20}}, VISIBLE]}

    def test_boolean_attributes(self):
        flt = compile_filter(Query({"battributes.flag": "true"}), COHORT_PARAMS)
        assert flt["$and"][0] == {"attributes.flag": {"$eq": True}}

    def test_string_attributes(self):
        """attributes.* compares as text even for digits."""
        flt = compile_filter(Query({"attributes.code": "5"}), COHORT_PARAMS)
        assert flt["$and"][0] == {"attributes.code": {"$eq": "5"}}

    def test_bare_attribute_map_rejected(self):
        with pytest.raises(InvalidQueryValue):
            compile_filter(Query({"attributes": "x"}), COHORT_PARAMS)

    def test_enum_value_checked(self):
        with pytest.raises(InvalidQueryValue):
            compile_filter(Query({"type": "NOT_A_TYPE"}), COHORT_PARAMS)

    def test_list_column(self):
        flt = compile_filter(Query({"samples": [3, 4]}), COHORT_PARAMS)
        assert flt["$and"][0] == {"samples": {"$in": [3, 4]}}

    def test_mistyped_integer(self):
        with pytest.raises(InvalidQueryValue):
            compile_filter(Query({"id": "abc"}), COHORT_PARAMS)


class TestUnknownKeys:
    """Tests for key resolution."""

    def test_unknown_key(self):
        with pytest.raises(UnknownQueryParam) as exc_info:
            compile_filter(Query({"colour": "red"}), COHORT_PARAMS)
        assert exc_info.value.key == "colour"

    def test_dotted_key_on_flat_param(self):
        """Only nested params accept sub-keys."""
        with pytest.raises(UnknownQueryParam):
            compile_filter(Query({"name.first": "x"}), COHORT_PARAMS)


class TestAnnotations:
    """Tests for annotation sub-queries."""

    def test_untyped_annotation(self):
        """Without a variable set, numeric operands compare numerically."""
        flt = compile_filter(Query({"annotation.age": ">40"}), COHORT_PARAMS)
        assert flt == {
            "$and": [
                VISIBLE,
                {"annotationSets": {"$elemMatch": {"annotations.age": {"$gt": 40}}}},
            ]
        }

    def test_annotation_predicates_share_one_elem_match(self):
        query = Query({"variableSetId": 3, "annotation.phenotype": "CANCER"})
        flt = compile_filter(query, COHORT_PARAMS, VARIABLES)
        assert flt == {
            "$and": [
                VISIBLE,
                {
                    "annotationSets": {
                        "$elemMatch": {
                            "$and": [
                                {"variableSetId": {"$eq": 3}},
                                {"annotations.phenotype": {"$eq": "cancer"}},
                            ]
                        }
                    }
                },
            ]
        }

    def test_annotation_set_id(self):
        flt = compile_filter(Query({"annotationSetId": "as1"}), COHORT_PARAMS)
        assert flt["$and"][1] == {"annotationSets": {"$elemMatch": {"id": {"$eq": "as1"}}}}

    def test_typed_annotation_rejects_bad_value(self):
        with pytest.raises(InvalidQueryValue):
            compile_filter(Query({"annotation.age": "old"}), COHORT_PARAMS, VARIABLES)

    def test_unknown_variable(self):
        with pytest.raises(InvalidQueryValue):
            compile_filter(Query({"annotation.height": "1"}), COHORT_PARAMS, VARIABLES)

    def test_unqueryable_variable(self):
        with pytest.raises(InvalidQueryValue):
            compile_filter(Query({"annotation.extra": "1"}), COHORT_PARAMS, VARIABLES)

    def test_bare_annotation_rejected(self):
        with pytest.raises(InvalidQueryValue):
            compile_filter(Query({"annotation": "1"}), COHORT_PARAMS)


class TestVariableSetReference:
    """Tests for variable set detection."""

    @pytest.mark.parametrize(
        "value,expected",
        [(3, 3), ("3", 3), (0, None), ("-1", None), ("abc", None), ("3,4", None), (True, None)],
    )
    def test_referenced_variable_set(self, value, expected):
        assert referenced_variable_set({"variableSetId": value}) == expected

    def test_missing_variable_set(self):
        assert referenced_variable_set({}) is None

    def test_needs_variables(self):
        assert needs_variables({"annotation.age": 1}, COHORT_PARAMS)
        assert not needs_variables({"name": "x", "variableSetId": 3}, COHORT_PARAMS)
