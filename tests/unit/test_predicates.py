"""
Unit tests for query value expression parsing.

Tests cover:
- Splitting on "," (OR) and ";" (AND)
- Operator prefixes and malformed operators
- Typed conversion of operands
- Partial date expansion
"""

import pytest

from catalogdb.errors import InvalidQueryValue
from catalogdb.query.params import ValueKind
from catalogdb.query.predicates import (
    branch_predicate,
    build_predicate,
    convert,
    date_range,
    infer_kind,
    split_operator,
    split_value,
)


class TestSplitValue:
    """Tests for list splitting."""

    def test_single_value(self):
        """A plain value is one group with one branch."""
        assert split_value("name", "ALL") == [["ALL"]]

    def test_comma_is_or(self):
        """Comma separates OR branches."""
        assert split_value("name", "A,B") == [["A", "B"]]

    def test_semicolon_is_and(self):
        """Semicolon separates AND groups; comma binds tighter."""
        assert split_value("name", "A,B;C") == [["A", "B"], ["C"]]

    def test_list_value(self):
        """A list is one OR group."""
        assert split_value("samples", [1, 2]) == [["1", "2"]]

    def test_regex_not_split(self):
        """Regex expressions keep their commas and semicolons."""
        assert split_value("name", "~^a{1,3}$") == [["~^a{1,3}$"]]
        assert split_value("name", " ~a;b ") == [["~a;b"]]

    def test_empty_element_rejected(self):
        """Empty elements are rejected."""
        with pytest.raises(InvalidQueryValue):
            split_value("name", "A,,B")

    def test_empty_list_rejected(self):
        """An empty list is rejected."""
        with pytest.raises(InvalidQueryValue):
            split_value("samples", [])

    def test_unsupported_type_rejected(self):
        """Dicts are not query values."""
        with pytest.raises(InvalidQueryValue):
            split_value("name", {"a": 1})


class TestSplitOperator:
    """Tests for operator prefixes."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("5", ("=", "5")),
            ("=5", ("=", "5")),
            ("!=5", ("!=", "5")),
            (">5", (">", "5")),
            (">=5", (">=", "5")),
            ("<5", ("<", "5")),
            ("<=5", ("<=", "5")),
            ("~^AB", ("~", "^AB")),
        ],
    )
    def test_operators(self, text, expected):
        """Each operator prefix is recognized."""
        assert split_operator("k", text) == expected

    @pytest.mark.parametrize("text", ["=>5", "<>5", ">", "!=", "<==3"])
    def test_malformed(self, text):
        """Malformed or operand-less expressions are rejected."""
        with pytest.raises(InvalidQueryValue):
            split_operator("k", text)


class TestConvert:
    """Tests for operand typing."""

    def test_integer(self):
        assert convert("k", "42", ValueKind.INTEGER) == 42

    def test_integer_rejects_text(self):
        with pytest.raises(InvalidQueryValue):
            convert("k", "forty", ValueKind.INTEGER)

    def test_decimal(self):
        assert convert("k", "2.5", ValueKind.DECIMAL) == 2.5
        assert convert("k", "20", ValueKind.DECIMAL) == 20

    def test_decimal_rejects_nan(self):
        with pytest.raises(InvalidQueryValue):
            convert("k", "nan", ValueKind.DECIMAL)

    def test_boolean(self):
        assert convert("k", "TRUE", ValueKind.BOOLEAN) is True
        assert convert("k", "false", ValueKind.BOOLEAN) is False

    def test_enum_is_case_insensitive(self):
        """Enum operands normalize to the declared spelling."""
        assert convert("k", "family", ValueKind.ENUM, ("FAMILY", "TRIO")) == "FAMILY"

    def test_enum_rejects_unknown(self):
        with pytest.raises(InvalidQueryValue):
            convert("k", "BOGUS", ValueKind.ENUM, ("FAMILY", "TRIO"))

    def test_infer_kind(self):
        """Untyped operands are numeric when they parse as numbers."""
        assert infer_kind("12") == ValueKind.INTEGER
        assert infer_kind("1.5") == ValueKind.DECIMAL
        assert infer_kind("true") == ValueKind.BOOLEAN
        assert infer_kind("cancer") == ValueKind.STRING


class TestDates:
    """Tests for partial date expansion."""

    def test_year(self):
        assert date_range("d", "2016") == ("20160101000000", "20170101000000")

    def test_december_rolls_over(self):
        assert date_range("d", "201612") == ("20161201000000", "20170101000000")

    def test_day(self):
        assert date_range("d", "20160229") == ("20160229000000", "20160301000000")

    def test_second(self):
        assert date_range("d", "20160101235959") == ("20160101235959", "20160102000000")

    def test_bad_length(self):
        with pytest.raises(InvalidQueryValue):
            date_range("d", "20161")

    def test_bad_calendar_date(self):
        with pytest.raises(InvalidQueryValue):
            date_range("d", "20161301")

    def test_equality_is_half_open_range(self):
        predicate = branch_predicate("creationDate", "creationDate", "2016", ValueKind.DATE)
        assert predicate == {"creationDate": {"$gte": "20160101000000", "$lt": "20170101000000"}}

    def test_greater_than_starts_after_range(self):
        predicate = branch_predicate("creationDate", "creationDate", ">2016", ValueKind.DATE)
        assert predicate == {"creationDate": {"$gte": "20170101000000"}}

    def test_not_equal_is_outside_range(self):
        predicate = branch_predicate("creationDate", "creationDate", "!=2016", ValueKind.DATE)
        assert predicate == {
            "$or": [
                {"creationDate": {"$lt": "20160101000000"}},
                {"creationDate": {"$gte": "20170101000000"}},
            ]
        }


class TestBuildPredicate:
    """Tests for full expression compilation."""

    def test_equality_or_collapses_to_in(self):
        assert build_predicate("name", "name", "A,B", ValueKind.STRING) == {"name": {"$in": ["A", "B"]}}

    def test_inequality_and_collapses_to_nin(self):
        predicate = build_predicate("name", "name", "!=A;!=B", ValueKind.STRING)
        assert predicate == {"name": {"$nin": ["A", "B"]}}

    def test_numeric_comparison_is_numeric(self):
        assert build_predicate("age", "age", ">20", ValueKind.INTEGER) == {"age": {"$gt": 20}}

    def test_mixed_or(self):
        predicate = build_predicate("age", "age", "<5,>20", ValueKind.INTEGER)
        assert predicate == {"$or": [{"age": {"$lt": 5}}, {"age": {"$gt": 20}}]}

    def test_and_of_ors(self):
        predicate = build_predicate("age", "age", "1,2;>0", ValueKind.INTEGER)
        assert predicate == {"$and": [{"age": {"$in": [1, 2]}}, {"age": {"$gt": 0}}]}

    def test_regex_on_strings(self):
        assert build_predicate("name", "name", "~^CO", ValueKind.STRING) == {"name": {"$regex": "^CO"}}

    def test_regex_rejected_on_numbers(self):
        with pytest.raises(InvalidQueryValue):
            build_predicate("age", "age", "~^1", ValueKind.INTEGER)

    def test_invalid_regex(self):
        with pytest.raises(InvalidQueryValue):
            build_predicate("name", "name", "~(", ValueKind.STRING)

    def test_comparison_rejected_on_enum(self):
        with pytest.raises(InvalidQueryValue):
            build_predicate("type", "type", ">FAMILY", ValueKind.ENUM, ("FAMILY",))

    def test_untyped_infers_per_branch(self):
        predicate = build_predicate("annotations.age", "annotation.age", ">40", None)
        assert predicate == {"annotations.age": {"$gt": 40}}
