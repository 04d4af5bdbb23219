"""
Parsing of query value expressions into store predicates.

A value expression is split on ";" into AND groups and each group on "," into
OR branches, so "a,b;c" reads (a OR b) AND c. A list value is one AND group
whose elements are OR branches. A regex expression ("~...") is never split,
so it may contain "," and ";". Each branch may start with an operator:

    =  (default)   !=   >   >=   <   <=   ~ (regex, strings only)

Operands are typed by the param's ValueKind. Numbers compare numerically.
Dates accept partial patterns (yyyy, yyyyMM, yyyyMMdd, yyyyMMddHH,
yyyyMMddHHmm, yyyyMMddHHmmss) which expand to a half-open interval, so
"2016" matches every timestamp of that year.
"""

from __future__ import annotations

import math
import re
from collections.abc import Sequence
from datetime import datetime, timedelta
from typing import Any

from ..errors import InvalidQueryValue
from .params import ValueKind

_OPERATOR = re.compile(r"^(<=|>=|!=|<|>|=|~)?(.*)$", re.DOTALL)
_OPERATORS = {
    "=": "$eq",
    "!=": "$ne",
    ">": "$gt",
    ">=": "$gte",
    "<": "$lt",
    "<=": "$lte",
}
_DATE_PATTERNS = {
    4: ("%Y", "year"),
    6: ("%Y%m", "month"),
    8: ("%Y%m%d", "day"),
    10: ("%Y%m%d%H", "hour"),
    12: ("%Y%m%d%H%M", "minute"),
    14: ("%Y%m%d%H%M%S", "second"),
}
_INTEGER = re.compile(r"^[+-]?\d+$")


def split_value(key: str, value: Any) -> list[list[str]]:
    """Split a value expression into AND groups of OR branches."""
    if isinstance(value, (list, tuple)):
        if not value:
            raise InvalidQueryValue(key, value, "empty list")
        return [[_scalar_text(key, item) for item in value]]

    text = _scalar_text(key, value)
    if text.lstrip().startswith("~"):
        return [[text.strip()]]
    groups = []
    for group in text.split(";"):
        branches = [branch.strip() for branch in group.split(",")]
        if any(not branch for branch in branches):
            raise InvalidQueryValue(key, value, "empty element in value list")
        groups.append(branches)
    return groups


def _scalar_text(key: str, value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float, str)):
        return str(value)
    raise InvalidQueryValue(key, value, f"unsupported value type {type(value).__name__}")


def split_operator(key: str, text: str) -> tuple[str, str]:
    """Separate the operator prefix from the operand.

    Raises:
        InvalidQueryValue: If the operand is missing or starts with another
            operator character ("=>5", "<>", "!x")
    """
    match = _OPERATOR.match(text)
    op = match.group(1) or "="
    operand = match.group(2).strip()
    if not operand:
        raise InvalidQueryValue(key, text, f"missing operand after '{op}'")
    if operand[0] in "<>=!":
        raise InvalidQueryValue(key, text, "malformed operator")
    return op, operand


def infer_kind(operand: str) -> ValueKind:
    """Guess the kind of an untyped operand (annotations without a variable set)."""
    if _INTEGER.match(operand):
        return ValueKind.INTEGER
    if operand.lower() in ("true", "false"):
        return ValueKind.BOOLEAN
    try:
        if math.isfinite(float(operand)):
            return ValueKind.DECIMAL
    except ValueError:
        pass
    return ValueKind.STRING


def convert(key: str, operand: str, kind: ValueKind, allowed: Sequence[str] = ()) -> Any:
    """Type an operand for comparison.

    Raises:
        InvalidQueryValue: If the operand does not parse as ``kind``
    """
    if kind == ValueKind.INTEGER:
        if not _INTEGER.match(operand):
            raise InvalidQueryValue(key, operand, "expected an integer")
        return int(operand)
    if kind == ValueKind.DECIMAL:
        try:
            number = float(operand)
        except ValueError:
            raise InvalidQueryValue(key, operand, "expected a number") from None
        if not math.isfinite(number):
            raise InvalidQueryValue(key, operand, "expected a finite number")
        return int(number) if number.is_integer() and _INTEGER.match(operand) else number
    if kind == ValueKind.BOOLEAN:
        lowered = operand.lower()
        if lowered not in ("true", "false"):
            raise InvalidQueryValue(key, operand, "expected true or false")
        return lowered == "true"
    if kind == ValueKind.ENUM:
        for candidate in allowed:
            if candidate.lower() == operand.lower():
                return candidate
        raise InvalidQueryValue(key, operand, f"expected one of {list(allowed)}")
    return operand


def date_range(key: str, operand: str) -> tuple[str, str]:
    """Expand a partial date to its half-open [start, end) interval.

    Example:
        >>> date_range("creationDate", "2016")
        ('20160101000000', '20170101000000')
    """
    pattern = _DATE_PATTERNS.get(len(operand))
    if pattern is None or not operand.isdigit():
        raise InvalidQueryValue(
            key, operand, "expected a date like yyyy, yyyyMM, yyyyMMdd ... yyyyMMddHHmmss"
        )
    fmt, unit = pattern
    try:
        start = datetime.strptime(operand, fmt)
        if unit == "year":
            end = start.replace(year=start.year + 1)
        elif unit == "month":
            end = start.replace(year=start.year + start.month // 12, month=start.month % 12 + 1)
        else:
            end = start + timedelta(**{f"{unit}s": 1})
    except (ValueError, OverflowError):
        raise InvalidQueryValue(key, operand, "not a valid calendar date") from None
    return _timestamp(start), _timestamp(end)


def _timestamp(moment: datetime) -> str:
    return (
        f"{moment.year:04d}{moment.month:02d}{moment.day:02d}"
        f"{moment.hour:02d}{moment.minute:02d}{moment.second:02d}"
    )


def branch_predicate(
    path: str,
    key: str,
    text: str,
    kind: ValueKind | None,
    allowed: Sequence[str] = (),
) -> dict[str, Any]:
    """Compile one OR branch. ``kind=None`` infers the kind from the operand."""
    op, operand = split_operator(key, text)

    if op == "~":
        if kind not in (None, ValueKind.STRING):
            raise InvalidQueryValue(key, text, "regular expressions only apply to text fields")
        try:
            re.compile(operand)
        except re.error as e:
            raise InvalidQueryValue(key, text, f"invalid regular expression: {e}") from None
        return {path: {"$regex": operand}}

    if kind is None:
        kind = infer_kind(operand)

    if kind == ValueKind.DATE:
        start, end = date_range(key, operand)
        if op == "=":
            return {path: {"$gte": start, "$lt": end}}
        if op == "!=":
            return {"$or": [{path: {"$lt": start}}, {path: {"$gte": end}}]}
        if op == ">":
            return {path: {"$gte": end}}
        if op == ">=":
            return {path: {"$gte": start}}
        if op == "<":
            return {path: {"$lt": start}}
        return {path: {"$lt": end}}

    if op not in ("=", "!=") and kind in (ValueKind.BOOLEAN, ValueKind.ENUM):
        raise InvalidQueryValue(key, text, f"operator '{op}' does not apply to {kind.value} values")

    return {path: {_OPERATORS[op]: convert(key, operand, kind, allowed)}}


def _single(clause: dict[str, Any], path: str, operator: str) -> tuple[bool, Any]:
    cond = clause.get(path)
    if len(clause) == 1 and isinstance(cond, dict) and len(cond) == 1 and operator in cond:
        return True, cond[operator]
    return False, None


def _any_of(path: str, clauses: list[dict[str, Any]]) -> dict[str, Any]:
    if len(clauses) == 1:
        return clauses[0]
    values = []
    for clause in clauses:
        simple, value = _single(clause, path, "$eq")
        if not simple:
            return {"$or": clauses}
        values.append(value)
    return {path: {"$in": values}}


def _all_of(path: str, clauses: list[dict[str, Any]]) -> dict[str, Any]:
    if len(clauses) == 1:
        return clauses[0]
    values = []
    for clause in clauses:
        simple, value = _single(clause, path, "$ne")
        if not simple:
            return {"$and": clauses}
        values.append(value)
    return {path: {"$nin": values}}


def build_predicate(
    path: str,
    key: str,
    value: Any,
    kind: ValueKind | None,
    allowed: Sequence[str] = (),
) -> dict[str, Any]:
    """Compile a full value expression against one storage path.

    Equality branches joined by "," collapse to $in and inequality branches
    joined by ";" collapse to $nin; on list fields both keep "any element"
    semantics.

    Example:
        >>> build_predicate("age", "age", ">20", ValueKind.INTEGER)
        {'age': {'$gt': 20}}
        >>> build_predicate("name", "name", "a,b", ValueKind.STRING)
        {'name': {'$in': ['a', 'b']}}
    """
    groups = split_value(key, value)
    conjuncts = [
        _any_of(path, [branch_predicate(path, key, text, kind, allowed) for text in branches])
        for branches in groups
    ]
    return _all_of(path, conjuncts)
