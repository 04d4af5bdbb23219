"""
Evaluation of store-native filters, mutations and aggregation pipelines.

The SQLite document store keeps each document as a JSON body. Filters are
evaluated by this module (registered as an SQLite function), so that the
semantics follow the document-store conventions the compiler targets:

- A dotted path traverses nested objects and arrays of objects
  ("acls.members" reaches every members list of every ACL entry)
- A condition on an array field holds if it holds for any element
  ({"samples": {"$eq": 3}} matches samples == [1, 3])
- $ne / $nin hold when no element matches
- $elemMatch requires all sub-conditions to hold within one element
- Ordering comparisons only compare numbers with numbers and strings with
  strings; booleans never compare equal to numbers

Mutations support $set, $unset, $inc, $push, $addToSet (with $each) and
$pull, with the positional "$" segment resolved against the filter that
selected the document.

How to change safely:
    - Add an operator to FILTER_OPERATORS and to _match_operator together
    - Keep functions pure: inputs are never mutated
"""

from __future__ import annotations

import copy
import json
import re
from collections.abc import Iterable, Iterator, Mapping, Sequence
from typing import Any

from .base import Document, StoreError

FILTER_OPERATORS = frozenset(
    {
        "$eq",
        "$ne",
        "$gt",
        "$gte",
        "$lt",
        "$lte",
        "$in",
        "$nin",
        "$all",
        "$exists",
        "$regex",
        "$options",
        "$elemMatch",
        "$size",
        "$not",
    }
)
LOGICAL_OPERATORS = frozenset({"$and", "$or", "$nor"})
UPDATE_OPERATORS = frozenset({"$set", "$unset", "$inc", "$push", "$addToSet", "$pull"})

_MISSING = object()


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------


def check_filter(flt: Mapping[str, Any]) -> None:
    """Reject filters using operators this store does not implement.

    Raises:
        StoreError: On an unknown operator or a malformed logical clause
    """
    for key, cond in flt.items():
        if key in LOGICAL_OPERATORS:
            if not isinstance(cond, list):
                raise StoreError(f"{key} requires a list of filters")
            for sub in cond:
                check_filter(sub)
        elif key.startswith("$"):
            raise StoreError(f"Unknown top-level operator: {key}")
        elif _is_operator_dict(cond):
            _check_operators(cond)


def _check_operators(cond: Mapping[str, Any]) -> None:
    for op, arg in cond.items():
        if op not in FILTER_OPERATORS:
            raise StoreError(f"Unknown filter operator: {op}")
        if op == "$elemMatch":
            if _is_operator_dict(arg):
                _check_operators(arg)
            else:
                check_filter(arg)
        elif op == "$not":
            _check_operators(arg)


def matches(doc: Mapping[str, Any], flt: Mapping[str, Any]) -> bool:
    """Check whether a document satisfies a filter. An empty filter matches."""
    for key, cond in flt.items():
        if key == "$and":
            if not all(matches(doc, sub) for sub in cond):
                return False
        elif key == "$or":
            if not any(matches(doc, sub) for sub in cond):
                return False
        elif key == "$nor":
            if any(matches(doc, sub) for sub in cond):
                return False
        elif not _match_condition(resolve(doc, key), cond):
            return False
    return True


def resolve(doc: Any, path: str) -> list[Any]:
    """Collect the values reachable through a dotted path.

    Arrays met on the way are traversed. A missing path yields an empty list.
    """
    return _resolve(doc, path.split("."))


def _resolve(node: Any, parts: list[str]) -> list[Any]:
    if not parts:
        return [node]
    head, rest = parts[0], parts[1:]
    if isinstance(node, dict):
        if head in node:
            return _resolve(node[head], rest)
        return []
    if isinstance(node, list):
        found: list[Any] = []
        if head.isdigit() and int(head) < len(node):
            found.extend(_resolve(node[int(head)], rest))
        for item in node:
            if isinstance(item, dict):
                found.extend(_resolve(item, parts))
        return found
    return []


def _expand(values: Iterable[Any]) -> Iterator[Any]:
    # An array value is compared both as a whole and element by element.
    for value in values:
        yield value
        if isinstance(value, list):
            yield from value


def _is_operator_dict(cond: Any) -> bool:
    # {"$gt": 1} is a field condition; {"$and": [...]} is a nested filter.
    return (
        isinstance(cond, dict)
        and bool(cond)
        and all(k.startswith("$") and k not in LOGICAL_OPERATORS for k in cond)
    )


def _equal(a: Any, b: Any) -> bool:
    if isinstance(a, bool) != isinstance(b, bool):
        return False
    return a == b


def _comparable(a: Any, b: Any) -> bool:
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool)
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        return True
    return isinstance(a, str) and isinstance(b, str)


def _match_condition(values: list[Any], cond: Any) -> bool:
    if _is_operator_dict(cond):
        return all(_match_operator(values, op, arg, cond) for op, arg in cond.items())
    return _match_eq(values, cond)


def _match_eq(values: list[Any], target: Any) -> bool:
    if target is None and not values:
        return True
    return any(_equal(v, target) for v in _expand(values))


def _match_operator(values: list[Any], op: str, arg: Any, cond: Mapping[str, Any]) -> bool:
    if op == "$eq":
        return _match_eq(values, arg)
    if op == "$ne":
        return not _match_eq(values, arg)
    if op in ("$gt", "$gte", "$lt", "$lte"):
        return any(
            _compare(v, op, arg)
            for v in _expand(values)
            if not isinstance(v, (list, dict)) and _comparable(v, arg)
        )
    if op == "$in":
        return any(_match_eq(values, item) for item in arg)
    if op == "$nin":
        return not any(_match_eq(values, item) for item in arg)
    if op == "$all":
        return bool(arg) and all(_match_eq(values, item) for item in arg)
    if op == "$exists":
        return bool(values) == bool(arg)
    if op == "$regex":
        flags = re.IGNORECASE if "i" in cond.get("$options", "") else 0
        pattern = re.compile(arg, flags)
        return any(isinstance(v, str) and pattern.search(v) for v in _expand(values))
    if op == "$options":
        return True
    if op == "$elemMatch":
        return any(
            isinstance(v, list) and any(_elem_match(element, arg) for element in v)
            for v in values
        )
    if op == "$size":
        return any(isinstance(v, list) and len(v) == arg for v in values)
    if op == "$not":
        return not _match_condition(values, arg)
    raise StoreError(f"Unknown filter operator: {op}")


def _compare(value: Any, op: str, arg: Any) -> bool:
    if op == "$gt":
        return value > arg
    if op == "$gte":
        return value >= arg
    if op == "$lt":
        return value < arg
    return value <= arg


def _elem_match(element: Any, sub: Mapping[str, Any]) -> bool:
    if _is_operator_dict(sub):
        return _match_condition([element], sub)
    return isinstance(element, dict) and matches(element, sub)


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


def apply_update(
    doc: Mapping[str, Any],
    mutation: Mapping[str, Any],
    flt: Mapping[str, Any] | None = None,
) -> Document:
    """Return a copy of ``doc`` with a mutation applied.

    Args:
        doc: Stored document
        mutation: Update document ({"$set": {...}, "$pull": {...}, ...})
        flt: Filter that selected the document, used to resolve "$" segments

    Raises:
        StoreError: On an unknown operator, a change of "_id" or an
            unresolvable positional segment
    """
    result = copy.deepcopy(dict(doc))
    for op, fields in mutation.items():
        if op not in UPDATE_OPERATORS:
            raise StoreError(f"Unknown update operator: {op}")
        for path, arg in fields.items():
            if path == "_id" or path.startswith("_id."):
                raise StoreError("The '_id' field is immutable")
            parts = _positional(result, path, flt or {})
            _apply_operator(result, op, parts, arg)
    return result


def _apply_operator(doc: Document, op: str, parts: list[str], arg: Any) -> None:
    if op == "$set":
        parent, key = _walk(doc, parts, create=True)
        _assign(parent, key, copy.deepcopy(arg))
        return
    if op == "$unset":
        parent, key = _walk(doc, parts, create=False)
        if isinstance(parent, dict):
            parent.pop(key, None)
        return

    parent, key = _walk(doc, parts, create=True)
    current = _read(parent, key)

    if op == "$inc":
        base = 0 if current is _MISSING else current
        _assign(parent, key, base + arg)
        return

    if current is _MISSING:
        current = []
        _assign(parent, key, current)
    if not isinstance(current, list):
        raise StoreError(f"{op} requires an array at '{'.'.join(parts)}'")

    if op == "$push":
        current.append(copy.deepcopy(arg))
    elif op == "$addToSet":
        items = arg["$each"] if isinstance(arg, dict) and "$each" in arg else [arg]
        for item in items:
            if not any(_equal(existing, item) for existing in current):
                current.append(copy.deepcopy(item))
    elif op == "$pull":
        current[:] = [element for element in current if not _pull_matches(element, arg)]


def _pull_matches(element: Any, arg: Any) -> bool:
    if _is_operator_dict(arg):
        return _match_condition([element], arg)
    if isinstance(arg, dict):
        return isinstance(element, dict) and matches(element, arg)
    return _equal(element, arg)


def _positional(doc: Document, path: str, flt: Mapping[str, Any]) -> list[str]:
    parts = path.split(".")
    if "$" not in parts:
        return parts
    index = parts.index("$")
    array_path = ".".join(parts[:index])
    position = positional_index(doc, array_path, flt)
    return parts[:index] + [str(position)] + parts[index + 1 :]


def positional_index(doc: Mapping[str, Any], array_path: str, flt: Mapping[str, Any]) -> int:
    """Index of the first array element matched by the filter's conditions on it.

    Raises:
        StoreError: If the filter holds no condition on the array or no
            element satisfies it
    """
    array = _get(doc, array_path.split("."))
    conditions = list(_array_conditions(flt, array_path))
    if not isinstance(array, list) or not conditions:
        raise StoreError(f"The positional operator did not find the match needed for '{array_path}'")
    for i, element in enumerate(array):
        if all(_elem_match(element, sub) for sub in conditions):
            return i
    raise StoreError(f"The positional operator did not find the match needed for '{array_path}'")


def _array_conditions(flt: Mapping[str, Any], array_path: str) -> Iterator[Mapping[str, Any]]:
    prefix = array_path + "."
    for key, cond in flt.items():
        if key == "$and":
            for sub in cond:
                yield from _array_conditions(sub, array_path)
        elif key == array_path and isinstance(cond, dict) and "$elemMatch" in cond:
            yield cond["$elemMatch"]
        elif key.startswith(prefix):
            yield {key[len(prefix) :]: cond}


def _get(node: Any, parts: list[str]) -> Any:
    for part in parts:
        if isinstance(node, dict) and part in node:
            node = node[part]
        elif isinstance(node, list) and part.isdigit() and int(part) < len(node):
            node = node[int(part)]
        else:
            return _MISSING
    return node


def _walk(doc: Document, parts: list[str], create: bool) -> tuple[Any, str]:
    node: Any = doc
    for part in parts[:-1]:
        if isinstance(node, list):
            if not part.isdigit() or int(part) >= len(node):
                if not create:
                    return None, parts[-1]
                raise StoreError(f"Cannot traverse array with '{part}'")
            node = node[int(part)]
            continue
        if not isinstance(node, dict):
            if not create:
                return None, parts[-1]
            raise StoreError(f"Cannot traverse scalar value with '{part}'")
        if part not in node:
            if not create:
                return None, parts[-1]
            node[part] = {}
        node = node[part]
    return node, parts[-1]


def _read(parent: Any, key: str) -> Any:
    if isinstance(parent, dict):
        return parent.get(key, _MISSING)
    if isinstance(parent, list) and key.isdigit() and int(key) < len(parent):
        return parent[int(key)]
    return _MISSING


def _assign(parent: Any, key: str, value: Any) -> None:
    if isinstance(parent, list):
        if not key.isdigit() or int(key) >= len(parent):
            raise StoreError(f"Cannot assign array index '{key}'")
        parent[int(key)] = value
    elif isinstance(parent, dict):
        parent[key] = value
    else:
        raise StoreError(f"Cannot assign '{key}' on a scalar value")


# ---------------------------------------------------------------------------
# Projections
# ---------------------------------------------------------------------------


def project(doc: Mapping[str, Any], projection: Mapping[str, Any] | None) -> Document:
    """Apply an include ({"a": 1}) or exclude ({"a": 0}) projection."""
    if not projection:
        return copy.deepcopy(dict(doc))
    if any(projection.values()):
        result: Document = {}
        if projection.get("_id", 1) and "_id" in doc:
            result["_id"] = doc["_id"]
        for path in sorted(p for p, flag in projection.items() if flag and p != "_id"):
            _copy_path(doc, result, path.split("."))
        return result
    result = copy.deepcopy(dict(doc))
    for path, flag in projection.items():
        if not flag:
            parent, key = _walk(result, path.split("."), create=False)
            if isinstance(parent, dict):
                parent.pop(key, None)
    return result


def _copy_path(src: Any, dst: Document, parts: list[str]) -> None:
    head = parts[0]
    if not isinstance(src, dict) or head not in src:
        return
    value = src[head]
    if len(parts) == 1:
        dst[head] = copy.deepcopy(value)
    elif isinstance(value, dict):
        _copy_path(value, dst.setdefault(head, {}), parts[1:])
    elif isinstance(value, list):
        existing = dst.get(head)
        if not isinstance(existing, list) or len(existing) != len(value):
            existing = [{} for _ in value]
            dst[head] = existing
        for item, target in zip(value, existing):
            if isinstance(item, dict) and isinstance(target, dict):
                _copy_path(item, target, parts[1:])


# ---------------------------------------------------------------------------
# Sorting, distinct and aggregation
# ---------------------------------------------------------------------------


def sort_key(value: Any) -> tuple[int, Any]:
    """Total order across value types: missing/null, numbers, strings, objects, arrays, booleans."""
    if value is _MISSING or value is None:
        return (0, 0)
    if isinstance(value, bool):
        return (5, value)
    if isinstance(value, (int, float)):
        return (1, value)
    if isinstance(value, str):
        return (2, value)
    if isinstance(value, dict):
        return (3, json.dumps(value, sort_keys=True))
    return (4, json.dumps(value, sort_keys=True))


def sort_documents(docs: list[Document], sort: Sequence[tuple[str, int]]) -> list[Document]:
    ordered = list(docs)
    for path, direction in reversed(list(sort)):
        ordered.sort(key=lambda d: sort_key(_get(d, path.split("."))), reverse=direction < 0)
    return ordered


def distinct_values(docs: Iterable[Mapping[str, Any]], path: str) -> list[Any]:
    seen: set[str] = set()
    values: list[Any] = []
    for doc in docs:
        for value in resolve(doc, path):
            for item in value if isinstance(value, list) else [value]:
                marker = json.dumps(item, sort_keys=True)
                if marker not in seen:
                    seen.add(marker)
                    values.append(item)
    return values


def run_pipeline(docs: Iterable[Mapping[str, Any]], pipeline: Sequence[Mapping[str, Any]]) -> list[Document]:
    """Run $match, $unwind, $project, $group, $sort, $skip, $limit and $count stages."""
    current: list[Document] = [copy.deepcopy(dict(d)) for d in docs]
    for stage in pipeline:
        if len(stage) != 1:
            raise StoreError(f"Pipeline stage must have exactly one operator: {stage}")
        (name, spec), = stage.items()
        if name == "$match":
            current = [d for d in current if matches(d, spec)]
        elif name == "$unwind":
            current = list(_unwind(current, spec))
        elif name == "$project":
            current = [project(d, spec) for d in current]
        elif name == "$group":
            current = _group(current, spec)
        elif name == "$sort":
            current = sort_documents(current, list(spec.items()))
        elif name == "$skip":
            current = current[spec:]
        elif name == "$limit":
            current = current[:spec]
        elif name == "$count":
            current = [{spec: len(current)}]
        else:
            raise StoreError(f"Unknown pipeline stage: {name}")
    return current


def _field_ref(ref: str) -> list[str]:
    if not isinstance(ref, str) or not ref.startswith("$"):
        raise StoreError(f"Expected a field reference like '$field', got {ref!r}")
    return ref[1:].split(".")


def _unwind(docs: list[Document], spec: Any) -> Iterator[Document]:
    if isinstance(spec, dict):
        parts = _field_ref(spec["path"])
        preserve = bool(spec.get("preserveNullAndEmptyArrays", False))
    else:
        parts = _field_ref(spec)
        preserve = False
    for doc in docs:
        value = _get(doc, parts)
        if isinstance(value, list) and value:
            for element in value:
                unwound = copy.deepcopy(doc)
                parent, key = _walk(unwound, parts, create=True)
                _assign(parent, key, element)
                yield unwound
        elif isinstance(value, list) or value is _MISSING or value is None:
            if preserve:
                yield doc
        else:
            yield doc


def _evaluate(doc: Document, expr: Any) -> Any:
    if isinstance(expr, str) and expr.startswith("$"):
        value = _get(doc, _field_ref(expr))
        return None if value is _MISSING else value
    if isinstance(expr, dict):
        return {name: _evaluate(doc, sub) for name, sub in expr.items()}
    return expr


def _group(docs: list[Document], spec: Mapping[str, Any]) -> list[Document]:
    if "_id" not in spec:
        raise StoreError("$group requires an '_id' expression")
    groups: dict[str, Document] = {}
    for doc in docs:
        key = _evaluate(doc, spec["_id"])
        marker = json.dumps(key, sort_keys=True)
        group = groups.get(marker)
        if group is None:
            group = {"_id": key}
            for name, acc in spec.items():
                if name != "_id":
                    group[name] = _initial(acc)
            groups[marker] = group
        for name, acc in spec.items():
            if name != "_id":
                group[name] = _accumulate(group[name], acc, doc)
    return list(groups.values())


def _initial(acc: Mapping[str, Any]) -> Any:
    (op, _), = acc.items()
    if op == "$sum":
        return 0
    if op in ("$push", "$addToSet"):
        return []
    if op in ("$first", "$min", "$max"):
        return _MISSING
    raise StoreError(f"Unknown accumulator: {op}")


def _accumulate(state: Any, acc: Mapping[str, Any], doc: Document) -> Any:
    (op, expr), = acc.items()
    value = _evaluate(doc, expr)
    if op == "$sum":
        return state + (value if isinstance(value, (int, float)) and not isinstance(value, bool) else 0)
    if op == "$push":
        return state + [value]
    if op == "$addToSet":
        return state if any(_equal(v, value) for v in state) else state + [value]
    if op == "$first":
        return value if state is _MISSING else state
    if op == "$min":
        return value if state is _MISSING or sort_key(value) < sort_key(state) else state
    return value if state is _MISSING or sort_key(value) > sort_key(state) else state
