"""
Compilation of caller queries into store filters.

compile_filter() turns a Query into one store-native filter document:

1. Deleted and removed entities are hidden unless the query constrains
   status (see catalogdb.lifecycle.default_visibility).
2. Each key is resolved through the entity's ParamTable and compiled by the
   strategy registered for its tag in STRATEGIES.
3. Annotation predicates (variableSetId, annotationSetId, annotation.*) are
   AND-ed inside one $elemMatch on the annotation-set array, so they must
   hold within a single annotation set.
4. Everything is AND-ed; an empty result is the always-true filter {}.

The variable map used to type annotation queries is an explicit argument;
the compiler holds no state between calls.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from ..errors import InvalidQueryValue
from ..lifecycle import default_visibility
from .model import Query
from .params import ParamTable, QueryParam, Strategy
from .predicates import build_predicate

if TYPE_CHECKING:
    from ..directory import Variable

logger = logging.getLogger(__name__)

VARIABLE_SET_KEY = "variableSetId"

VariableMap = Mapping[str, "Variable"]
StrategyFn = Callable[[QueryParam, str, str, Any, "VariableMap | None"], dict[str, Any]]


@dataclass(frozen=True)
class CompileStrategy:
    """How one strategy tag compiles a (key, value) pair.

    Attributes:
        compile: (param, key, storage path, value, variables) -> predicate
        annotation: The predicate belongs inside the annotation-set $elemMatch
    """

    compile: StrategyFn
    annotation: bool = False


def compile_direct(
    param: QueryParam, key: str, path: str, value: Any, variables: VariableMap | None
) -> dict[str, Any]:
    return build_predicate(path, key, value, param.kind, param.allowed)


def compile_id_alias(
    param: QueryParam, key: str, path: str, value: Any, variables: VariableMap | None
) -> dict[str, Any]:
    # Public key "id" is stored under the internal identifier path.
    return build_predicate(param.path, key, value, param.kind, param.allowed)


def compile_attribute_map(
    param: QueryParam, key: str, path: str, value: Any, variables: VariableMap | None
) -> dict[str, Any]:
    if path == param.path:
        raise InvalidQueryValue(key, value, f"name an attribute, e.g. {param.key}.<name>")
    return build_predicate(path, key, value, param.kind, param.allowed)


def compile_annotation(
    param: QueryParam, key: str, path: str, value: Any, variables: VariableMap | None
) -> dict[str, Any]:
    if path == param.path:
        raise InvalidQueryValue(key, value, f"name a variable, e.g. {param.key}.<variable>")
    variable_id = path[len(param.path) + 1 :]

    if variables is None:
        return build_predicate(path, key, value, None)

    variable = variables.get(variable_id)
    if variable is None:
        raise InvalidQueryValue(key, value, f"variable '{variable_id}' is not in the variable set")
    kind = variable.value_kind
    if kind is None:
        raise InvalidQueryValue(key, value, f"variable '{variable_id}' of type {variable.type.value} cannot be queried")
    return build_predicate(path, key, value, kind, variable.allowed_values)


STRATEGIES: dict[Strategy, CompileStrategy] = {
    Strategy.DIRECT: CompileStrategy(compile_direct),
    Strategy.ID_ALIAS: CompileStrategy(compile_id_alias),
    Strategy.ATTRIBUTE_MAP: CompileStrategy(compile_attribute_map),
    Strategy.VARIABLE_SET_ID: CompileStrategy(compile_direct, annotation=True),
    Strategy.ANNOTATION_SET_ID: CompileStrategy(compile_direct, annotation=True),
    Strategy.ANNOTATION: CompileStrategy(compile_annotation, annotation=True),
}


def all_of(predicates: list[dict[str, Any]]) -> dict[str, Any]:
    """AND a list of predicates; no predicates is the always-true filter."""
    if not predicates:
        return {}
    if len(predicates) == 1:
        return predicates[0]
    return {"$and": predicates}


def referenced_variable_set(query: Mapping[str, Any]) -> int | None:
    """Variable set id the query's annotation predicates should be typed by.

    A missing, non-numeric, multi-valued or non-positive value means there is
    no variable set and annotation predicates stay untyped.
    """
    value = query.get(VARIABLE_SET_KEY)
    if isinstance(value, bool) or value is None:
        return None
    try:
        variable_set_id = int(str(value).strip())
    except ValueError:
        return None
    return variable_set_id if variable_set_id > 0 else None


def needs_variables(query: Mapping[str, Any], params: ParamTable) -> bool:
    """Whether compiling the query involves annotation variables."""
    for key in query:
        root = key.partition(".")[0]
        param = params.get(key) or params.get(root)
        if param is not None and param.strategy == Strategy.ANNOTATION:
            return True
    return False


def compile_filter(
    query: Mapping[str, Any],
    params: ParamTable,
    variables: VariableMap | None = None,
) -> dict[str, Any]:
    """Compile a query into a store filter.

    Args:
        query: Caller query (not modified)
        params: Param table of the entity kind
        variables: Variables of the referenced variable set, used to type
            annotation predicates; None leaves them untyped

    Returns:
        Store-native filter document

    Raises:
        UnknownQueryParam: If a key is not accepted by the entity kind
        InvalidQueryValue: If a value is malformed or mistyped

    Example:
        >>> compile_filter(Query({"nattributes.age": ">20"}), COHORT_PARAMS)
        {'$and': [{'attributes.age': {'$gt': 20}}, {'status.name': {'$nin': ['DELETED', 'REMOVED']}}]}
    """
    visible = default_visibility(query if isinstance(query, Query) else Query(query))

    main: list[dict[str, Any]] = []
    annotation: list[dict[str, Any]] = []
    for key, value in visible.items():
        param, path = params.resolve(key)
        strategy = STRATEGIES[param.strategy]
        predicate = strategy.compile(param, key, path, value, variables)
        (annotation if strategy.annotation else main).append(predicate)

    if annotation:
        main.append({params.annotation_sets_path: {"$elemMatch": all_of(annotation)}})

    compiled = all_of(main)
    logger.debug("Compiled query", extra={"entity": params.entity, "query": visible.to_dict()})
    return compiled
