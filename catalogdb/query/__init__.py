"""
Query model and filter compiler.

This package contains:
- model: Query, QueryOptions, QueryResult
- params: QueryParam descriptors and per-entity ParamTables
- predicates: Value expression parsing (operators, lists, dates)
- compiler: Query -> store filter compilation

The compiler is imported from catalogdb.query.compiler directly; it depends
on catalogdb.lifecycle, which itself depends on this package's model.
"""

from .model import Query, QueryOptions, QueryResult
from .params import ParamTable, QueryParam, Strategy, ValueKind

__all__ = [
    "ParamTable",
    "Query",
    "QueryOptions",
    "QueryParam",
    "QueryResult",
    "Strategy",
    "ValueKind",
]
