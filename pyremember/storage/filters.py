"""
Scope filter helpers shared by the store backends.

The user/agent part of a ScopeFilter is pushed down into each backend's native
query language; metadata filters are always evaluated here, in-process, so
both backends apply exactly the same matching rules.
"""

from typing import Any, Dict, List, Optional, Tuple

from pyremember.data.schemas.models import ScopeFilter
from pyremember.errors import InvalidArgumentError

_SCALAR_TYPES = (str, int, float, bool)


def validate_scope_filter(scope: ScopeFilter, op: str) -> None:
    """
    Reject malformed filters before they reach a backend.

    Raises:
        InvalidArgumentError: Negative pagination, empty ids or unsupported filter values
    """
    if scope.limit is not None and scope.limit < 0:
        raise InvalidArgumentError(op, f"limit must be >= 0, got {scope.limit}", scope)
    if scope.offset < 0:
        raise InvalidArgumentError(op, f"offset must be >= 0, got {scope.offset}", scope)
    if scope.user_id is not None and not scope.user_id:
        raise InvalidArgumentError(op, "user_id must not be empty", scope)
    if scope.agent_id is not None and not scope.agent_id:
        raise InvalidArgumentError(op, "agent_id must not be empty", scope)

    for key, value in scope.filters.items():
        if not isinstance(key, str) or not key:
            raise InvalidArgumentError(op, f"metadata filter key must be a non-empty string, got {key!r}", scope)
        if isinstance(value, list):
            if not all(v is None or isinstance(v, _SCALAR_TYPES) for v in value):
                raise InvalidArgumentError(op, f"metadata filter '{key}' list must hold scalars", scope)
        elif value is not None and not isinstance(value, _SCALAR_TYPES):
            raise InvalidArgumentError(
                op,
                f"metadata filter '{key}' has unsupported type {type(value).__name__}",
                scope
            )


def _scalar_equal(expected: Any, actual: Any) -> bool:
    # Keep True from matching 1 and vice versa
    if isinstance(expected, bool) or isinstance(actual, bool):
        return isinstance(expected, bool) and isinstance(actual, bool) and expected == actual
    return expected == actual


def matches_metadata(metadata: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    """
    Check a record's metadata against metadata filters.

    A scalar filter value matches by equality; a list value matches if the
    record's value equals any element. A missing key only matches None.
    """
    for key, expected in filters.items():
        actual = metadata.get(key)
        if isinstance(expected, list):
            if not any(_scalar_equal(option, actual) for option in expected):
                return False
        elif not _scalar_equal(expected, actual):
            return False
    return True


def build_sql_where(scope: Optional[ScopeFilter]) -> Tuple[str, List[Any]]:
    """
    Build a parameterized WHERE clause for the user/agent part of a filter.

    Returns:
        (clause, params) where clause is "" when nothing restricts
    """
    if scope is None:
        return "", []
    conditions = []
    params: List[Any] = []
    if scope.user_id is not None:
        conditions.append("user_id = ?")
        params.append(scope.user_id)
    if scope.agent_id is not None:
        conditions.append("agent_id = ?")
        params.append(scope.agent_id)
    if not conditions:
        return "", params
    return "WHERE " + " AND ".join(conditions), params


def _quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def build_lancedb_filter(scope: Optional[ScopeFilter], memory_id: Optional[int] = None) -> Optional[str]:
    """
    Build a LanceDB filter expression for the user/agent part of a filter.

    Returns:
        SQL filter string for LanceDB queries, or None if no filter needed
    """
    conditions = []
    if memory_id is not None:
        conditions.append(f"id = {int(memory_id)}")
    if scope is not None:
        if scope.user_id is not None:
            conditions.append(f"user_id = {_quote(scope.user_id)}")
        if scope.agent_id is not None:
            conditions.append(f"agent_id = {_quote(scope.agent_id)}")

    if not conditions:
        return None
    return " AND ".join(conditions)
