"""Unit tests for the error taxonomy."""

import pytest

from pyremember.data.schemas.models import ScopeFilter
from pyremember.errors import (
    BackendUnavailableError,
    ConflictingIDError,
    InvalidArgumentError,
    NotFoundError,
    OperationCancelledError,
    PyRememberError,
    SerializationError,
)


class TestErrors:
    """Test error formatting and hierarchy."""

    def test_message_includes_op_and_scope(self):
        err = NotFoundError("get", "memory 7 not found", ScopeFilter(user_id="u1"))
        assert str(err) == "get: memory 7 not found [scope=user_id=u1]"
        assert err.op == "get"
        assert err.scope.user_id == "u1"

    def test_message_without_scope(self):
        assert str(BackendUnavailableError("connect", "refused")) == "connect: refused"

    def test_message_without_detail(self):
        assert str(OperationCancelledError("search")) == "search"

    def test_wraps_exception_detail(self):
        err = SerializationError("insert", TypeError("not serializable"))
        assert err.detail == "not serializable"

    @pytest.mark.parametrize("cls", [
        NotFoundError,
        InvalidArgumentError,
        ConflictingIDError,
        BackendUnavailableError,
        SerializationError,
        OperationCancelledError,
    ])
    def test_all_derive_from_base(self, cls):
        assert issubclass(cls, PyRememberError)

    def test_builtin_compatibility(self):
        """Test callers can also catch the matching builtin exceptions."""
        assert isinstance(NotFoundError("get"), LookupError)
        assert isinstance(InvalidArgumentError("insert"), ValueError)
