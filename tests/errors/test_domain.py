"""Tests for the client error hierarchy."""

import pytest

from src.errors import AuthError, DbChatError, NetworkError, PreconditionError, ValidationError


@pytest.mark.parametrize(
    "error_cls", [ValidationError, AuthError, NetworkError, PreconditionError]
)
def test_every_kind_is_a_dbchat_error(error_cls):
    error = error_cls("Please enter a question.")
    assert isinstance(error, DbChatError)
    assert error.message == "Please enter a question."
    assert str(error) == "Please enter a question."


def test_kinds_are_distinct():
    assert not isinstance(NetworkError("HTTP 500"), AuthError)
    assert not isinstance(ValidationError("x"), PreconditionError)
