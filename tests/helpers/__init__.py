"""Test helper utilities."""

from tests.helpers.fakes import (
    FakeGateway,
    make_connection,
    make_outcome,
    make_record,
    make_user,
)

__all__ = [
    "FakeGateway",
    "make_connection",
    "make_outcome",
    "make_record",
    "make_user",
]
