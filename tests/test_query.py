from __future__ import annotations

from datetime import datetime, timezone

import pytest

from usersvc.errors import ValidationError
from usersvc.models import AuthType, User
from usersvc.query import QueryFilter, parse_query


@pytest.fixture()
def user() -> User:
    return User(
        id="u-1",
        login_id="alice smith",
        contact_id="c1",
        hashed_password="h",
        salt="s",
        auth_type=AuthType.LDAP,
        created_at=datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc),
        created_by="admin",
        modified_at=datetime(2024, 3, 2, 12, 0, tzinfo=timezone.utc),
        modified_by="admin",
    )


def test_blank_query_matches_everything(user: User) -> None:
    assert parse_query(None).matches(user)
    assert parse_query("   ").matches(user)
    assert QueryFilter.always().matches(user)


@pytest.mark.parametrize(
    "expression, expected",
    [
        ('loginId eq "alice smith"', True),
        ("loginId eq alice", False),
        ("loginId ne alice", True),
        ("loginId contains smith", True),
        ("loginId startswith ali", True),
        ("loginId endswith smith", True),
        ("authType eq ldap", True),
        ("authType ne local", True),
        ("contactId EQ c1", True),
        ("createdBy gt aaa", True),
        ("createdAt lt 2024-03-02T00:00:00+00:00", True),
        ("createdAt ge 2024-03-02T00:00:00Z", False),
        ("modifiedAt gt 2024-03-01", True),
    ],
)
def test_single_clause(user: User, expression: str, expected: bool) -> None:
    assert parse_query(expression).matches(user) is expected


def test_conjunction_requires_every_clause(user: User) -> None:
    assert parse_query("contactId eq c1 and authType eq ldap").matches(user)
    assert parse_query("contactId eq c1 AND authType eq local").matches(user) is False


def test_quoted_values_support_escapes() -> None:
    quoted = User(login_id='say "hi"', contact_id="c1", hashed_password="h", salt="s")
    assert parse_query(r'loginId eq "say \"hi\""').matches(quoted)


def test_unknown_field_never_matches(user: User) -> None:
    query = parse_query("nickname eq alice")
    assert query.matches(user) is False
    assert parse_query("nickname ne alice").matches(user) is False


def test_missing_value_only_matches_not_equal() -> None:
    fresh = User(login_id="bob", contact_id="c1", hashed_password="h", salt="s")
    assert parse_query("createdAt ne 2024-01-01").matches(fresh)
    assert parse_query("createdAt lt 2024-01-01").matches(fresh) is False


def test_non_timestamp_value_for_timestamp_field_compares_as_text(user: User) -> None:
    assert parse_query("createdAt contains 03-01T12").matches(user)
    assert parse_query("createdAt contains 03-02T12").matches(user) is False


@pytest.mark.parametrize(
    "expression",
    [
        "loginId",
        "loginId eq",
        "loginId like alice",
        'loginId eq "alice',
        "loginId eq alice or contactId eq c1",
        "loginId eq alice and",
        '"loginId" eq alice',
    ],
)
def test_malformed_queries_are_rejected(expression: str) -> None:
    with pytest.raises(ValidationError):
        parse_query(expression)


def test_unsupported_query_type() -> None:
    with pytest.raises(ValidationError):
        parse_query("loginId eq alice", "jsonpath")
    assert isinstance(parse_query("loginId eq alice", "SIMPLE"), QueryFilter)


@pytest.fixture()
def new_year() -> User:
    return User(
        id="u-2",
        login_id="bob",
        contact_id="c2",
        hashed_password="h",
        salt="s",
        auth_type=AuthType.LOCAL,
        created_at=datetime(2024, 1, 1, 12, 30, tzinfo=timezone.utc),
        created_by="admin",
        modified_at=datetime(2024, 1, 2, 8, 0, tzinfo=timezone.utc),
        modified_by="admin",
    )


@pytest.mark.parametrize(
    "expression, expected",
    [
        ("createdAt startswith 2024-01-01", True),
        ("createdAt startswith 2024-01", True),
        ("createdAt startswith 2024-01-02", False),
        ("createdAt endswith +00:00", True),
        ("createdAt endswith 12:30:00+00:00", True),
        ("createdAt contains 2024-01-01", True),
        ("modifiedAt startswith 2024-01-02", True),
        ("modifiedAt endswith 08:00:00+00:00", True),
        ("modifiedAt contains T12", False),
    ],
)
def test_text_operators_on_timestamps_use_iso_form(new_year: User, expression: str, expected: bool) -> None:
    assert parse_query(expression).matches(new_year) is expected


@pytest.mark.parametrize(
    "expression, expected",
    [
        ("createdAt eq 2024-01-01T12:30:00Z", True),
        ("createdAt eq 2024-01-01T13:30:00+01:00", True),
        ("createdAt ne 2024-01-01T12:30:00+00:00", False),
        ("createdAt gt 2024-01-01", True),
        ("createdAt lt 2024-01-01T12:00:00Z", False),
        ("modifiedAt le 2024-01-02T08:00:00Z", True),
        ("modifiedAt gt 2024-01-02T08:00:00Z", False),
        ("modifiedAt ge 2024-01-02", True),
    ],
)
def test_ordering_operators_on_timestamps_compare_instants(new_year: User, expression: str, expected: bool) -> None:
    assert parse_query(expression).matches(new_year) is expected
