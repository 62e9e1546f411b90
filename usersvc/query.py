"""Parsing and evaluation of the ``simple`` user query language.

An expression is one or more ``field operator value`` clauses joined by
``and``::

    loginId startswith "adm" and authType ne ldap

Fields use their JSON names. Values are bare words or double-quoted strings
(``\\"`` escapes a quote). Clauses naming an unknown field never match;
anything that does not fit the grammar is rejected when parsed.
"""
from __future__ import annotations

import operator
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .errors import ValidationError
from .models import FIELD_ALIASES, TIMESTAMP_FIELDS, AuthType, User, parse_datetime, serialize_datetime

SIMPLE_QUERY_TYPE = "simple"

_TOKEN = re.compile(r'\s*(?:("(?:[^"\\]|\\.)*")|([^\s"]+)|(\S))')

_ATTRIBUTES: Dict[str, str] = {alias: name for name, alias in FIELD_ALIASES.items()}

_OPERATORS: Dict[str, Callable[[object, object], bool]] = {
    "eq": operator.eq,
    "ne": operator.ne,
    "lt": operator.lt,
    "le": operator.le,
    "gt": operator.gt,
    "ge": operator.ge,
    "contains": lambda left, right: str(right) in str(left),
    "startswith": lambda left, right: str(left).startswith(str(right)),
    "endswith": lambda left, right: str(left).endswith(str(right)),
}

_ORDERING_OPERATORS = frozenset({"eq", "ne", "lt", "le", "gt", "ge"})


def _parse_instant(value: str) -> Optional[datetime]:
    try:
        return parse_datetime(value)
    except ValueError:
        return None


@dataclass(frozen=True)
class _Token:
    text: str
    quoted: bool


@dataclass(frozen=True)
class Clause:
    """A single ``field operator value`` comparison."""

    field: str
    op: str
    value: str

    def matches(self, user: User) -> bool:
        attribute = _ATTRIBUTES.get(self.field)
        if attribute is None:
            return False

        current = getattr(user, attribute)
        if current is None:
            return self.op == "ne"
        if isinstance(current, AuthType):
            current = current.value

        expected: object = self.value
        if attribute in TIMESTAMP_FIELDS:
            # Text operators always see the ISO form; ordering compares instants when the value parses.
            instant = _parse_instant(self.value) if self.op in _ORDERING_OPERATORS else None
            if instant is None:
                current = serialize_datetime(current)  # type: ignore[arg-type]
            else:
                expected = instant
        try:
            return bool(_OPERATORS[self.op](current, expected))
        except TypeError:
            return False


class QueryFilter:
    """Conjunction of clauses evaluated against user records."""

    def __init__(self, clauses: Sequence[Clause] = ()) -> None:
        self._clauses: Tuple[Clause, ...] = tuple(clauses)

    @classmethod
    def always(cls) -> "QueryFilter":
        return cls(())

    @property
    def clauses(self) -> Tuple[Clause, ...]:
        return self._clauses

    def matches(self, user: User) -> bool:
        return all(clause.matches(user) for clause in self._clauses)

    def __repr__(self) -> str:
        return f"QueryFilter({list(self._clauses)!r})"


def _tokenize(text: str) -> List[_Token]:
    tokens: List[_Token] = []
    position = 0
    stripped_length = len(text.rstrip())
    while position < stripped_length:
        match = _TOKEN.match(text, position)
        if match is None:  # pragma: no cover - the pattern always matches non-blank input
            raise ValidationError(f"Malformed query near position {position}")
        quoted, bare, stray = match.groups()
        if stray is not None:
            raise ValidationError(f"Unterminated quoted value in query at position {match.start(3)}")
        if quoted is not None:
            body = quoted[1:-1]
            tokens.append(_Token(re.sub(r"\\(.)", r"\1", body), True))
        else:
            tokens.append(_Token(bare, False))
        position = match.end()
    return tokens


def parse_query(text: Optional[str], query_type: Optional[str] = None) -> QueryFilter:
    """Parse ``text`` into a :class:`QueryFilter`.

    ``None`` or blank text yields a filter matching every record. Raises
    :class:`ValidationError` for unsupported query types and malformed
    expressions.
    """

    kind = (query_type or SIMPLE_QUERY_TYPE).strip().lower()
    if kind != SIMPLE_QUERY_TYPE:
        raise ValidationError(f"Unsupported queryType {query_type!r}; only 'simple' is available")

    if text is None or not text.strip():
        return QueryFilter.always()

    tokens = _tokenize(text)
    clauses: List[Clause] = []
    index = 0
    while True:
        triple = tokens[index : index + 3]
        if len(triple) < 3:
            raise ValidationError(f"Incomplete clause in query {text!r}")
        field_token, op_token, value_token = triple
        if field_token.quoted:
            raise ValidationError(f"Field names must not be quoted: {field_token.text!r}")
        op = op_token.text.lower()
        if op_token.quoted or op not in _OPERATORS:
            raise ValidationError(f"Unknown query operator {op_token.text!r}")
        clauses.append(Clause(field=field_token.text, op=op, value=value_token.text))
        index += 3

        if index == len(tokens):
            break
        joiner = tokens[index]
        if joiner.quoted or joiner.text.lower() != "and":
            raise ValidationError(f"Expected 'and' between clauses, found {joiner.text!r}")
        index += 1

    return QueryFilter(clauses)


__all__ = ["Clause", "QueryFilter", "SIMPLE_QUERY_TYPE", "parse_query"]
