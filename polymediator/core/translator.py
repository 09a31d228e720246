"""Best-effort relational to document query translation.

Supported grammar, case-insensitive, optional trailing semicolon:

    SELECT * FROM <name> [WHERE <cond> [AND <cond>]*] [LIMIT <n>]
    <cond> := <field> (= | != | > | >= | < | <=) <literal>

Examples:
    SELECT * FROM accounts WHERE balance > 5000
    -> db.accounts.find({"balance": {"$gt": 5000}})

    SELECT * FROM accounts WHERE balance > 5000 AND account_type = 'Checking' LIMIT 5
    -> db.accounts.find({"balance": {"$gt": 5000}, "account_type": "Checking"}).limit(5)

Anything outside the grammar (OR, parentheses, projections, joins, trailing
clauses such as ORDER BY or OFFSET) is returned unchanged. Translation never
raises; the store that receives an untranslated statement reports the syntax
failure itself.
"""

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .models import Dialect

logger = logging.getLogger(__name__)


class Comparator(Enum):
    """Comparison operators accepted in a WHERE condition."""

    EQ = "="
    NE = "!="
    GT = ">"
    GTE = ">="
    LT = "<"
    LTE = "<="


# Every Comparator must appear here; EQ maps to plain equality.
DOCUMENT_OPERATORS: dict[Comparator, str | None] = {
    Comparator.EQ: None,
    Comparator.NE: "$ne",
    Comparator.GT: "$gt",
    Comparator.GTE: "$gte",
    Comparator.LT: "$lt",
    Comparator.LTE: "$lte",
}


@dataclass(frozen=True)
class Condition:
    """A single `<field> <comparator> <literal>` constraint."""

    field: str
    comparator: Comparator
    value: Any


@dataclass(frozen=True)
class SelectStatement:
    """Syntax tree of a supported SELECT statement."""

    collection: str
    conditions: tuple[Condition, ...] = ()
    limit: int | None = None


_SELECT = re.compile(
    r"^SELECT\s+\*\s+FROM\s+(\w+)"
    r"(?:\s+WHERE\s+(.+?))?"
    r"(?:\s+LIMIT\s+(\d+))?"
    r"\s*;?\s*$",
    re.IGNORECASE | re.DOTALL,
)
# Longest operators first so ">=" is never read as ">" followed by "=5".
_CONDITION = re.compile(r"^(\w+)\s*(>=|<=|!=|=|>|<)\s*([^<>=!].*)$", re.DOTALL)
_NUMBER = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?$")
_INTEGER = re.compile(r"^[+-]?\d+$")
_AND = re.compile(r"AND", re.IGNORECASE)
_OR = re.compile(r"OR", re.IGNORECASE)


def parse_literal(raw: str) -> Any:
    """Parse a SQL literal.

    'text' or "text" -> str, 123 -> int, 1.5 -> float,
    true/false (any case) -> bool, anything else -> the raw string.
    """
    text = raw.strip()

    if len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"'):
        return text[1:-1]
    if _INTEGER.match(text):
        return int(text)
    if _NUMBER.match(text):
        return float(text)
    if text.lower() == "true":
        return True
    if text.lower() == "false":
        return False
    return text


def _split_conjunction(clause: str) -> list[str] | None:
    """Split a WHERE clause on AND outside of quotes.

    Returns None when the clause uses OR or parentheses outside of quotes.
    """
    parts: list[str] = []
    current: list[str] = []
    quote: str | None = None
    i = 0

    while i < len(clause):
        char = clause[i]
        if quote:
            if char == quote:
                quote = None
            current.append(char)
            i += 1
            continue
        if char in ("'", '"'):
            quote = char
            current.append(char)
            i += 1
            continue
        if char in "()":
            return None

        at_word_start = i == 0 or clause[i - 1].isspace()
        if at_word_start and _OR.match(clause, i) and _word_ends(clause, i + 2):
            return None
        if at_word_start and _AND.match(clause, i) and _word_ends(clause, i + 3):
            parts.append("".join(current).strip())
            current = []
            i += 3
            continue

        current.append(char)
        i += 1

    if quote:
        return None
    parts.append("".join(current).strip())
    return parts


def _word_ends(text: str, index: int) -> bool:
    return index >= len(text) or text[index].isspace()


def _is_single_literal(text: str) -> bool:
    """True for one quoted string or one bare token.

    Unquoted text spanning several tokens is a clause the grammar does not
    cover (ORDER BY, OFFSET, ...), not a value.
    """
    if not text:
        return False
    quote = text[0]
    if quote in ("'", '"'):
        return len(text) >= 2 and text[-1] == quote and quote not in text[1:-1]
    return not any(char.isspace() for char in text)


def parse_condition(text: str) -> Condition | None:
    match = _CONDITION.match(text.strip())
    if not match:
        return None
    field_name, operator, raw_value = match.groups()
    if not _is_single_literal(raw_value.strip()):
        return None
    return Condition(
        field=field_name,
        comparator=Comparator(operator),
        value=parse_literal(raw_value),
    )


def parse_select(query_text: str) -> SelectStatement | None:
    """Parse a supported SELECT statement, or return None."""
    match = _SELECT.match(query_text.strip())
    if not match:
        return None

    collection, where_clause, limit = match.groups()

    conditions: list[Condition] = []
    if where_clause:
        parts = _split_conjunction(where_clause)
        if parts is None or any(not part for part in parts):
            return None
        for part in parts:
            condition = parse_condition(part)
            if condition is None:
                return None
            conditions.append(condition)

    return SelectStatement(
        collection=collection,
        conditions=tuple(conditions),
        limit=int(limit) if limit is not None else None,
    )


def build_filter(conditions: tuple[Condition, ...] | list[Condition]) -> dict[str, Any]:
    """Build a document filter from conjunctive conditions.

    Several constraints on one field are merged into a single operator
    object, promoting a plain equality to ``$eq`` when needed.
    """
    document: dict[str, Any] = {}

    for condition in conditions:
        operator = DOCUMENT_OPERATORS[condition.comparator]
        existing = document.get(condition.field, _MISSING)

        if existing is _MISSING:
            document[condition.field] = (
                condition.value if operator is None else {operator: condition.value}
            )
            continue

        merged = existing if _is_operator_object(existing) else {"$eq": existing}
        merged = dict(merged)
        merged[operator or "$eq"] = condition.value
        document[condition.field] = merged

    return document


_MISSING = object()


def _is_operator_object(value: Any) -> bool:
    return isinstance(value, dict) and all(
        isinstance(key, str) and key.startswith("$") for key in value
    )


def render_document_query(statement: SelectStatement) -> str:
    """Render a syntax tree as document call syntax."""
    rendered = f"db.{statement.collection}.find({json.dumps(build_filter(statement.conditions))})"
    if statement.limit is not None:
        rendered += f".limit({statement.limit})"
    return rendered


def translate_to_document(query_text: str) -> str:
    """Rewrite a relational query for a document store, or return it unchanged."""
    try:
        statement = parse_select(query_text)
    except Exception as e:
        logger.warning(f"Translation failed, passing query through: {e}")
        return query_text

    if statement is None:
        logger.debug("Query outside translatable grammar, passing through unchanged")
        return query_text

    return render_document_query(statement)


def translate(query_text: str, source: Dialect, target: Dialect) -> str:
    """Translate query text between dialects where supported.

    Only relational to document is supported; every other pair, including
    document to document, is the identity.
    """
    if source == Dialect.RELATIONAL and target == Dialect.DOCUMENT:
        return translate_to_document(query_text)
    return query_text
