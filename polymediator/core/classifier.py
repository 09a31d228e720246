"""Dialect classification for incoming query text.

Precedence is fixed: document call syntax, then relational keywords, then
key-value verbs. Text matching none of them is treated as relational.
"""

import logging
import re

from .models import Dialect

logger = logging.getLogger(__name__)

DOCUMENT_CALL = re.compile(r"^\w+\.\w+\.\w+\s*\(", re.DOTALL)
RELATIONAL_KEYWORDS = ("SELECT", "INSERT", "UPDATE", "DELETE", "WITH")
KEY_VALUE_VERBS = ("GET", "SET", "KEYS", "HGETALL", "LPUSH", "RPUSH", "SADD")

_RELATIONAL_PREFIX = re.compile(
    rf"^(?:{'|'.join(RELATIONAL_KEYWORDS)})(?:\s|$)", re.IGNORECASE
)
_KEY_VALUE_PREFIX = re.compile(
    rf"^(?:{'|'.join(KEY_VALUE_VERBS)})(?:\s|$)", re.IGNORECASE
)


def classify(query_text: str) -> Dialect:
    """Return the dialect a query is written in.

    Never raises and never blocks.
    """
    text = query_text.strip()

    if DOCUMENT_CALL.match(text):
        return Dialect.DOCUMENT
    if _RELATIONAL_PREFIX.match(text):
        return Dialect.RELATIONAL
    if _KEY_VALUE_PREFIX.match(text):
        return Dialect.KEY_VALUE

    logger.debug(
        "Ambiguous query text, defaulting to relational",
        extra={"query_prefix": text[:40]},
    )
    return Dialect.RELATIONAL
