"""Query signatures for grouping recurring query shapes.

A signature is a soft performance-grouping key, not a correctness key:
two different queries that normalize to the same prefix share a profile,
and that is acceptable.
"""

import hashlib
import re

MAX_NORMALIZED_LENGTH = 100

_WHITESPACE = re.compile(r"\s+")
_SIGNATURE = re.compile(r"q_[0-9a-f]{16}")


class QuerySignature:
    """Produces stable signatures from query text.

    No external dependencies, pure function over strings.
    All methods are static as the class carries no state.
    """

    @staticmethod
    def normalize(query_text: str) -> str:
        """Lower-case, collapse whitespace, strip, and cap the length.

        'SELECT *\\n   FROM Accounts ' -> 'select * from accounts'
        """
        collapsed = _WHITESPACE.sub(" ", query_text.lower()).strip()
        return collapsed[:MAX_NORMALIZED_LENGTH]

    @staticmethod
    def of(query_text: str) -> str:
        """Hash the normalized text. Same normalized text, same signature."""
        normalized = QuerySignature.normalize(query_text)
        digest = hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:16]
        return f"q_{digest}"

    @staticmethod
    def is_signature(value: str) -> bool:
        """True if value has the shape of a signature produced by of()."""
        return _SIGNATURE.fullmatch(value) is not None
