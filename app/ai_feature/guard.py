"""
Read-only policy for SQL submitted by the model.

This is a coarse keyword filter, not a parser. The statement is normalized
(trimmed, uppercased, whitespace collapsed) and rejected when it contains any
denylisted keyword as a substring. It rejects some legitimate SELECTs (a column
named created_at contains CREATE) and cannot prove a statement is harmless, so
the executor also runs queries inside a read-only transaction where the
database supports it.
"""

import re

from app.core.exceptions import QueryRejected

FORBIDDEN_KEYWORDS = (
    "INSERT",
    "UPDATE",
    "DELETE",
    "DROP",
    "ALTER",
    "TRUNCATE",
    "CREATE",
    "GRANT",
    "REVOKE",
    "EXEC ",
    "EXECUTE ",
)

_WHITESPACE = re.compile(r"\s+")


def normalize(raw: str) -> str:
    return _WHITESPACE.sub(" ", raw.strip()).upper()


def validate_query(raw: str) -> None:
    """Raise QueryRejected unless `raw` passes the read-only policy."""
    normalized = normalize(raw)
    if not normalized:
        raise QueryRejected("forbidden: query is empty")

    # Trailing space so a statement ending in EXEC still matches "EXEC "
    padded = normalized + " "
    for keyword in FORBIDDEN_KEYWORDS:
        if keyword in padded:
            name = keyword.strip()
            raise QueryRejected(
                f"forbidden: only SELECT queries are allowed, found '{name}'",
                keyword=name,
            )
