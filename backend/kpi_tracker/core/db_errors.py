from __future__ import annotations

RECURSIVE_RLS_MESSAGE = "stack depth limit exceeded"
RECURSIVE_RLS_HINT = (
    "Database RLS recursion detected. Apply the latest migrations (alembic upgrade head) "
    "and check row-level security policies that query their own table."
)


def format_database_error(message: str | None) -> str:
    """Return the storage error text shown to users.

    Only the RLS recursion failure is rewritten (into an operator hint); any
    other database message is passed through unchanged.
    """

    text = str(message or "")
    if RECURSIVE_RLS_MESSAGE in text.lower():
        return RECURSIVE_RLS_HINT
    return text
