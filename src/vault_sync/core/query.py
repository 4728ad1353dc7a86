"""Compile ``QueryMatch`` groups into the remote store's query language.

Predicates inside a match are joined with ``and``; matches are joined with
``or``.  Every query is scoped to one vault and excludes trashed objects::

    ((name='a' and 'root' in parents) or (modifiedTime>'...'))
        and trashed=false
        and properties has { key='vault' and value='Notes' }
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timezone

from .models import QueryMatch


def quote(value: str) -> str:
    """Quote a string literal, escaping backslashes and single quotes."""
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def format_time(value: datetime) -> str:
    """Format a datetime as RFC 3339 in UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def property_predicate(key: str, value: str) -> str:
    return f"properties has {{ key={quote(key)} and value={quote(value)} }}"


def match_predicates(match: QueryMatch) -> list[str]:
    """Return the predicates of one match in a stable order."""
    parts: list[str] = []
    if match.name is not None:
        parts.append(f"name={quote(match.name)}")
    if match.name_contains is not None:
        parts.append(f"name contains {quote(match.name_contains)}")
    if match.mime_type is not None:
        parts.append(f"mimeType={quote(match.mime_type)}")
    if match.not_mime_type is not None:
        parts.append(f"mimeType!={quote(match.not_mime_type)}")
    if match.parent is not None:
        parts.append(f"{quote(match.parent)} in parents")
    if match.starred is not None:
        parts.append(f"starred={str(match.starred).lower()}")
    if match.full_text is not None:
        parts.append(f"fullText contains {quote(match.full_text)}")
    for key, value in sorted(match.properties.items()):
        parts.append(property_predicate(key, value))
    if match.modified_after is not None:
        parts.append(f"modifiedTime>{quote(format_time(match.modified_after))}")
    if match.modified_before is not None:
        parts.append(
            f"modifiedTime<{quote(format_time(match.modified_before))}"
        )
    return parts


def compile_query(
    matches: Sequence[QueryMatch] | None, vault_name: str
) -> str:
    """Build the full query expression for a search.

    Args:
        matches: OR-ed groups of predicates. ``None`` or empty means
            "everything in the vault".
        vault_name: Vault scope applied to every query.

    Returns:
        Query string ready to be sent as the ``q`` parameter.
    """
    scope = f"trashed=false and {property_predicate('vault', vault_name)}"
    groups = [match_predicates(m) for m in matches or []]
    groups = [g for g in groups if g]
    if not groups:
        return scope
    ored = " or ".join(f"({' and '.join(g)})" for g in groups)
    return f"({ored}) and {scope}"
