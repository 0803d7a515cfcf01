"""Query construction helpers shared by the member, book and loan services.

These functions turn raw request parameters into MongoDB filter documents and
pagination offsets, and wrap result pages in the envelope every list
endpoint returns.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_LIMIT = 100

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


@dataclass(frozen=True)
class Pagination:
    page: int
    limit: int
    offset: int


def build_filter(params: Mapping[str, Any], allowed_fields: Iterable[str]) -> Dict[str, Any]:
    """Build an equality filter from ``params`` restricted to ``allowed_fields``.

    ``"true"`` and ``"false"`` are coerced to booleans; every other value is
    kept as-is. Keys outside the allow-list are ignored so callers cannot
    inject arbitrary fields or operators into the query.
    """
    query: Dict[str, Any] = {}
    for field in allowed_fields:
        if field not in params or params[field] is None:
            continue
        value = params[field]
        if value == "true":
            query[field] = True
        elif value == "false":
            query[field] = False
        else:
            query[field] = value
    return query


def build_search_filter(term: Optional[str], fields: Sequence[str]) -> Dict[str, Any]:
    """Match documents where any of ``fields`` contains ``term`` (case-insensitive)."""
    if not term or not fields:
        return {}
    pattern = re.escape(term)
    return {"$or": [{field: {"$regex": pattern, "$options": "i"}} for field in fields]}


def combine_filters(*filters: Mapping[str, Any]) -> Dict[str, Any]:
    """AND together filter documents, dropping the empty ones."""
    parts = [dict(f) for f in filters if f]
    if not parts:
        return {}
    if len(parts) == 1:
        return parts[0]
    return {"$and": parts}


def _parse_int(raw: Any) -> Optional[int]:
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float):
        return int(raw) if math.isfinite(raw) else None
    match = _LEADING_INT.match(str(raw))
    return int(match.group(1)) if match else None


def resolve_pagination(
    page: Any = None,
    limit: Any = None,
    *,
    default_limit: int = DEFAULT_LIMIT,
    max_limit: int = MAX_LIMIT,
) -> Pagination:
    """Normalize raw page/limit inputs.

    Unparseable, missing or zero values fall back to the defaults; the page is
    at least 1 and the limit is clamped to ``[1, max_limit]``.
    """
    parsed_page = _parse_int(page) or DEFAULT_PAGE
    parsed_limit = _parse_int(limit) or default_limit
    resolved_page = max(1, parsed_page)
    resolved_limit = min(max_limit, max(1, parsed_limit))
    return Pagination(
        page=resolved_page,
        limit=resolved_limit,
        offset=(resolved_page - 1) * resolved_limit,
    )


def format_paginated_response(data: List[Any], total: int, page: int, limit: int) -> Dict[str, Any]:
    return {
        "data": data,
        "pagination": {
            "total": total,
            "page": page,
            "limit": limit,
            "pages": math.ceil(total / limit) if limit else 0,
        },
    }
