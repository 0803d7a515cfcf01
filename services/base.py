"""Common query composition for the resource services."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from pymongo import ReturnDocument
from pymongo.collection import Collection

from errors import NotFoundError, store_operation
from utils.query import (
    DEFAULT_LIMIT,
    MAX_LIMIT,
    Pagination,
    build_filter,
    build_search_filter,
    combine_filters,
    format_paginated_response,
    resolve_pagination,
)
from utils.validators import IdValidator

logger = logging.getLogger(__name__)

Sort = Tuple[Tuple[str, int], ...]


@dataclass(frozen=True)
class ResourceQuery:
    """Fixed query shape of one resource type."""
    name: str
    filter_fields: FrozenSet[str]
    search_fields: Tuple[str, ...] = ()
    id_fields: FrozenSet[str] = field(default_factory=frozenset)
    projection: Optional[Mapping[str, int]] = None
    sort: Sort = ()


def utcnow() -> datetime:
    # naive UTC, the form pymongo returns stored dates in
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc(value: Any) -> datetime:
    """Coerce an ISO string or datetime to naive UTC."""
    if isinstance(value, str):
        value = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if not isinstance(value, datetime):
        raise TypeError(f"Not a date: {value!r}")
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class ResourceService:
    """Filter, search and paginate one collection according to a ``ResourceQuery``."""

    query: ResourceQuery

    def __init__(self, collection: Collection, *, default_limit: int = DEFAULT_LIMIT,
                 max_limit: int = MAX_LIMIT) -> None:
        self.collection = collection
        self.default_limit = default_limit
        self.max_limit = max_limit

    # ------------------------- Query composition ------------------------- #
    def build_query(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        """Combine the allow-listed filters and the free-text search with AND."""
        filters = build_filter(params, sorted(self.query.filter_fields))
        for name in self.query.id_fields.intersection(filters):
            filters[name] = IdValidator.to_object_id(filters[name])
        search = build_search_filter(params.get("search"), self.query.search_fields)
        return combine_filters(filters, search)

    def paginate(self, params: Mapping[str, Any], default_limit: Optional[int] = None) -> Pagination:
        return resolve_pagination(
            params.get("page"),
            params.get("limit"),
            default_limit=default_limit or self.default_limit,
            max_limit=self.max_limit,
        )

    def find_page(self, query: Mapping[str, Any], pagination: Pagination,
                  projection: Optional[Mapping[str, int]] = None,
                  sort: Optional[Sort] = None) -> Tuple[List[dict], int]:
        """Return one page of lean documents plus the total number of matches."""
        cursor = self.collection.find(query, projection if projection is not None else self.query.projection)
        sort = sort if sort is not None else self.query.sort
        if sort:
            cursor = cursor.sort(list(sort))
        docs = list(cursor.skip(pagination.offset).limit(pagination.limit))
        total = self.collection.count_documents(query)
        return docs, total

    def present(self, docs: List[dict]) -> List[dict]:
        """Hook for services that enrich documents before they are returned."""
        return docs

    # ------------------------- Core operations ------------------------- #
    @store_operation
    def list(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        query = self.build_query(params)
        pagination = self.paginate(params)
        docs, total = self.find_page(query, pagination)
        logger.debug(f"{self.query.name} list: query={query} page={pagination.page} total={total}")
        return format_paginated_response(self.present(docs), total, pagination.page, pagination.limit)

    @store_operation
    def get(self, doc_id: Any) -> dict:
        doc = self.collection.find_one({"_id": IdValidator.to_object_id(doc_id)}, self.query.projection)
        if doc is None:
            raise NotFoundError(f"{self.query.name} not found")
        return self.present([doc])[0]

    @store_operation
    def delete(self, doc_id: Any) -> dict:
        oid = IdValidator.to_object_id(doc_id)
        self.before_delete(oid)
        result = self.collection.delete_one({"_id": oid})
        if result.deleted_count == 0:
            raise NotFoundError(f"{self.query.name} not found")
        logger.info(f"{self.query.name} {oid} deleted")
        return {"message": f"{self.query.name} deleted"}

    def before_delete(self, oid) -> None:
        """Hook run before a delete; raise to refuse it."""

    def update_fields(self, doc_id: Any, changes: Mapping[str, Any],
                      match: Optional[Mapping[str, Any]] = None,
                      unset: Iterable[str] = ()) -> Optional[dict]:
        """``$set`` ``changes`` on the document and return it, or None if nothing matched."""
        selector = {"_id": IdValidator.to_object_id(doc_id)}
        if match:
            selector.update(match)
        update: Dict[str, Any] = {"$set": {**changes, "updatedAt": utcnow()}}
        if unset:
            update["$unset"] = {name: "" for name in unset}
        return self.collection.find_one_and_update(
            selector,
            update,
            projection=self.query.projection,
            return_document=ReturnDocument.AFTER,
        )
