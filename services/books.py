from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

from book import Book
from errors import DuplicateKeyError, NotFoundError, ValidationError, store_operation
from services.base import ResourceQuery, ResourceService
from utils.validators import IdValidator

logger = logging.getLogger(__name__)

BOOK_FIELDS = ("title", "author", "isbn", "available", "quantity", "category", "publicationYear")
# null is ignored for these on update
REQUIRED_FIELDS = ("title", "author", "available", "quantity")


class BookService(ResourceService):
    query = ResourceQuery(
        name="Book",
        filter_fields=frozenset({"category", "available"}),
        search_fields=("title", "author"),
        projection={field: 1 for field in BOOK_FIELDS},
        sort=(("createdAt", -1),),
    )

    def __init__(self, collection, loans, **kwargs) -> None:
        super().__init__(collection, **kwargs)
        self.loans = loans

    def _ensure_isbn_free(self, isbn: Optional[str], exclude_id=None) -> None:
        if not isbn:
            return
        query: Dict[str, Any] = {"isbn": isbn}
        if exclude_id is not None:
            query["_id"] = {"$ne": exclude_id}
        if self.collection.find_one(query, {"_id": 1}) is not None:
            raise DuplicateKeyError("isbn")

    @store_operation
    def create(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        if not data.get("title") or not data.get("author"):
            raise ValidationError("Missing required fields: title, author")
        book = Book.from_dict(data)
        self._ensure_isbn_free(book.isbn)
        doc = book.to_document()
        result = self.collection.insert_one(doc)
        logger.info(f"Book added: {book}")
        return {"_id": result.inserted_id, **{k: doc[k] for k in BOOK_FIELDS if k in doc}}

    @store_operation
    def update(self, book_id: Any, data: Mapping[str, Any]) -> Dict[str, Any]:
        oid = IdValidator.to_object_id(book_id)
        changes = {
            k: v for k, v in data.items()
            if k in BOOK_FIELDS and not (v is None and k in REQUIRED_FIELDS)
        }
        for name in ("title", "author"):
            if name in changes:
                if not str(changes[name]).strip():
                    raise ValidationError(f"{name} cannot be empty")
                changes[name] = changes[name].strip()
        unset = []
        if "isbn" in changes:
            if changes["isbn"] and changes["isbn"].strip():
                changes["isbn"] = changes["isbn"].strip()
                self._ensure_isbn_free(changes["isbn"], exclude_id=oid)
            else:
                # clearing an isbn removes the key so the sparse unique index ignores it
                changes.pop("isbn")
                unset.append("isbn")
        book = self.update_fields(oid, changes, unset=unset)
        if book is None:
            raise NotFoundError("Book not found")
        return book

    def before_delete(self, oid) -> None:
        if self.loans.find_one({"bookId": oid, "returned": False}, {"_id": 1}) is not None:
            raise ValidationError("Book has active loans")

    @store_operation
    def stats_by_category(self) -> list:
        pipeline = [
            {
                "$group": {
                    "_id": "$category",
                    "total": {"$sum": 1},
                    "available": {"$sum": {"$cond": ["$available", 1, 0]}},
                }
            },
            {"$sort": {"total": -1}},
        ]
        return list(self.collection.aggregate(pipeline))
