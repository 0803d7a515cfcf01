from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

from errors import NotFoundError, ValidationError, store_operation
from loan import Loan
from services.base import ResourceQuery, ResourceService, as_utc, utcnow
from utils.query import build_filter, format_paginated_response
from utils.validators import IdValidator

logger = logging.getLogger(__name__)

# Fields of the referenced documents copied into loan reads.
MEMBER_DETAIL = ("name", "email", "studentId", "role")
BOOK_DETAIL = ("title", "author", "isbn", "category")
MEMBER_BRIEF = ("name", "email")
BOOK_BRIEF = ("title", "author")
MEMBER_CONTACT = ("name", "email", "phone")
BOOK_SHELF = ("title", "author", "category")

OVERDUE_QUERY = {"isOverdue": True, "returned": False}
DATE_FIELDS = ("dueDate", "borrowDate", "returnDate")


def _coerce_dates(data: Mapping[str, Any]) -> Dict[str, Any]:
    coerced = dict(data)
    for name in DATE_FIELDS:
        if coerced.get(name) is None:
            continue
        try:
            coerced[name] = as_utc(coerced[name])
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Invalid date for {name}") from e
    return coerced


class LoanService(ResourceService):
    query = ResourceQuery(
        name="Loan",
        filter_fields=frozenset({"returned", "userId", "bookId", "isOverdue"}),
        id_fields=frozenset({"userId", "bookId"}),
        sort=(("borrowDate", -1),),
    )

    def __init__(self, collection, members, books, **kwargs) -> None:
        super().__init__(collection, **kwargs)
        self.members = members
        self.books = books

    # ------------------------- Reference resolution ------------------------- #
    def _lookup(self, collection, ids: Iterable[Any], fields: Iterable[str]) -> Dict[Any, dict]:
        wanted = {i for i in ids if i is not None}
        if not wanted:
            return {}
        projection = {name: 1 for name in fields}
        return {doc["_id"]: doc for doc in collection.find({"_id": {"$in": list(wanted)}}, projection)}

    def resolve(self, docs: List[dict], member_fields: Optional[Iterable[str]] = MEMBER_DETAIL,
                book_fields: Optional[Iterable[str]] = BOOK_DETAIL) -> List[dict]:
        """Replace userId/bookId with partial snapshots of the referenced documents.

        One query per referenced collection per page; a reference to a deleted
        document resolves to None.
        """
        if member_fields is not None:
            members = self._lookup(self.members, (d.get("userId") for d in docs), member_fields)
            for doc in docs:
                doc["userId"] = members.get(doc.get("userId"))
        if book_fields is not None:
            books = self._lookup(self.books, (d.get("bookId") for d in docs), book_fields)
            for doc in docs:
                doc["bookId"] = books.get(doc.get("bookId"))
        return docs

    def present(self, docs: List[dict]) -> List[dict]:
        return self.resolve(docs)

    def _page(self, query: Mapping[str, Any], params: Mapping[str, Any], sort, member_fields,
              book_fields, default_limit: Optional[int] = None) -> Dict[str, Any]:
        pagination = self.paginate(params, default_limit=default_limit)
        docs, total = self.find_page(query, pagination, sort=sort)
        docs = self.resolve(docs, member_fields, book_fields)
        return format_paginated_response(docs, total, pagination.page, pagination.limit)

    # ------------------------- Writes ------------------------- #
    @store_operation
    def create(self, data: Mapping[str, Any]) -> dict:
        missing = [f for f in ("userId", "bookId", "dueDate") if not data.get(f)]
        if missing:
            raise ValidationError("Missing required fields: userId, bookId, dueDate", details=missing)
        data = _coerce_dates(data)
        user_id = IdValidator.to_object_id(data["userId"])
        book_id = IdValidator.to_object_id(data["bookId"])
        if self.members.find_one({"_id": user_id}, {"_id": 1}) is None:
            raise ValidationError("Member does not exist")
        if self.books.find_one({"_id": book_id}, {"_id": 1}) is None:
            raise ValidationError("Book does not exist")

        loan = Loan(user_id=user_id, book_id=book_id, due_date=data["dueDate"], borrow_date=data.get("borrowDate"))
        doc = loan.to_document()
        result = self.collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        logger.info(f"Loan {result.inserted_id} created: book {book_id} -> member {user_id}")
        return self.resolve([doc], MEMBER_BRIEF, BOOK_BRIEF)[0]

    @store_operation
    def update(self, loan_id: Any, data: Mapping[str, Any]) -> dict:
        oid = IdValidator.to_object_id(loan_id)
        current = self.collection.find_one({"_id": oid}, {"returned": 1})
        if current is None:
            raise NotFoundError("Loan not found")

        # none of the updatable loan fields may be cleared
        changes = _coerce_dates({
            k: v for k, v in data.items()
            if k in ("dueDate", "returned", "returnDate", "isOverdue") and v is not None
        })
        if current.get("returned") and changes.get("returned") is False:
            raise ValidationError("A returned loan cannot be reopened")
        if changes.get("returned") and not current.get("returned") and not changes.get("returnDate"):
            changes["returnDate"] = utcnow()
        if changes.get("returnDate") and not current.get("returned"):
            changes["returned"] = True

        match = None if current.get("returned") else {"returned": False}
        loan = self.update_fields(oid, changes, match=match)
        if loan is None:
            # returned concurrently between the read and the write
            raise ValidationError("A returned loan cannot be reopened")
        if changes.get("returned") and not current.get("returned"):
            logger.info(f"Loan {oid} returned")
        return self.resolve([loan], MEMBER_BRIEF, BOOK_BRIEF)[0]

    @store_operation
    def return_loan(self, loan_id: Any, return_date: Optional[datetime] = None) -> dict:
        """Move an active loan to returned, stamping the return date."""
        oid = IdValidator.to_object_id(loan_id)
        loan = self.update_fields(
            oid,
            {"returned": True, "returnDate": as_utc(return_date) if return_date else utcnow()},
            match={"returned": False},
        )
        if loan is None:
            if self.collection.find_one({"_id": oid}, {"_id": 1}) is None:
                raise NotFoundError("Loan not found")
            raise ValidationError("Loan already returned")
        logger.info(f"Loan {oid} returned")
        return self.resolve([loan], MEMBER_BRIEF, BOOK_BRIEF)[0]

    @store_operation
    def refresh_overdue(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Recompute the stored isOverdue flag from dueDate.

        Active loans past their due date are flagged; returned loans are cleared.
        """
        now = as_utc(now) if now else utcnow()
        flagged = self.collection.update_many(
            {"returned": False, "isOverdue": False, "dueDate": {"$lt": now}},
            {"$set": {"isOverdue": True, "updatedAt": now}},
        )
        cleared = self.collection.update_many(
            {"returned": True, "isOverdue": True},
            {"$set": {"isOverdue": False, "updatedAt": now}},
        )
        logger.info(f"Overdue refresh: {flagged.modified_count} flagged, {cleared.modified_count} cleared")
        return {"flagged": flagged.modified_count, "cleared": cleared.modified_count}

    # ------------------------- Reads ------------------------- #
    @store_operation
    def list_for_member(self, member_id: Any, params: Mapping[str, Any]) -> Dict[str, Any]:
        query = {"userId": IdValidator.to_object_id(member_id), **build_filter(params, ["returned"])}
        return self._page(query, params, self.query.sort, None, BOOK_SHELF)

    @store_operation
    def overdue_report(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        return self._page(OVERDUE_QUERY, params, (("dueDate", 1),), MEMBER_CONTACT, BOOK_BRIEF)

    @store_operation
    def list_borrowed(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        """Unfiltered loan listing with brief member/book details."""
        return self._page({}, params, self.query.sort, MEMBER_BRIEF, BOOK_BRIEF, default_limit=20)

    @store_operation
    def summary(self) -> Dict[str, int]:
        pipeline = [
            {
                "$facet": {
                    "activeLoans": [{"$match": {"returned": False}}, {"$count": "total"}],
                    "returnedLoans": [{"$match": {"returned": True}}, {"$count": "total"}],
                    "overdueLoans": [{"$match": OVERDUE_QUERY}, {"$count": "total"}],
                }
            }
        ]
        facets = next(iter(self.collection.aggregate(pipeline)), {})
        counts = {}
        for name in pipeline[0]["$facet"]:
            rows = facets.get(name) or []
            counts[name] = rows[0]["total"] if rows else 0
        return counts
