from __future__ import annotations

from datetime import datetime, timezone

from bson import ObjectId


class Loan:
    """A borrowing of one book by one member.

    A loan starts active (``returned`` false, ``isOverdue`` false) and moves to
    returned exactly once. ``isOverdue`` is a stored flag maintained by the
    overdue refresh, not derived from the due date on read.
    """

    def __init__(self, user_id: ObjectId, book_id: ObjectId, due_date: datetime,
                 borrow_date: datetime | None = None) -> None:
        self.user_id = user_id
        self.book_id = book_id
        self.due_date = due_date
        self.borrow_date = borrow_date or datetime.now(timezone.utc).replace(tzinfo=None)
        self.returned = False
        self.is_overdue = False

    def to_document(self) -> dict:
        now = datetime.now(timezone.utc).replace(tzinfo=None)
        return {
            "userId": self.user_id,
            "bookId": self.book_id,
            "borrowDate": self.borrow_date,
            "dueDate": self.due_date,
            "returned": self.returned,
            "isOverdue": self.is_overdue,
            "createdAt": now,
            "updatedAt": now,
        }
