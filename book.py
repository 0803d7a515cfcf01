from __future__ import annotations

from datetime import datetime, timezone


class Book:
    """A single title held by the library."""

    def __init__(self, title: str, author: str, isbn: str | None = None, available: bool = True,
                 quantity: int = 1, category: str | None = None, publication_year: int | None = None,
                 created_at: datetime | None = None, updated_at: datetime | None = None) -> None:
        self.title = title.strip()
        self.author = author.strip()
        self.isbn = isbn.strip() if isbn and isbn.strip() else None
        self.available = available
        self.quantity = quantity
        self.category = category
        self.publication_year = publication_year
        now = datetime.now(timezone.utc).replace(tzinfo=None)
        self.created_at = created_at or now
        self.updated_at = updated_at or self.created_at

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} (ISBN: {self.isbn})"

    def to_document(self) -> dict:
        doc = {
            "title": self.title,
            "author": self.author,
            "available": self.available,
            "quantity": self.quantity,
            "category": self.category,
            "publicationYear": self.publication_year,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
        # absent isbn must not be stored so the sparse unique index skips it
        if self.isbn:
            doc["isbn"] = self.isbn
        return doc

    @staticmethod
    def from_dict(data: dict) -> "Book":
        return Book(
            title=data["title"],
            author=data["author"],
            isbn=data.get("isbn"),
            available=data.get("available", True),
            quantity=data.get("quantity", 1),
            category=data.get("category"),
            publication_year=data.get("publicationYear"),
        )
