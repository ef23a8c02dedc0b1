from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from typing import Any


def new_id() -> str:
    return uuid.uuid4().hex


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _load_extra(raw: Any) -> dict:
    # SQLite stores the opaque payload as a JSON string
    if raw is None or raw == "":
        return {}
    if isinstance(raw, dict):
        return dict(raw)
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        return {}
    return value if isinstance(value, dict) else {}


def dump_extra(extra: dict | None) -> str | None:
    return json.dumps(extra, sort_keys=True, default=str) if extra else None


class Book:
    """A catalog entry and its count of copies available for loan."""

    def __init__(self, title: str, author: str | None = None, category: str | None = None, quantity: int = 0,
                 image: str | None = None, rating: float | None = None, description: str | None = None,
                 extra: dict | None = None, id: str | None = None, created_at: str | None = None) -> None:
        if quantity < 0:
            raise ValueError("Quantity cannot be negative.")
        self.id = id or new_id()
        self.title = title.strip()
        self.author = author.strip() if author else author
        self.category = category
        self.quantity = int(quantity)
        self.image = image
        self.rating = rating
        self.description = description
        # Anything a client sends beyond the typed fields; not interpreted here
        self.extra = dict(extra or {})
        self.created_at = created_at or utc_now()

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} ({self.quantity} available)"

    def to_dict(self) -> dict:
        return {
            "_id": self.id,
            "title": self.title,
            "author": self.author,
            "category": self.category,
            "quantity": self.quantity,
            "image": self.image,
            "rating": self.rating,
            "description": self.description,
            "extra": self.extra,
            "createdAt": self.created_at,
        }

    @staticmethod
    def from_row(row) -> "Book":
        data = dict(row)
        return Book(
            id=data["id"],
            title=data["title"],
            author=data.get("author"),
            category=data.get("category"),
            quantity=data.get("quantity") or 0,
            image=data.get("image"),
            rating=data.get("rating"),
            description=data.get("description"),
            extra=_load_extra(data.get("extra")),
            created_at=data.get("created_at"),
        )


class Category:
    def __init__(self, name: str, id: str | None = None, created_at: str | None = None) -> None:
        self.id = id or new_id()
        self.name = name.strip()
        self.created_at = created_at or utc_now()

    def to_dict(self) -> dict:
        return {"_id": self.id, "name": self.name}

    @staticmethod
    def from_row(row) -> "Category":
        data = dict(row)
        return Category(name=data["name"], id=data["id"], created_at=data.get("created_at"))


class LoanRecord:
    """An active loan of one copy of a book to one borrower.

    Created by a successful borrow, deleted by the matching return. Never
    updated in place.
    """

    def __init__(self, book_id: str, email: str, return_date: str | None = None, extra: dict | None = None,
                 id: str | None = None, created_at: str | None = None) -> None:
        self.id = id or new_id()
        self.book_id = book_id
        self.email = email
        self.return_date = return_date
        self.extra = dict(extra or {})
        self.created_at = created_at or utc_now()

    def to_dict(self) -> dict:
        return {
            "_id": self.id,
            "bookId": self.book_id,
            "email": self.email,
            "returnDate": self.return_date,
            "extra": self.extra,
            "createdAt": self.created_at,
        }

    @staticmethod
    def from_row(row) -> "LoanRecord":
        data = dict(row)
        return LoanRecord(
            id=data["id"],
            book_id=data["book_id"],
            email=data["email"],
            return_date=data.get("return_date"),
            extra=_load_extra(data.get("extra")),
            created_at=data.get("created_at"),
        )
