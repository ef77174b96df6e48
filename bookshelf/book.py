from __future__ import annotations

import uuid
from typing import Any, Dict, Optional


class Book:
    """Represents a single book record on the shelf."""

    # Fields a partial update may touch; ``id`` is deliberately absent.
    MUTABLE_FIELDS = ("name", "author", "publisher", "price", "favorite")

    def __init__(self, name: str, author: str, publisher: str, price: float,
                 favorite: Optional[str] = None, id: Optional[str] = None) -> None:
        self._id = id or str(uuid.uuid4())
        self.name = name
        self.author = author
        self.publisher = publisher
        self.price = price
        self.favorite = favorite

    @property
    def id(self) -> str:
        return self._id

    @property
    def is_favorite(self) -> bool:
        return bool(self.favorite)

    def __str__(self) -> str:
        return f"{self.name} by {self.author} ({self.publisher})"

    def __repr__(self) -> str:
        return f"Book(id={self.id!r}, name={self.name!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Book):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    __hash__ = None  # mutable record

    def merge(self, fields: Dict[str, Any]) -> "Book":
        """Copy the supplied fields onto this book and return it.

        Keys are checked against ``MUTABLE_FIELDS`` before any assignment, so a
        bad key leaves the record untouched.
        """
        unknown = [key for key in fields if key not in self.MUTABLE_FIELDS]
        if unknown:
            raise ValueError(f"Cannot update field(s): {', '.join(sorted(unknown))}")
        for key, value in fields.items():
            setattr(self, key, value)
        return self

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "author": self.author,
            "publisher": self.publisher,
            "price": self.price,
        }
        if self.favorite is not None:
            data["favorite"] = self.favorite
        return data

    @staticmethod
    def from_dict(data: dict) -> "Book":
        return Book(
            name=data["name"],
            author=data["author"],
            publisher=data["publisher"],
            price=data["price"],
            favorite=data.get("favorite"),
            id=data["id"],
        )
