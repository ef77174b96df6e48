"""Storage backends for the bookshelf.

Two interchangeable implementations of the same asynchronous CRUD contract:

- ``InMemoryBookDB`` keeps books in a list owned by the instance.
- ``JsonFileBookDB`` caches a ``{"books": [...]}`` JSON document and rewrites
  the whole file after every mutation.

A record that does not exist is never an error here: ``get_books`` answers an
empty list for an unknown id, ``update_book``/``delete_book`` answer ``None``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union
from urllib.parse import parse_qsl, unquote

from bookshelf.book import Book

logger = logging.getLogger(__name__)

BookResult = Union[Book, List[Book]]


def extract_search_term(query: str) -> str:
    """Pull the name search term out of a raw query string.

    ``"name=sherlock%20holmes"`` and ``"?name=sherlock"`` give the ``name``
    value; without a ``name`` key the last parameter's value is used, and a
    string with no ``=`` at all is taken as the term itself.
    """
    raw = query[1:] if query.startswith("?") else query
    if "=" not in raw:
        return unquote(raw)
    pairs = parse_qsl(raw, keep_blank_values=True)
    if not pairs:
        return ""
    named = [value for key, value in pairs if key == "name"]
    return named[-1] if named else pairs[-1][1]


class BookDB(ABC):
    """Asynchronous CRUD contract shared by every backend."""

    @property
    @abstractmethod
    def books(self) -> List[Book]:
        """Working collection, in insertion order."""

    async def get_books(self, book_id: Optional[str] = None,
                        search: Optional[str] = None) -> BookResult:
        """Return one book by id, the books matching a name search, or all books.

        The id takes priority over the search string. An unknown id gives an
        empty list.
        """
        if book_id:
            book = self._find(book_id)
            return book if book is not None else []
        if search:
            term = extract_search_term(search)
            return [book for book in self.books if term in book.name]
        return list(self.books)

    @abstractmethod
    async def add_book(self, book: Book) -> Book:
        """Append an already validated book and return it."""

    @abstractmethod
    async def update_book(self, book_id: str, fields: Dict[str, Any]) -> Optional[Book]:
        """Merge ``fields`` into the book with ``book_id``; ``None`` when absent."""

    @abstractmethod
    async def delete_book(self, book_id: str) -> Optional[str]:
        """Remove the book with ``book_id`` and return the id; ``None`` when absent."""

    async def count(self) -> int:
        return len(self.books)

    def _find(self, book_id: str) -> Optional[Book]:
        return next((book for book in self.books if book.id == book_id), None)


class InMemoryBookDB(BookDB):
    """Books kept in a list for the lifetime of the instance."""

    def __init__(self) -> None:
        self._storage: List[Book] = []

    @property
    def books(self) -> List[Book]:
        return self._storage

    async def add_book(self, book: Book) -> Book:
        self._storage.append(book)
        return book

    async def update_book(self, book_id: str, fields: Dict[str, Any]) -> Optional[Book]:
        book = self._find(book_id) if book_id else None
        if book is None:
            return None
        return book.merge(fields)

    async def delete_book(self, book_id: str) -> Optional[str]:
        if self._find(book_id) is None:
            return None
        self._storage = [book for book in self._storage if book.id != book_id]
        return book_id


class JsonFileBookDB(BookDB):
    """Books cached from, and written back to, a single JSON document.

    Build instances with ``await JsonFileBookDB.open(path)``; the constructor
    does no I/O. Reads are served from the cache only.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)
        self._data: Dict[str, List[Book]] = {"books": []}
        self._write_lock = asyncio.Lock()

    @classmethod
    async def open(cls, path: Union[str, Path]) -> "JsonFileBookDB":
        """Create the file if needed and load it. Read or parse errors propagate."""
        db = cls(path)
        await db.reload()
        return db

    @property
    def books(self) -> List[Book]:
        return self._data["books"]

    async def reload(self) -> None:
        """Replace the cache with the document currently on disk."""
        document = await asyncio.to_thread(self._read_document)
        try:
            books = [Book.from_dict(item) for item in document.get("books", [])]
        except (KeyError, TypeError) as e:
            raise ValueError(f"{self.path} holds a malformed book record") from e
        self._data = {"books": books}
        logger.info("Loaded %d book(s) from %s", len(self.books), self.path)

    async def add_book(self, book: Book) -> Book:
        self.books.append(book)
        await self._persist(undo=lambda: self._discard(book))
        return book

    async def update_book(self, book_id: str, fields: Dict[str, Any]) -> Optional[Book]:
        book = self._find(book_id) if book_id else None
        if book is None:
            return None
        previous = {key: getattr(book, key) for key in fields if key in Book.MUTABLE_FIELDS}
        book.merge(fields)
        await self._persist(undo=lambda: book.merge(previous))
        return book

    async def delete_book(self, book_id: str) -> Optional[str]:
        book = self._find(book_id)
        if book is None:
            return None
        index = self.books.index(book)
        self._data = {"books": [b for b in self.books if b.id != book_id]}
        await self._persist(undo=lambda: self.books.insert(min(index, len(self.books)), book))
        return book_id

    def _read_document(self) -> Dict[str, Any]:
        if not self.path.exists():
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._write_text(self._serialize([]))
            return {"books": []}
        with open(self.path, "r", encoding="utf-8") as f:
            content = f.read()
        if not content.strip():
            return {"books": []}
        document = json.loads(content)
        if not isinstance(document, dict) or not isinstance(document.get("books", []), list):
            raise ValueError(f"{self.path} is not a bookshelf document")
        return document

    @staticmethod
    def _serialize(books: List[Book]) -> str:
        return json.dumps({"books": [book.to_dict() for book in books]}, indent=2, ensure_ascii=False)

    def _write_text(self, text: str) -> None:
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(tmp_path, self.path)

    async def _persist(self, undo: Optional[Callable[[], None]] = None) -> None:
        # Writes run one at a time in call order; each serializes the cache as it
        # stands once the lock is held.
        async with self._write_lock:
            text = self._serialize(self.books)
            try:
                await asyncio.to_thread(self._write_text, text)
            except OSError:
                if undo is not None:
                    undo()
                raise
        logger.debug("Wrote %d book(s) to %s", len(self.books), self.path)

    def _discard(self, book: Book) -> None:
        self._data = {"books": [b for b in self.books if b is not book]}


async def open_book_db(settings) -> BookDB:
    """Build the backend named by ``settings.storage_backend``."""
    backend = (settings.storage_backend or "").strip().lower()
    if backend == "memory":
        logger.info("Using in-memory book storage")
        return InMemoryBookDB()
    if backend == "file":
        return await JsonFileBookDB.open(settings.data_file)
    raise ValueError(f"Unknown storage backend: {settings.storage_backend!r}")
