import asyncio
import json
from types import SimpleNamespace

import pytest

from bookshelf.book import Book
from bookshelf.book_db import (
    InMemoryBookDB,
    JsonFileBookDB,
    extract_search_term,
    open_book_db,
)


# --- Contract, run against both backends ---

@pytest.mark.asyncio
async def test_crud_scenario(open_db):
    book_db = await open_db()
    assert await book_db.get_books() == []

    book = Book("sherlock holmes", "Arthur", "universal", 200)
    added = await book_db.add_book(book)
    assert added == book
    assert await book_db.get_books() == [book]
    assert await book_db.get_books(book.id) == book

    updated = await book_db.update_book(book.id, {"name": "sherlock holmes stories"})
    assert updated.name == "sherlock holmes stories"
    assert updated.id == book.id

    assert await book_db.delete_book(book.id) == book.id
    assert await book_db.get_books(book.id) == []
    assert await book_db.get_books() == []


@pytest.mark.asyncio
async def test_unknown_id_returns_empty_result(open_db):
    book_db = await open_db()
    await book_db.add_book(Book("othello", "william", "penguin", 10))
    assert await book_db.get_books("missing") == []


@pytest.mark.asyncio
async def test_update_changes_only_given_field(open_db):
    book_db = await open_db()
    book = await book_db.add_book(Book("othello", "william", "penguin", 10, "fav"))

    updated = await book_db.update_book(book.id, {"price": 25})
    assert updated.to_dict() == {
        "id": book.id,
        "name": "othello",
        "author": "william",
        "publisher": "penguin",
        "price": 25,
        "favorite": "fav",
    }


@pytest.mark.asyncio
async def test_update_missing_id_leaves_collection(open_db):
    book_db = await open_db()
    book = await book_db.add_book(Book("othello", "william", "penguin", 10))
    before = [b.to_dict() for b in await book_db.get_books()]

    assert await book_db.update_book("missing", {"name": "x"}) is None
    assert [b.to_dict() for b in await book_db.get_books()] == before
    assert (await book_db.get_books(book.id)).name == "othello"


@pytest.mark.asyncio
async def test_delete_missing_id_leaves_collection(open_db):
    book_db = await open_db()
    await book_db.add_book(Book("othello", "william", "penguin", 10))

    assert await book_db.delete_book("missing") is None
    assert len(await book_db.get_books()) == 1


@pytest.mark.asyncio
async def test_delete_keeps_order_of_remaining(open_db):
    book_db = await open_db()
    books = [Book(f"book {i}", "author", "publisher", i + 1) for i in range(4)]
    for book in books:
        await book_db.add_book(book)

    await book_db.delete_book(books[1].id)
    assert [b.name for b in await book_db.get_books()] == ["book 0", "book 2", "book 3"]


@pytest.mark.asyncio
async def test_search_by_name(open_db):
    book_db = await open_db()
    holmes = await book_db.add_book(Book("sherlock holmes", "Arthur", "universal", 200))
    homes = await book_db.add_book(Book("sherlock homes1", "Arthur", "universal", 150))

    assert await book_db.get_books(search="name=sherlock") == [holmes, homes]
    assert await book_db.get_books(search="name=holmes") == [holmes]
    assert await book_db.get_books(search="name=Sherlock") == []


@pytest.mark.asyncio
async def test_id_takes_priority_over_search(open_db):
    book_db = await open_db()
    holmes = await book_db.add_book(Book("sherlock holmes", "Arthur", "universal", 200))
    await book_db.add_book(Book("othello", "william", "penguin", 10))

    assert await book_db.get_books(holmes.id, "name=othello") == holmes


@pytest.mark.asyncio
async def test_bad_update_field_is_rejected(open_db):
    book_db = await open_db()
    book = await book_db.add_book(Book("othello", "william", "penguin", 10))

    with pytest.raises(ValueError):
        await book_db.update_book(book.id, {"id": "other"})
    assert (await book_db.get_books(book.id)).id == book.id


# --- Query string extraction ---

@pytest.mark.parametrize(
    "query, expected",
    [
        ("name=sherlock", "sherlock"),
        ("?name=sherlock", "sherlock"),
        ("name=sherlock%20holmes", "sherlock holmes"),
        ("sherlock", "sherlock"),
        ("sherlock%20holmes", "sherlock holmes"),
        ("search=x&name=holmes", "holmes"),
        ("search=holmes", "holmes"),
        ("name=", ""),
    ],
)
def test_extract_search_term(query, expected):
    assert extract_search_term(query) == expected


# --- File backend ---

@pytest.mark.asyncio
async def test_open_creates_missing_file(db_file):
    assert not db_file.exists()
    book_db = await JsonFileBookDB.open(db_file)

    assert db_file.exists()
    assert json.loads(db_file.read_text(encoding="utf-8")) == {"books": []}
    assert await book_db.get_books() == []


@pytest.mark.asyncio
async def test_open_empty_file(db_file):
    db_file.parent.mkdir(parents=True)
    db_file.write_text("", encoding="utf-8")

    book_db = await JsonFileBookDB.open(db_file)
    assert await book_db.get_books() == []


@pytest.mark.asyncio
async def test_open_malformed_file_raises(db_file):
    db_file.parent.mkdir(parents=True)
    db_file.write_text("{not json", encoding="utf-8")

    with pytest.raises(json.JSONDecodeError):
        await JsonFileBookDB.open(db_file)


@pytest.mark.asyncio
async def test_open_wrong_document_shape_raises(db_file):
    db_file.parent.mkdir(parents=True)
    db_file.write_text(json.dumps({"books": "nope"}), encoding="utf-8")

    with pytest.raises(ValueError):
        await JsonFileBookDB.open(db_file)


@pytest.mark.asyncio
async def test_every_mutation_rewrites_document(db_file):
    book_db = await JsonFileBookDB.open(db_file)
    book = await book_db.add_book(Book("othello", "william", "penguin", 10, "fav"))

    document = json.loads(db_file.read_text(encoding="utf-8"))
    assert document == {"books": [book.to_dict()]}

    await book_db.update_book(book.id, {"author": "shakespeare"})
    document = json.loads(db_file.read_text(encoding="utf-8"))
    assert document["books"][0]["author"] == "shakespeare"

    await book_db.delete_book(book.id)
    assert json.loads(db_file.read_text(encoding="utf-8")) == {"books": []}


@pytest.mark.asyncio
async def test_missing_id_does_not_write(db_file):
    book_db = await JsonFileBookDB.open(db_file)
    await book_db.add_book(Book("othello", "william", "penguin", 10))
    # swap the document for a marker; a rewrite would replace it
    db_file.write_text("untouched", encoding="utf-8")

    await book_db.update_book("missing", {"name": "x"})
    await book_db.delete_book("missing")
    assert db_file.read_text(encoding="utf-8") == "untouched"


@pytest.mark.asyncio
async def test_restart_reproduces_collection(db_file):
    book_db = await JsonFileBookDB.open(db_file)
    await book_db.add_book(Book("sherlock holmes", "Arthur", "universal", 200))
    await book_db.add_book(Book("othello", "william", "penguin", 2334, "fav"))
    before = await book_db.get_books()

    reopened = await JsonFileBookDB.open(db_file)
    assert await reopened.get_books() == before

    await reopened.reload()
    assert await reopened.get_books() == before


@pytest.mark.asyncio
async def test_reads_do_not_touch_disk(db_file):
    book_db = await JsonFileBookDB.open(db_file)
    book = await book_db.add_book(Book("othello", "william", "penguin", 10))
    db_file.unlink()

    assert await book_db.get_books(book.id) == book
    assert len(await book_db.get_books()) == 1


# --- Backend selection ---

@pytest.mark.asyncio
async def test_open_book_db_memory():
    book_db = await open_book_db(SimpleNamespace(storage_backend="memory", data_file="unused.json"))
    assert isinstance(book_db, InMemoryBookDB)


@pytest.mark.asyncio
async def test_open_book_db_file(db_file):
    book_db = await open_book_db(SimpleNamespace(storage_backend="file", data_file=str(db_file)))
    assert isinstance(book_db, JsonFileBookDB)
    assert db_file.exists()


@pytest.mark.asyncio
async def test_open_book_db_unknown_backend():
    with pytest.raises(ValueError):
        await open_book_db(SimpleNamespace(storage_backend="redis", data_file=""))


@pytest.mark.asyncio
async def test_open_record_without_id_raises(db_file):
    db_file.parent.mkdir(parents=True)
    record = {"name": "othello", "author": "william", "publisher": "penguin", "price": 10}
    db_file.write_text(json.dumps({"books": [record]}), encoding="utf-8")

    with pytest.raises(ValueError):
        await JsonFileBookDB.open(db_file)


@pytest.mark.asyncio
async def test_overlapping_adds_all_persist(db_file):
    book_db = await JsonFileBookDB.open(db_file)
    books = [Book(f"book {i}", "author", "publisher", i + 1) for i in range(200)]

    results = await asyncio.gather(*(book_db.add_book(b) for b in books), return_exceptions=True)

    assert [r for r in results if isinstance(r, BaseException)] == []
    assert len(await book_db.get_books()) == 200
    reopened = await JsonFileBookDB.open(db_file)
    assert await reopened.get_books() == await book_db.get_books()


@pytest.mark.asyncio
async def test_overlapping_mixed_mutations_persist(db_file):
    book_db = await JsonFileBookDB.open(db_file)
    books = [await book_db.add_book(Book(f"book {i}", "author", "publisher", i + 1)) for i in range(20)]

    operations = []
    for i, book in enumerate(books):
        if i % 2:
            operations.append(book_db.delete_book(book.id))
        else:
            operations.append(book_db.update_book(book.id, {"price": 1000 + i}))
        operations.append(book_db.add_book(Book(f"extra {i}", "author", "publisher", 5)))
    results = await asyncio.gather(*operations, return_exceptions=True)

    assert [r for r in results if isinstance(r, BaseException)] == []
    assert len(await book_db.get_books()) == 30
    document = json.loads(db_file.read_text(encoding="utf-8"))
    assert document == {"books": [b.to_dict() for b in await book_db.get_books()]}


def _failing_write(text):
    raise OSError("disk full")


@pytest.mark.asyncio
async def test_failed_write_rolls_back_cache(db_file, monkeypatch):
    book_db = await JsonFileBookDB.open(db_file)
    kept = await book_db.add_book(Book("othello", "william", "penguin", 10))
    other = await book_db.add_book(Book("sherlock holmes", "Arthur", "universal", 200))
    monkeypatch.setattr(book_db, "_write_text", _failing_write)

    with pytest.raises(OSError):
        await book_db.add_book(Book("hamlet", "william", "penguin", 12))
    with pytest.raises(OSError):
        await book_db.update_book(kept.id, {"name": "macbeth", "price": 99})
    with pytest.raises(OSError):
        await book_db.delete_book(kept.id)

    assert [b.name for b in await book_db.get_books()] == ["othello", "sherlock holmes"]
    assert (await book_db.get_books(kept.id)).price == 10
    assert await book_db.get_books(other.id) == other
