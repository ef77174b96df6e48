import pytest
from fastapi.testclient import TestClient

from bookshelf.api import create_app
from bookshelf.book_db import InMemoryBookDB, JsonFileBookDB


@pytest.fixture
def db_file(tmp_path):
    # Each test gets its own JSON document
    return tmp_path / "db" / "db.json"


@pytest.fixture(params=["memory", "file"])
def open_db(request, db_file):
    """Async factory for each backend, so contract tests run against both."""
    async def factory():
        if request.param == "memory":
            return InMemoryBookDB()
        return await JsonFileBookDB.open(db_file)

    factory.backend = request.param
    return factory


@pytest.fixture
def book_db():
    return InMemoryBookDB()


@pytest.fixture
def client(book_db):
    with TestClient(create_app(book_db=book_db)) as test_client:
        yield test_client
