import asyncio
import os
import subprocess
import sys
from typing import Optional

import typer

from bookshelf.book import Book
from bookshelf.book_db import JsonFileBookDB
from bookshelf.config import settings
from bookshelf.ui_helpers import print_book_result, print_list_result, set_output_mode
from bookshelf.validators import BookValidator

APP_NAME = "Bookshelf CLI"

app = typer.Typer(help=APP_NAME)


@app.callback()
def _global_options(
    ctx: typer.Context,
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    ),
    data_file: str = typer.Option(
        settings.data_file,
        "--data-file",
        "-d",
        help="JSON document holding the books",
    ),
):
    """Global options for the CLI (output mode, storage file)."""
    if output:
        set_output_mode(output)
    ctx.obj = {"data_file": data_file}


def _run(ctx: typer.Context, operation):
    """Open the file backend and run ``operation(book_db)`` to completion."""
    async def runner():
        book_db = await JsonFileBookDB.open(ctx.obj["data_file"])
        return await operation(book_db)

    return asyncio.run(runner())


@app.command("list")
def cli_list(ctx: typer.Context):
    """List every book on the shelf."""
    books = _run(ctx, lambda db: db.get_books())
    print_list_result(books)


@app.command("add")
def cli_add(
    ctx: typer.Context,
    name: str,
    author: str,
    publisher: str,
    price: float,
    favorite: Optional[str] = typer.Option(None, "--favorite", "-f", help="Mark the book as a favorite"),
):
    """Add a book."""
    payload = {"name": name, "author": author, "publisher": publisher, "price": price}
    if not BookValidator.is_valid(payload):
        print("Error: book info is invalid, please check.")
        raise typer.Exit(code=1)
    book = Book(name, author, publisher, price, favorite)
    _run(ctx, lambda db: db.add_book(book))
    print(f"Successfully added: {book.name} by {book.author} ({book.id})")


@app.command("find")
def cli_find(ctx: typer.Context, book_id: str):
    """Show the book with the given id."""
    book = _run(ctx, lambda db: db.get_books(book_id))
    if isinstance(book, Book):
        print_book_result(book, title="Book Found")
    else:
        print(f"Book with id {book_id} not found.")


@app.command("search")
def cli_search(ctx: typer.Context, term: str = typer.Argument(..., help="Part of the book name")):
    """Find books whose name contains TERM (case sensitive)."""
    books = _run(ctx, lambda db: db.get_books(search=term))
    if not books:
        print("No books match the search.")
        return
    print_list_result(books)


@app.command("update")
def cli_update(
    ctx: typer.Context,
    book_id: str,
    name: Optional[str] = typer.Option(None, "--name"),
    author: Optional[str] = typer.Option(None, "--author"),
    publisher: Optional[str] = typer.Option(None, "--publisher"),
    price: Optional[float] = typer.Option(None, "--price"),
    favorite: Optional[str] = typer.Option(None, "--favorite"),
):
    """Change some fields of a book; the others keep their values."""
    fields = {
        key: value
        for key, value in {
            "name": name,
            "author": author,
            "publisher": publisher,
            "price": price,
            "favorite": favorite,
        }.items()
        if value is not None
    }
    if not BookValidator.is_partially_valid(fields) or (
        price is not None and not BookValidator.is_positive_price(price)
    ):
        print("Error: book info is invalid, please check.")
        raise typer.Exit(code=1)
    book = _run(ctx, lambda db: db.update_book(book_id, fields))
    if book is None:
        print(f"Book with id {book_id} not found.")
    else:
        print_book_result(book, title="Book Updated")


@app.command("remove")
def cli_remove(ctx: typer.Context, book_id: str):
    """Remove a book by id."""
    if _run(ctx, lambda db: db.delete_book(book_id)) is None:
        print(f"Book with id {book_id} not found.")
    else:
        print(f"Book with id {book_id} has been removed.")


@app.command("serve")
def cli_serve(
    ctx: typer.Context,
    host: str = typer.Option(settings.api_host, "--host"),
    port: int = typer.Option(settings.api_port, "--port"),
):
    """Run the HTTP API with uvicorn against the same data file."""
    print(f"Starting API on http://{host}:{port}")
    env = dict(os.environ, BOOKSHELF_STORAGE="file", BOOKSHELF_DATA_FILE=ctx.obj["data_file"])
    subprocess.run(
        [sys.executable, "-m", "uvicorn", "bookshelf.api:app", "--host", host, "--port", str(port)],
        env=env,
    )


if __name__ == "__main__":
    app()
