import json
import os
from typing import List

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from bookshelf.book import Book

# Environment variable to control CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "BOOKSHELF_CLI_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def _plain_line(book: Book) -> str:
    line = f"{book.id} - {book} {book.price}"
    return line + " *" if book.is_favorite else line


def print_list_result(books: List[Book]) -> None:
    """Print books in the current output mode.
    - plain: one 'ID - Name by Author (Publisher) Price' line per book
    - json: JSON array of book dicts
    - rich: Rich table
    """
    mode = get_output_mode()

    if not books:
        print("No books on the shelf.")
        return

    if mode == "json":
        print(json.dumps([b.to_dict() for b in books], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="📚 Books", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Name", style="white")
        table.add_column("Author", style="white")
        table.add_column("Publisher", style="white")
        table.add_column("Price", justify="right")
        table.add_column("★", justify="center")
        for b in books:
            table.add_row(b.id, b.name, b.author, b.publisher, str(b.price), "★" if b.is_favorite else "")
        _console.print(table)
    else:
        for b in books:
            print(_plain_line(b))


def print_book_result(book: Book, title: str = "Book") -> None:
    mode = get_output_mode()

    if mode == "json":
        print(json.dumps(book.to_dict(), ensure_ascii=False))
    elif mode == "rich":
        content = (
            f"[bold]Name:[/] {book.name}\n[bold]Author:[/] {book.author}\n"
            f"[bold]Publisher:[/] {book.publisher}\n[bold]Price:[/] {book.price}\n"
            f"[bold]Favorite:[/] {book.favorite or '-'}"
        )
        _console.print(Panel.fit(content, title=f"{title} {book.id}", border_style="blue"))
    else:
        print(title)
        print(f"ID: {book.id}")
        print(f"Name: {book.name}")
        print(f"Author: {book.author}")
        print(f"Publisher: {book.publisher}")
        print(f"Price: {book.price}")
        if book.favorite:
            print(f"Favorite: {book.favorite}")
