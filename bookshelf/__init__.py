"""Bookshelf - Core Application Package

This package contains:
- Book entity (book.py)
- Storage backends, in-memory and JSON file (book_db.py)
- Payload validation (validators.py)
- HTTP API (api.py)
- CLI interface (main.py)
"""
