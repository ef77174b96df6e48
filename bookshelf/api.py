import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel, Field

from bookshelf.book import Book
from bookshelf.book_db import BookDB, open_book_db
from bookshelf.config import Settings, configure_logging, settings as default_settings
from bookshelf.validators import BookValidator

logger = logging.getLogger(__name__)

BAD_BOOK_INFO = "Bad request, book info is not proper"

CORS_METHODS = ["OPTIONS", "POST", "GET", "PUT", "DELETE"]
CORS_HEADERS = ["content-type", "access-control-allow-origin", "Sec-Fetch-Mode", "Accept"]
CORS_MAX_AGE = 2592000  # 30 days


# --- Models ---
class BookModel(BaseModel):
    id: str
    name: str
    author: str
    publisher: str
    price: int | float
    favorite: str | None = None


class BookCreateModel(BaseModel):
    name: str | None = None
    author: str | None = None
    publisher: str | None = None
    price: int | float | None = None
    favorite: str | None = Field(default=None, description="Any non-empty value marks a favorite")


class BookUpdateModel(BookCreateModel):
    """Same fields as creation; only the ones sent are applied."""


class DeletedModel(BaseModel):
    id: str


# --- Dependencies ---
def get_book_db(request: Request) -> BookDB:
    """The storage backend attached to the running application."""
    book_db = getattr(request.app.state, "book_db", None)
    if book_db is None:
        raise HTTPException(status_code=503, detail="Book storage is not ready")
    return book_db


# --- Helpers ---
def _update_fields(payload: BookUpdateModel) -> Dict[str, Any]:
    """Fields the client actually sent, minus nulls for required fields."""
    fields = payload.model_dump(exclude_unset=True)
    return {key: value for key, value in fields.items() if value is not None or key == "favorite"}


router = APIRouter()


@router.get("/", response_class=HTMLResponse)
async def index():
    return '<h1 style="color:red">Welcome to the bookshelf backend!</h1>'


@router.get("/health")
async def health(book_db: BookDB = Depends(get_book_db)):
    """Lightweight health endpoint with the size of the shelf."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "backend": type(book_db).__name__,
        "total_books": await book_db.count(),
    }


@router.get("/book", response_model=List[BookModel])
async def list_books(
    request: Request,
    name: Optional[str] = Query(default=None, description="Substring of the book name"),
    book_db: BookDB = Depends(get_book_db),
):
    if name is not None:
        logger.info("Returning books for name %r", name)
        books = await book_db.get_books(search=request.url.query)
    else:
        logger.info("Returning all books")
        books = await book_db.get_books()
    return [book.to_dict() for book in books]


@router.get("/book/{book_id}", response_model=BookModel)
async def get_book(book_id: str, book_db: BookDB = Depends(get_book_db)):
    logger.info("Returning book with id %s", book_id)
    book = await book_db.get_books(book_id)
    if not isinstance(book, Book):
        raise HTTPException(status_code=404, detail="Book not found")
    return book.to_dict()


@router.post("/book", response_model=BookModel)
async def add_book(payload: BookCreateModel, book_db: BookDB = Depends(get_book_db)):
    data = payload.model_dump()
    if not BookValidator.is_valid(data):
        raise HTTPException(status_code=400, detail=BAD_BOOK_INFO)
    book = Book(data["name"], data["author"], data["publisher"], data["price"], data["favorite"])
    await book_db.add_book(book)
    logger.info("Added book %s (%s)", book.id, book.name)
    return book.to_dict()


@router.put("/book/{book_id}", response_model=BookModel)
async def update_book(book_id: str, payload: BookUpdateModel, book_db: BookDB = Depends(get_book_db)):
    fields = _update_fields(payload)
    if not BookValidator.is_partially_valid(fields):
        raise HTTPException(status_code=400, detail=BAD_BOOK_INFO)
    if "price" in fields and not BookValidator.is_positive_price(fields["price"]):
        raise HTTPException(status_code=400, detail=BAD_BOOK_INFO)
    try:
        book = await book_db.update_book(book_id, fields)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if book is None:
        raise HTTPException(status_code=404, detail="Book not found")
    logger.info("Updated book %s", book_id)
    return book.to_dict()


@router.delete("/book/{book_id}", response_model=DeletedModel)
async def delete_book(book_id: str, book_db: BookDB = Depends(get_book_db)):
    deleted_id = await book_db.delete_book(book_id)
    if deleted_id is None:
        raise HTTPException(status_code=404, detail="Book not found")
    logger.info("Deleted book %s", deleted_id)
    return {"id": deleted_id}


async def _bad_payload_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"detail": BAD_BOOK_INFO})


def create_app(book_db: Optional[BookDB] = None, settings: Optional[Settings] = None) -> FastAPI:
    """Build the API around ``book_db``, or the backend named in settings.

    Without an explicit backend the lifespan opens one before the first
    request; a failure there aborts startup.
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.book_db is None:
            app.state.book_db = await open_book_db(settings)
        yield

    app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
    app.state.book_db = book_db

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=CORS_METHODS,
        allow_headers=CORS_HEADERS,
        max_age=CORS_MAX_AGE,
    )
    app.add_exception_handler(RequestValidationError, _bad_payload_handler)
    app.include_router(router)
    return app


configure_logging()
app = create_app()
