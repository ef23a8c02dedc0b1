import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, Query, Request, Response, Security
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyCookie, HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict, Field

from libratech import database
from libratech.access import AccessGate, Identity
from libratech.config import settings
from libratech.exceptions import (
    InvariantViolation,
    NotFound,
    StoreUnavailable,
    Unauthenticated,
    Unauthorized,
)
from libratech.inventory import BorrowStatus
from libratech.library import Library
from libratech.models import Book
from libratech.validators import EmailValidator, TextValidator

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)

_library: Optional[Library] = None
_access_gate: Optional[AccessGate] = None


def get_library() -> Library:
    """Shared Library for the process, built on first use."""
    global _library
    if _library is None:
        _library = Library()
    return _library


def get_access_gate() -> AccessGate:
    global _access_gate
    if _access_gate is None:
        _access_gate = AccessGate()
    return _access_gate


@asynccontextmanager
async def lifespan(app: FastAPI):
    library = get_library()
    logger.info("%s %s serving %s", settings.app_name, settings.app_version, library.location)
    yield


app = FastAPI(title=f"{settings.app_name} API", version=settings.app_version, lifespan=lifespan)

app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    # Inventory changes on every borrow; never let a proxy cache it
    if request.url.path.startswith(settings.api_prefix):
        response.headers["Cache-Control"] = "no-store"
    return response


# --- Error handling ---
# Business outcomes (already borrowed, out of stock) are normal 200 responses.
# Everything below collapses to a bare message with no internal detail.
def _message(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"message": message})


@app.exception_handler(Unauthenticated)
async def handle_unauthenticated(request: Request, exc: Unauthenticated):
    if exc.reason == "missing":
        return _message(403, "unauthorized")
    return _message(401, "forbidden")


@app.exception_handler(Unauthorized)
async def handle_unauthorized(request: Request, exc: Unauthorized):
    logger.warning("Denied %s %s: %s", request.method, request.url.path, exc)
    return _message(403, "unauthorized")


@app.exception_handler(NotFound)
async def handle_not_found(request: Request, exc: NotFound):
    return _message(404, "not-found")


@app.exception_handler(RequestValidationError)
async def handle_bad_request(request: Request, exc: RequestValidationError):
    logger.info("Malformed request to %s: %s", request.url.path, exc.errors())
    return _message(400, "server-error")


@app.exception_handler(ValueError)
async def handle_value_error(request: Request, exc: ValueError):
    logger.info("Rejected input on %s: %s", request.url.path, exc)
    return _message(400, "server-error")


@app.exception_handler(StoreUnavailable)
async def handle_store_unavailable(request: Request, exc: StoreUnavailable):
    logger.error("Store unavailable during %s %s: %s", request.method, request.url.path, exc)
    return _message(503, "server-error")


@app.exception_handler(InvariantViolation)
async def handle_invariant_violation(request: Request, exc: InvariantViolation):
    logger.critical("Inventory invariant violated during %s %s: %s", request.method, request.url.path, exc)
    return _message(500, "server-error")


@app.exception_handler(Exception)
async def handle_unexpected(request: Request, exc: Exception):
    logger.exception("Unhandled error during %s %s", request.method, request.url.path)
    return _message(500, "server-error")


# --- Security ---
session_cookie = APIKeyCookie(name=settings.access_cookie_name, auto_error=False)
bearer_token = HTTPBearer(auto_error=False)


def current_identity(
    cookie: Optional[str] = Security(session_cookie),
    bearer: Optional[HTTPAuthorizationCredentials] = Security(bearer_token),
    gate: AccessGate = Depends(get_access_gate),
) -> Identity:
    """Resolve the caller from the session cookie, or a bearer token for non-browser clients."""
    token = cookie or (bearer.credentials if bearer else None)
    return gate.authenticate(token)


def admin_identity(
    identity: Identity = Depends(current_identity),
    gate: AccessGate = Depends(get_access_gate),
) -> Identity:
    return gate.require_admin(identity)


def _acting_email(identity: Identity, requested: Optional[str]) -> str:
    """Borrowers act for themselves; admins may act for anyone."""
    email = EmailValidator.normalize_email(requested) if requested else identity.email
    if not EmailValidator.is_valid_email(email):
        raise ValueError(f"Not a valid borrower email: {email}")
    if email != identity.email and not identity.is_admin:
        raise Unauthorized(f"{identity.email} cannot act for {email}")
    return email


# --- Models ---
class BookModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(alias="_id")
    title: str
    author: Optional[str] = None
    category: Optional[str] = None
    quantity: int
    image: Optional[str] = None
    rating: Optional[float] = None
    description: Optional[str] = None
    extra: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[str] = Field(default=None, alias="createdAt")


class CategoryModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(alias="_id")
    name: str


class LoanModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(alias="_id")
    book_id: str = Field(alias="bookId")
    email: str
    return_date: Optional[str] = Field(default=None, alias="returnDate")
    extra: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[str] = Field(default=None, alias="createdAt")


class MessageModel(BaseModel):
    message: str


class FilteredBooksResponse(BaseModel):
    message: str
    result: List[BookModel]


class LoansResponse(BaseModel):
    message: str
    result: List[LoanModel]


class BorrowResponse(BaseModel):
    message: str
    result: Optional[LoanModel] = None


class CountResponse(BaseModel):
    message: str
    count: int


class InsertResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    inserted_id: str = Field(alias="insertedId")


class DeleteResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    deleted_loans: int = Field(alias="deletedLoans")


class SessionRequest(BaseModel):
    email: str


class BookCreateModel(BaseModel):
    """New book. Keys beyond the typed fields are kept in ``extra``."""
    model_config = ConfigDict(extra="allow")

    title: str = Field(min_length=1)
    author: Optional[str] = None
    category: Optional[str] = None
    quantity: int = Field(default=0, ge=0)
    image: Optional[str] = None
    rating: Optional[float] = None
    description: Optional[str] = None
    extra: Dict[str, Any] = Field(default_factory=dict)

    def to_book(self) -> Book:
        return Book(
            title=self.title,
            author=self.author,
            category=self.category,
            quantity=self.quantity,
            image=self.image,
            rating=self.rating,
            description=self.description,
            extra={**self.extra, **(self.model_extra or {})},
        )


class BookUpdateModel(BaseModel):
    model_config = ConfigDict(extra="allow")

    title: Optional[str] = None
    author: Optional[str] = None
    category: Optional[str] = None
    quantity: Optional[int] = Field(default=None, ge=0)
    image: Optional[str] = None
    rating: Optional[float] = None
    description: Optional[str] = None
    extra: Optional[Dict[str, Any]] = None


class EditBookRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    book_id: str = Field(alias="bookId")
    book_data: BookUpdateModel = Field(alias="bookData")


class BorrowRequest(BaseModel):
    """Borrow request. Extra keys (borrower name, book title...) travel with the loan."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    book_id: str = Field(alias="bookId", min_length=1)
    email: Optional[str] = None
    return_date: Optional[str] = Field(default=None, alias="returnDate")


class ReturnRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    book_id: Optional[str] = Field(default=None, alias="bookId")
    borrowed_id: str = Field(alias="borrowedId", min_length=1)


def _book_model(book: Book) -> BookModel:
    return BookModel(**book.to_dict())


# --- Health ---
@app.get("/")
def read_root():
    return {"message": f"Hello from {settings.app_name}'s server!"}


@app.get("/health")
def health(library: Library = Depends(get_library)):
    """Lightweight health endpoint: a quick store probe plus version."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": settings.app_version,
        "db": database.ping(library.db_file),
    }


router = APIRouter(prefix=settings.api_prefix)


# --- Session ---
@router.post("/jwt", response_model=MessageModel)
def issue_session(response: Response, payload: SessionRequest, gate: AccessGate = Depends(get_access_gate)):
    """Mint a session cookie for the given email."""
    token = gate.issue(payload.email)
    response.set_cookie(
        key=settings.access_cookie_name,
        value=token,
        max_age=int(gate.lifetime.total_seconds()),
        httponly=True,
        secure=settings.cookie_secure,
        samesite=settings.cookie_samesite,
    )
    return MessageModel(message="success")


@router.get("/cancel-token", response_model=MessageModel)
def cancel_session(response: Response):
    response.delete_cookie(
        key=settings.access_cookie_name,
        httponly=True,
        secure=settings.cookie_secure,
        samesite=settings.cookie_samesite,
    )
    return MessageModel(message="success")


# --- Catalog ---
@router.get("/categories", response_model=List[CategoryModel])
def get_categories(
    name: Optional[str] = Query(None),
    limit: Optional[int] = Query(None),
    library: Library = Depends(get_library),
):
    return [CategoryModel(**c.to_dict()) for c in library.catalog.list_categories(name=name, limit=limit)]


@router.get("/books", response_model=List[BookModel])
def get_books(
    category: Optional[str] = Query(None),
    id: Optional[str] = Query(None),
    skip: int = Query(0, ge=0),
    limit: Optional[int] = Query(None),
    library: Library = Depends(get_library),
):
    books = library.catalog.list_books(category=category, book_id=id, skip=skip, limit=limit)
    return [_book_model(b) for b in books]


@router.get("/filtered-books", response_model=FilteredBooksResponse)
def get_filtered_books(
    quantity: Optional[int] = Query(None),
    value: Optional[Literal["lt", "gt"]] = Query(None, description="Quantity comparison: lt | gt"),
    category: Optional[str] = Query(None),
    id: Optional[str] = Query(None),
    skip: int = Query(0, ge=0),
    limit: Optional[int] = Query(None),
    library: Library = Depends(get_library),
):
    books = library.catalog.list_books(
        category=category, book_id=id, quantity=quantity, comparison=value, skip=skip, limit=limit
    )
    return FilteredBooksResponse(message="success", result=[_book_model(b) for b in books])


@router.get("/books-count", response_model=CountResponse)
def get_books_count(identity: Identity = Depends(current_identity), library: Library = Depends(get_library)):
    return CountResponse(message="success", count=library.catalog.count_books())


# --- Loans ---
@router.get("/borrow-book", response_model=LoansResponse)
def get_borrowed_books(
    email: Optional[str] = Query(None),
    identity: Identity = Depends(current_identity),
    library: Library = Depends(get_library),
):
    borrower = _acting_email(identity, email)
    loans = library.ledger.list_for_borrower(borrower)
    return LoansResponse(message="success", result=[LoanModel(**l.to_dict()) for l in loans])


@router.post("/borrow-book", response_model=BorrowResponse)
def borrow_book(
    payload: BorrowRequest,
    identity: Identity = Depends(current_identity),
    library: Library = Depends(get_library),
):
    borrower = _acting_email(identity, payload.email)
    result = library.inventory.borrow(
        payload.book_id, borrower, return_date=payload.return_date, extra=payload.model_extra or None
    )
    loan = LoanModel(**result.loan.to_dict()) if result.status is BorrowStatus.BORROWED else None
    return BorrowResponse(message=result.message, result=loan)


@router.post("/return-book", response_model=MessageModel)
def return_book(
    payload: ReturnRequest,
    identity: Identity = Depends(current_identity),
    library: Library = Depends(get_library),
):
    """Return a loan. Repeating the call is a harmless no-op."""
    # Admins may close anyone's loan; borrowers only their own.
    owner = None if identity.is_admin else identity.email
    library.inventory.return_book(payload.borrowed_id, payload.book_id, email=owner)
    return MessageModel(message="success")


# --- Admin ---
@router.post("/add-book", response_model=InsertResponse)
def add_book(
    payload: BookCreateModel,
    identity: Identity = Depends(admin_identity),
    library: Library = Depends(get_library),
):
    book = library.catalog.add_book(payload.to_book())
    return InsertResponse(message="success", inserted_id=book.id)


@router.put("/edit-book", response_model=MessageModel)
def edit_book(
    payload: EditBookRequest = Body(...),
    identity: Identity = Depends(admin_identity),
    library: Library = Depends(get_library),
):
    """Edit a book. Descriptive fields go to the catalog; quantity goes through the inventory controller.

    The two writes are separate transactions. Input is validated before either
    runs, and quantity is written first; a store failure on the descriptive
    write leaves the new quantity in place.
    """
    data = payload.book_data
    fields = data.model_dump(exclude_unset=True, exclude={"quantity"})
    fields = {k: v for k, v in fields.items() if k in BookUpdateModel.model_fields}

    existing = library.catalog.get_book(payload.book_id)
    if existing is None:
        raise NotFound(f"Book {payload.book_id} not found.")

    if data.model_extra:
        fields["extra"] = {**(fields.get("extra") or existing.extra), **data.model_extra}
    if "title" in fields and not TextValidator.validate_title(fields["title"]):
        raise ValueError("Book title cannot be empty.")

    if data.quantity is not None:
        library.inventory.set_quantity(payload.book_id, data.quantity)
    if fields:
        library.catalog.update_book(payload.book_id, **fields)
    return MessageModel(message="success")


@router.delete("/delete-book", response_model=DeleteResponse)
def delete_book(
    book_id: str = Query(..., alias="bookId", min_length=1),
    identity: Identity = Depends(admin_identity),
    library: Library = Depends(get_library),
):
    result = library.inventory.delete_book(book_id)
    return DeleteResponse(message="success", deleted_loans=result.loans_deleted)


app.include_router(router)
