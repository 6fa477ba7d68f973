import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, Field

from lending.config import settings
from lending.errors import LendingConflict, NotFoundError, TransientStoreError
from lending.library import Library
from lending.models import Book, Member
from lending.status import LoanStatus

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_name, version=settings.app_version)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_library: Optional[Library] = None


def get_library() -> Library:
    """Shared Library instance; tests swap it through app.dependency_overrides."""
    global _library
    if _library is None:
        _library = Library()
    return _library


# --- Security ---
api_key_header = APIKeyHeader(name="X-API-Key")


def get_api_key(api_key: str = Security(api_key_header)):
    """Dependency guarding the routes that change state."""
    if api_key == settings.api_key:
        return api_key
    raise HTTPException(status_code=403, detail="Could not validate credentials")


# --- Error mapping ---
@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc), "kind": exc.kind})


@app.exception_handler(LendingConflict)
async def conflict_handler(request: Request, exc: LendingConflict):
    return JSONResponse(status_code=409, content={"detail": str(exc), "error": type(exc).__name__})


@app.exception_handler(TransientStoreError)
async def transient_handler(request: Request, exc: TransientStoreError):
    logger.error(f"{request.method} {request.url.path} gave up after {exc.attempts} attempts")
    return JSONResponse(
        status_code=503,
        content={"detail": str(exc), "retryable": True},
        headers={"Retry-After": "1"},
    )


@app.exception_handler(ValueError)
async def validation_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


# --- Models ---
class BookModel(BaseModel):
    id: str
    title: str
    author: str
    isbn: str = ""
    category: str = ""
    rack_location: str = ""
    total_copies: int
    available_copies: int


class BookCreateModel(BaseModel):
    title: str
    author: str
    isbn: str = ""
    category: str = ""
    rack_location: str = ""
    total_copies: int = Field(default=1, ge=1)


class BookUpdateModel(BaseModel):
    title: Optional[str] = None
    author: Optional[str] = None
    isbn: Optional[str] = None
    category: Optional[str] = None
    rack_location: Optional[str] = None
    total_copies: Optional[int] = None
    available_copies: Optional[int] = None


class MemberModel(BaseModel):
    id: str
    name: str
    email: str
    phone: str = ""
    membership_id: str
    borrowed_books: int


class MemberCreateModel(BaseModel):
    name: str
    email: str
    phone: str = ""


class IssueRequest(BaseModel):
    member_id: str
    book_id: str


class IssueResponse(BaseModel):
    id: str


class ReturnResponse(BaseModel):
    id: str
    fine: int


class TransactionModel(BaseModel):
    id: str
    memberId: str
    memberName: str
    membershipId: str
    bookId: str
    bookTitle: str
    bookAuthor: str
    issuedAt: str
    dueDate: str
    returnedAt: Optional[str] = None
    fine: int
    finePaid: bool
    status: LoanStatus


class MemberBorrowsModel(BaseModel):
    member: MemberModel
    active: int
    overdue: int
    total_fine: int
    transactions: List[TransactionModel]


class StatsModel(BaseModel):
    total_books: int
    total_copies: int
    available_copies: int
    borrowed_copies: int
    total_members: int
    open_loans: int
    overdue_loans: int


# --- Helpers ---
def _book_model(book: Book) -> BookModel:
    return BookModel(
        id=book.id,
        title=book.title,
        author=book.author,
        isbn=book.isbn,
        category=book.category,
        rack_location=book.rack_location,
        total_copies=book.total_copies,
        available_copies=book.available_copies,
    )


def _member_model(member: Member) -> MemberModel:
    return MemberModel(
        id=member.id,
        name=member.name,
        email=member.email,
        phone=member.phone,
        membership_id=member.membership_id,
        borrowed_books=member.borrowed_books,
    )


# --- Health ---
@app.get("/health")
def health(library: Library = Depends(get_library)) -> Dict[str, Any]:
    db_ok = True
    try:
        library.store.list_documents("books")
    except Exception:
        db_ok = False
    return {
        "status": "healthy" if db_ok else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "db": db_ok,
    }


@app.get("/stats", response_model=StatsModel)
def stats(library: Library = Depends(get_library)):
    return library.get_statistics()


# --- Books ---
@app.get("/books", response_model=List[BookModel])
def list_books(q: Optional[str] = Query(None, description="Search title, author, ISBN or category"),
               library: Library = Depends(get_library)):
    books = library.search_books(q) if q else library.list_books()
    return [_book_model(b) for b in books]


@app.post("/books", response_model=BookModel, status_code=201, dependencies=[Depends(get_api_key)])
def create_book(payload: BookCreateModel, library: Library = Depends(get_library)):
    book = library.add_book(
        title=payload.title,
        author=payload.author,
        isbn=payload.isbn,
        category=payload.category,
        total_copies=payload.total_copies,
        rack_location=payload.rack_location,
    )
    return _book_model(book)


@app.get("/books/{book_id}", response_model=BookModel)
def get_book(book_id: str, library: Library = Depends(get_library)):
    book = library.get_book(book_id)
    if not book:
        raise HTTPException(status_code=404, detail="Book not found.")
    return _book_model(book)


@app.put("/books/{book_id}", response_model=BookModel, dependencies=[Depends(get_api_key)])
def update_book(book_id: str, payload: BookUpdateModel, library: Library = Depends(get_library)):
    changes = {k: v for k, v in payload.model_dump().items() if v is not None}
    if not changes:
        raise HTTPException(status_code=400, detail="Provide at least one field to update.")
    return _book_model(library.update_book(book_id, **changes))


@app.delete("/books/{book_id}", dependencies=[Depends(get_api_key)])
def delete_book(book_id: str, library: Library = Depends(get_library)):
    if not library.remove_book(book_id):
        raise HTTPException(status_code=404, detail="Book not found.")
    return {"message": f"Book {book_id} removed."}


# --- Members ---
@app.get("/members", response_model=List[MemberModel])
def list_members(q: Optional[str] = Query(None, description="Search name, email or membership ID"),
                 library: Library = Depends(get_library)):
    members = library.search_members(q) if q else library.list_members()
    return [_member_model(m) for m in members]


@app.post("/members", response_model=MemberModel, status_code=201, dependencies=[Depends(get_api_key)])
def create_member(payload: MemberCreateModel, library: Library = Depends(get_library)):
    return _member_model(library.add_member(payload.name, payload.email, payload.phone))


@app.get("/members/{member_id}", response_model=MemberModel)
def get_member(member_id: str, library: Library = Depends(get_library)):
    member = library.get_member(member_id)
    if not member:
        raise HTTPException(status_code=404, detail="Member not found.")
    return _member_model(member)


@app.get("/members/{member_id}/borrows", response_model=MemberBorrowsModel)
def member_borrows(member_id: str, library: Library = Depends(get_library)):
    summary = library.member_summary(member_id)
    return MemberBorrowsModel(
        member=_member_model(summary.member),
        active=summary.active,
        overdue=summary.overdue,
        total_fine=summary.total_fine,
        transactions=[TransactionModel(**view.to_dict()) for view in summary.transactions],
    )


@app.delete("/members/{member_id}", dependencies=[Depends(get_api_key)])
def delete_member(member_id: str, library: Library = Depends(get_library)):
    if not library.remove_member(member_id):
        raise HTTPException(status_code=404, detail="Member not found.")
    return {"message": f"Member {member_id} removed."}


# --- Transactions ---
@app.get("/transactions", response_model=List[TransactionModel])
def list_transactions(
    status: Optional[LoanStatus] = Query(None),
    q: Optional[str] = Query(None, description="Search member name, book title or membership ID"),
    member_id: Optional[str] = Query(None),
    library: Library = Depends(get_library),
):
    views = library.list_transactions(status=status, query=q, member_id=member_id)
    return [TransactionModel(**view.to_dict()) for view in views]


@app.post("/transactions", response_model=IssueResponse, status_code=201, dependencies=[Depends(get_api_key)])
def issue_book(payload: IssueRequest, library: Library = Depends(get_library)):
    return IssueResponse(id=library.issue_book(payload.member_id, payload.book_id))


@app.post("/transactions/{transaction_id}/return", response_model=ReturnResponse,
          dependencies=[Depends(get_api_key)])
def return_book(transaction_id: str, library: Library = Depends(get_library)):
    return ReturnResponse(id=transaction_id, fine=library.return_book(transaction_id))
