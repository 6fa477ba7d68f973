from __future__ import annotations

import random
import string
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from lending.clock import format_timestamp, parse_timestamp

BOOKS = "books"
MEMBERS = "members"
TRANSACTIONS = "transactions"

_MEMBERSHIP_CHARS = string.ascii_uppercase + string.digits


def generate_membership_id() -> str:
    return "LIB-" + "".join(random.choice(_MEMBERSHIP_CHARS) for _ in range(6))


@dataclass
class Book:
    """A catalogue entry and its copy counters."""

    title: str
    author: str
    isbn: str = ""
    category: str = ""
    rack_location: str = ""
    total_copies: int = 1
    available_copies: int = 1
    id: Optional[str] = None

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} ({self.available_copies}/{self.total_copies} available)"

    @property
    def on_loan(self) -> int:
        return self.total_copies - self.available_copies

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "author": self.author,
            "isbn": self.isbn,
            "category": self.category,
            "rackLocation": self.rack_location,
            "totalCopies": self.total_copies,
            "availableCopies": self.available_copies,
        }

    @staticmethod
    def from_dict(doc_id: Optional[str], data: Dict[str, Any]) -> "Book":
        return Book(
            id=doc_id,
            title=data.get("title", ""),
            author=data.get("author", ""),
            isbn=data.get("isbn") or "",
            category=data.get("category") or "",
            rack_location=data.get("rackLocation") or "",
            total_copies=int(data.get("totalCopies") or 0),
            available_copies=int(data.get("availableCopies") or 0),
        )


@dataclass
class Member:
    name: str
    email: str
    phone: str = ""
    membership_id: str = ""
    borrowed_books: int = 0
    id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "membershipId": self.membership_id,
            "borrowedBooks": self.borrowed_books,
        }

    @staticmethod
    def from_dict(doc_id: Optional[str], data: Dict[str, Any]) -> "Member":
        return Member(
            id=doc_id,
            name=data.get("name", ""),
            email=data.get("email", ""),
            phone=data.get("phone") or "",
            membership_id=data.get("membershipId") or "",
            borrowed_books=int(data.get("borrowedBooks") or 0),
        )


@dataclass
class LoanTransaction:
    """Ledger entry for one loan.

    Member and book identity fields are a snapshot taken at issue time, so the
    record stays readable after the member or book document is edited or
    removed. Closed exactly once, by a return.
    """

    member_id: str
    book_id: str
    issued_at: datetime
    due_date: datetime
    member_name: str = ""
    membership_id: str = ""
    book_title: str = ""
    book_author: str = ""
    returned_at: Optional[datetime] = None
    fine: int = 0
    fine_paid: bool = False
    id: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.returned_at is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "memberId": self.member_id,
            "memberName": self.member_name,
            "membershipId": self.membership_id,
            "bookId": self.book_id,
            "bookTitle": self.book_title,
            "bookAuthor": self.book_author,
            "issuedAt": format_timestamp(self.issued_at),
            "dueDate": format_timestamp(self.due_date),
            "returnedAt": format_timestamp(self.returned_at),
            "fine": self.fine,
            "finePaid": self.fine_paid,
        }

    @staticmethod
    def from_dict(doc_id: Optional[str], data: Dict[str, Any]) -> "LoanTransaction":
        return LoanTransaction(
            id=doc_id,
            member_id=data["memberId"],
            book_id=data["bookId"],
            member_name=data.get("memberName") or "",
            membership_id=data.get("membershipId") or "",
            book_title=data.get("bookTitle") or "",
            book_author=data.get("bookAuthor") or "",
            issued_at=parse_timestamp(data["issuedAt"]),
            due_date=parse_timestamp(data["dueDate"]),
            returned_at=parse_timestamp(data.get("returnedAt")),
            fine=int(data.get("fine") or 0),
            fine_paid=bool(data.get("finePaid", False)),
        )
