import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from lending.audit import Discrepancy, reconcile
from lending.clock import utcnow
from lending.config import LendingPolicy, settings
from lending.engine import LendingEngine
from lending.errors import NotFoundError, RecordInUseError
from lending.models import (
    BOOKS,
    MEMBERS,
    TRANSACTIONS,
    Book,
    LoanTransaction,
    Member,
    generate_membership_id,
)
from lending.status import LoanStatus, compute_fine, compute_status
from lending.store.base import DocumentStore, StoreTransaction
from lending.store.sqlite_store import SQLiteDocumentStore

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"\S+@\S+\.\S+")
_BOOK_FIELDS = {
    "title": "title",
    "author": "author",
    "isbn": "isbn",
    "category": "category",
    "rack_location": "rackLocation",
    "total_copies": "totalCopies",
    "available_copies": "availableCopies",
}
_MEMBER_FIELDS = {"name": "name", "email": "email", "phone": "phone"}


@dataclass
class TransactionView:
    """Türetilmiş durumu ve güncel cezasıyla birlikte bir ödünç kaydı."""

    transaction: LoanTransaction
    status: LoanStatus
    fine: int

    def to_dict(self) -> Dict[str, Any]:
        data = self.transaction.to_dict()
        data["id"] = self.transaction.id
        data["status"] = self.status.value
        data["fine"] = self.fine
        return data


@dataclass
class MemberSummary:
    member: Member
    transactions: List[TransactionView] = field(default_factory=list)

    @property
    def active(self) -> int:
        return sum(1 for view in self.transactions if view.status != LoanStatus.RETURNED)

    @property
    def overdue(self) -> int:
        return sum(1 for view in self.transactions if view.status == LoanStatus.OVERDUE)

    @property
    def total_fine(self) -> int:
        return sum(view.fine for view in self.transactions)


class Library:
    """Belge deposu üzerinde katalog, üyelik ve ödünç işlemlerini yönetir."""

    def __init__(
        self,
        store: Optional[DocumentStore] = None,
        db_file: Optional[str] = None,
        policy: Optional[LendingPolicy] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store or SQLiteDocumentStore(db_file or settings.db_file)
        self.policy = policy or LendingPolicy.from_settings(settings)
        self.clock = clock
        self.engine = LendingEngine(self.store, self.policy, clock)

    # ------------------------- Kitaplar ------------------------- #
    def add_book(
        self,
        title: str,
        author: str,
        isbn: str = "",
        category: str = "",
        total_copies: int = 1,
        rack_location: str = "",
    ) -> Book:
        title, author = (title or "").strip(), (author or "").strip()
        if not title:
            raise ValueError("Title is required.")
        if not author:
            raise ValueError("Author is required.")
        total_copies = int(total_copies)
        if total_copies < 1:
            raise ValueError("A book needs at least 1 copy.")

        book = Book(
            title=title,
            author=author,
            isbn=(isbn or "").strip(),
            category=(category or "").strip(),
            rack_location=(rack_location or "").strip(),
            total_copies=total_copies,
            available_copies=total_copies,
        )
        book.id = self.store.create(BOOKS, book.to_dict())
        logger.info(f"Added book {book.id}: {book.title} ({total_copies} copies)")
        return book

    def get_book(self, book_id: str) -> Optional[Book]:
        data = self.store.get(BOOKS, book_id)
        return Book.from_dict(book_id, data) if data is not None else None

    def list_books(self) -> List[Book]:
        books = [Book.from_dict(doc_id, data) for doc_id, data in self.store.list_documents(BOOKS)]
        return sorted(books, key=lambda b: b.title.lower())

    def search_books(self, query: str) -> List[Book]:
        q = (query or "").strip().lower()
        if not q:
            return self.list_books()
        return [
            b for b in self.list_books()
            if q in b.title.lower() or q in b.author.lower() or q in b.isbn.lower() or q in b.category.lower()
        ]

    def update_book(self, book_id: str, **changes: Any) -> Book:
        """Katalog alanlarını düzenle. Kopya sayıları 0 <= available <= total aralığında kalmalı."""
        unknown = set(changes) - set(_BOOK_FIELDS)
        if unknown:
            raise ValueError(f"Unknown book field(s): {', '.join(sorted(unknown))}")
        fields = {_BOOK_FIELDS[k]: v for k, v in changes.items() if v is not None}
        for key in ("title", "author"):
            if key in fields:
                fields[key] = str(fields[key]).strip()
                if not fields[key]:
                    raise ValueError(f"{key.capitalize()} cannot be empty.")

        def _update(txn: StoreTransaction) -> Book:
            data = txn.get(BOOKS, book_id)
            if data is None:
                raise NotFoundError("book", book_id)
            merged = {**data, **fields}
            total = int(merged.get("totalCopies") or 0)
            available = int(merged.get("availableCopies") or 0)
            if total < 1:
                raise ValueError("A book needs at least 1 copy.")
            if available < 0:
                raise ValueError("Available copies cannot be negative.")
            if available > total:
                raise ValueError("Available copies cannot exceed total copies.")
            txn.update(BOOKS, book_id, fields)
            return Book.from_dict(book_id, merged)

        return self.store.run_transaction(_update)

    def remove_book(self, book_id: str) -> bool:
        return self._remove_unless_on_loan(BOOKS, "book", "bookId", book_id)

    # ------------------------- Üyeler ------------------------- #
    def add_member(self, name: str, email: str, phone: str = "") -> Member:
        name = (name or "").strip()
        email = (email or "").strip().lower()
        if not name:
            raise ValueError("Name is required.")
        if not email:
            raise ValueError("Email is required.")
        if not _EMAIL_RE.fullmatch(email):
            raise ValueError("Invalid email.")

        member = Member(
            name=name,
            email=email,
            phone=(phone or "").strip(),
            membership_id=generate_membership_id(),
        )
        member.id = self.store.create(MEMBERS, member.to_dict())
        logger.info(f"Added member {member.id} ({member.membership_id})")
        return member

    def get_member(self, member_id: str) -> Optional[Member]:
        data = self.store.get(MEMBERS, member_id)
        return Member.from_dict(member_id, data) if data is not None else None

    def list_members(self) -> List[Member]:
        members = [Member.from_dict(doc_id, data) for doc_id, data in self.store.list_documents(MEMBERS)]
        return sorted(members, key=lambda m: m.name.lower())

    def search_members(self, query: str) -> List[Member]:
        q = (query or "").strip().lower()
        if not q:
            return self.list_members()
        return [
            m for m in self.list_members()
            if q in m.name.lower() or q in m.email.lower() or q in m.membership_id.lower()
        ]

    def update_member(self, member_id: str, **changes: Any) -> Member:
        """İletişim bilgilerini düzenle. Ödünç sayacı yalnızca ödünç motoruna aittir."""
        unknown = set(changes) - set(_MEMBER_FIELDS)
        if unknown:
            raise ValueError(f"Unknown member field(s): {', '.join(sorted(unknown))}")
        fields = {_MEMBER_FIELDS[k]: str(v).strip() for k, v in changes.items() if v is not None}
        if "name" in fields and not fields["name"]:
            raise ValueError("Name cannot be empty.")
        if "email" in fields:
            fields["email"] = fields["email"].lower()
            if not _EMAIL_RE.fullmatch(fields["email"]):
                raise ValueError("Invalid email.")

        def _update(txn: StoreTransaction) -> Member:
            data = txn.get(MEMBERS, member_id)
            if data is None:
                raise NotFoundError("member", member_id)
            txn.update(MEMBERS, member_id, fields)
            return Member.from_dict(member_id, {**data, **fields})

        return self.store.run_transaction(_update)

    def remove_member(self, member_id: str) -> bool:
        return self._remove_unless_on_loan(MEMBERS, "member", "memberId", member_id)

    # ------------------------- Ödünç işlemleri ------------------------- #
    def issue_book(self, member_id: str, book_id: str) -> str:
        return self.engine.issue_book(member_id, book_id)

    def return_book(self, transaction_id: str) -> int:
        return self.engine.return_book(transaction_id)

    def get_transaction(self, transaction_id: str) -> Optional[TransactionView]:
        data = self.store.get(TRANSACTIONS, transaction_id)
        if data is None:
            return None
        return self._view(LoanTransaction.from_dict(transaction_id, data), self.clock())

    def list_transactions(
        self,
        status: Union[LoanStatus, str, None] = None,
        query: Optional[str] = None,
        member_id: Optional[str] = None,
    ) -> List[TransactionView]:
        """Ödünç kayıtları, en yenisi önce; durum ve ceza şu ana göre hesaplanır."""
        wanted = LoanStatus(status) if status else None
        q = (query or "").strip().lower()
        now = self.clock()

        views = []
        for doc_id, data in self.store.list_documents(TRANSACTIONS):
            tx = LoanTransaction.from_dict(doc_id, data)
            if member_id and tx.member_id != member_id:
                continue
            if q and not (
                q in tx.member_name.lower() or q in tx.book_title.lower() or q in tx.membership_id.lower()
            ):
                continue
            view = self._view(tx, now)
            if wanted and view.status != wanted:
                continue
            views.append(view)
        views.sort(key=lambda v: v.transaction.issued_at, reverse=True)
        return views

    def member_summary(self, member_id: str) -> MemberSummary:
        member = self.get_member(member_id)
        if member is None:
            raise NotFoundError("member", member_id)
        return MemberSummary(member=member, transactions=self.list_transactions(member_id=member_id))

    # ------------------------- Raporlama ------------------------- #
    def get_statistics(self) -> Dict[str, int]:
        books = self.list_books()
        views = self.list_transactions()
        total_copies = sum(b.total_copies for b in books)
        available = sum(b.available_copies for b in books)
        return {
            "total_books": len(books),
            "total_copies": total_copies,
            "available_copies": available,
            "borrowed_copies": total_copies - available,
            "total_members": len(self.store.list_documents(MEMBERS)),
            "open_loans": sum(1 for v in views if v.status != LoanStatus.RETURNED),
            "overdue_loans": sum(1 for v in views if v.status == LoanStatus.OVERDUE),
        }

    def check_integrity(self, repair: bool = False) -> List[Discrepancy]:
        return reconcile(self.store, repair=repair)

    # ------------------------- Yardımcılar ------------------------- #
    def _view(self, tx: LoanTransaction, now: datetime) -> TransactionView:
        return TransactionView(
            transaction=tx,
            status=compute_status(tx, now),
            fine=compute_fine(tx, now, self.policy.fine_per_day),
        )

    def _remove_unless_on_loan(self, collection: str, kind: str, owner_field: str, doc_id: str) -> bool:
        # Her ödünç verme ve iade kitap ile üye sürümünü artırır; sayımdan sonra
        # açılan bir ödünç silme işlemini çakıştırır ve yeniden çalıştırır
        def _remove(txn: StoreTransaction) -> bool:
            if txn.get(collection, doc_id) is None:
                return False
            open_loans = self._count_open_loans(owner_field, doc_id)
            if open_loans:
                raise RecordInUseError(kind, doc_id, open_loans)
            txn.delete(collection, doc_id)
            return True

        removed = self.store.run_transaction(_remove)
        if removed:
            logger.info(f"Removed {kind} {doc_id}")
        return removed

    def _count_open_loans(self, owner_field: str, owner_id: str) -> int:
        return sum(
            1
            for _, data in self.store.list_documents(TRANSACTIONS)
            if data.get(owner_field) == owner_id and not data.get("returnedAt")
        )

    def close(self) -> None:
        """Kütüphanenin ömrünü açıkça yöneten çağıranlar için korunur.

        Bağlantılar işlem başına açıldığı için serbest bırakılacak bir şey yoktur.
        """
        return None
