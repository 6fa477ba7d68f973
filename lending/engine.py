"""Issue and return: the only operations that move copies on and off loan.

Each operation is one store transaction. The member, the book and the ledger
entry are read and written together, so no caller ever sees the counters and
the ledger out of step with each other.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Mapping, Optional

from lending.clock import due_date as compute_due_date
from lending.clock import ensure_aware, format_timestamp, parse_timestamp, utcnow
from lending.config import LendingPolicy
from lending.errors import (
    AlreadyReturnedError,
    CapacityExceededError,
    LimitExceededError,
    NotFoundError,
)
from lending.models import BOOKS, MEMBERS, TRANSACTIONS, LoanTransaction
from lending.status import fine_for
from lending.store.base import DocumentStore, StoreTransaction

logger = logging.getLogger(__name__)


class LendingEngine:
    def __init__(
        self,
        store: DocumentStore,
        policy: Optional[LendingPolicy] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.policy = policy or LendingPolicy()
        self.clock = clock

    def issue_book(
        self,
        member_id: str,
        book_id: str,
        member_fields: Optional[Mapping[str, Any]] = None,
        book_fields: Optional[Mapping[str, Any]] = None,
    ) -> str:
        """Lends one copy of `book_id` to `member_id` and returns the new transaction id.

        `member_fields` (memberName, membershipId) and `book_fields`
        (bookTitle, bookAuthor) are copied into the ledger as given; fields
        left out are taken from the documents read in the transaction.

        Raises NotFoundError, CapacityExceededError or LimitExceededError
        without changing anything.
        """
        # Allocated up front so the ledger entry is created in the same commit
        tx_id = self.store.new_id()

        def _issue(txn: StoreTransaction) -> LoanTransaction:
            member = txn.get(MEMBERS, member_id)
            if member is None:
                raise NotFoundError("member", member_id)
            book = txn.get(BOOKS, book_id)
            if book is None:
                raise NotFoundError("book", book_id)

            available = book.get("availableCopies") or 0
            borrowed = member.get("borrowedBooks") or 0
            if available < 1:
                raise CapacityExceededError(book_id)
            if borrowed >= self.policy.max_borrow:
                raise LimitExceededError(self.policy.max_borrow, member_id)

            now = self.clock()
            record = LoanTransaction(
                id=tx_id,
                member_id=member_id,
                book_id=book_id,
                member_name=_pick(member_fields, "memberName", member.get("name")),
                membership_id=_pick(member_fields, "membershipId", member.get("membershipId")),
                book_title=_pick(book_fields, "bookTitle", book.get("title")),
                book_author=_pick(book_fields, "bookAuthor", book.get("author")),
                issued_at=now,
                due_date=compute_due_date(now, self.policy.loan_days),
            )

            txn.update(MEMBERS, member_id, {"borrowedBooks": borrowed + 1})
            txn.update(BOOKS, book_id, {"availableCopies": available - 1})
            txn.create(TRANSACTIONS, tx_id, record.to_dict())
            return record

        record = self.store.run_transaction(_issue)
        logger.info(
            f"Issued book {book_id} to member {member_id} as transaction {tx_id}, due {record.due_date.date()}"
        )
        return tx_id

    def return_book(
        self,
        transaction_id: str,
        member_id: Optional[str] = None,
        book_id: Optional[str] = None,
        due_date: Optional[Any] = None,
    ) -> int:
        """Closes an open loan and returns the fine charged for it.

        The ledger entry is authoritative for the member, the book and the due
        date. Caller-supplied values are only compared against it.

        Raises NotFoundError or AlreadyReturnedError without changing anything.
        """
        now = self.clock()

        def _return(txn: StoreTransaction) -> int:
            data = txn.get(TRANSACTIONS, transaction_id)
            if data is None:
                raise NotFoundError("transaction", transaction_id)
            record = LoanTransaction.from_dict(transaction_id, data)
            if not record.is_open:
                raise AlreadyReturnedError(transaction_id)
            self._check_caller_view(record, member_id, book_id, due_date)

            member = txn.get(MEMBERS, record.member_id)
            if member is None:
                raise NotFoundError("member", record.member_id)
            book = txn.get(BOOKS, record.book_id)
            if book is None:
                raise NotFoundError("book", record.book_id)

            fine = fine_for(record.due_date, now, self.policy.fine_per_day)
            borrowed = member.get("borrowedBooks") or 0
            available = (book.get("availableCopies") or 0) + 1
            total = book.get("totalCopies") or 0
            if available > total:
                logger.warning(
                    f"Book {record.book_id} will have {available} available copies but only {total} in total"
                )
            if borrowed < 1:
                logger.warning(f"Member {record.member_id} had no borrowed books recorded on return")

            txn.update(TRANSACTIONS, transaction_id, {"returnedAt": format_timestamp(now), "fine": fine})
            txn.update(MEMBERS, record.member_id, {"borrowedBooks": max(0, borrowed - 1)})
            txn.update(BOOKS, record.book_id, {"availableCopies": available})
            return fine

        fine = self.store.run_transaction(_return)
        logger.info(f"Returned transaction {transaction_id} with fine {fine}")
        return fine

    @staticmethod
    def _check_caller_view(
        record: LoanTransaction,
        member_id: Optional[str],
        book_id: Optional[str],
        due_date: Optional[Any],
    ) -> None:
        if member_id is not None and member_id != record.member_id:
            logger.warning(
                f"Return of {record.id}: caller passed member {member_id}, ledger has {record.member_id}"
            )
        if book_id is not None and book_id != record.book_id:
            logger.warning(f"Return of {record.id}: caller passed book {book_id}, ledger has {record.book_id}")
        if due_date is not None:
            supplied = parse_timestamp(due_date)
            if ensure_aware(supplied) != ensure_aware(record.due_date):
                logger.warning(
                    f"Return of {record.id}: caller passed due date {supplied.isoformat()}, "
                    f"ledger has {record.due_date.isoformat()}"
                )


def _pick(fields: Optional[Mapping[str, Any]], key: str, fallback: Optional[str]) -> str:
    if fields and fields.get(key) is not None:
        return str(fields[key])
    return fallback or ""
