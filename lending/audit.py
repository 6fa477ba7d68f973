"""Cross-checks copy and borrow counters against the open ledger entries.

At any quiet moment every book should have `totalCopies - availableCopies`
equal to its open loans, and every member `borrowedBooks` equal to theirs.
Counters written by older releases, manual edits or crashed clients can
drift; `reconcile(..., repair=True)` rewrites them from the ledger.
"""

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Dict, List

from lending.models import BOOKS, MEMBERS, TRANSACTIONS
from lending.store.base import DocumentStore, StoreTransaction

logger = logging.getLogger(__name__)


@dataclass
class Discrepancy:
    collection: str
    doc_id: str
    field: str
    recorded: int
    expected: int

    def to_dict(self) -> Dict[str, object]:
        return {
            "collection": self.collection,
            "doc_id": self.doc_id,
            "field": self.field,
            "recorded": self.recorded,
            "expected": self.expected,
        }


def _open_loan_counts(store: DocumentStore):
    by_book: Counter = Counter()
    by_member: Counter = Counter()
    for _, data in store.list_documents(TRANSACTIONS):
        if data.get("returnedAt"):
            continue
        by_book[data.get("bookId")] += 1
        by_member[data.get("memberId")] += 1
    return by_book, by_member


def find_discrepancies(store: DocumentStore) -> List[Discrepancy]:
    by_book, by_member = _open_loan_counts(store)
    found: List[Discrepancy] = []

    for book_id, data in store.list_documents(BOOKS):
        total = data.get("totalCopies") or 0
        recorded = data.get("availableCopies") or 0
        expected = total - by_book.get(book_id, 0)
        # More open loans than copies leaves expected out of range too
        if recorded != expected or not 0 <= recorded <= total:
            found.append(Discrepancy(BOOKS, book_id, "availableCopies", recorded, expected))

    for member_id, data in store.list_documents(MEMBERS):
        recorded = data.get("borrowedBooks") or 0
        expected = by_member.get(member_id, 0)
        if recorded != expected:
            found.append(Discrepancy(MEMBERS, member_id, "borrowedBooks", recorded, expected))

    return found


def _repair(store: DocumentStore, item: Discrepancy) -> None:
    # Recount under the transaction so a loan issued meanwhile is not lost
    def _fix(txn: StoreTransaction) -> None:
        doc = txn.get(item.collection, item.doc_id)
        if doc is None:
            return
        owner_field = "bookId" if item.collection == BOOKS else "memberId"
        open_loans = sum(
            1
            for _, tx in store.list_documents(TRANSACTIONS)
            if tx.get(owner_field) == item.doc_id and not tx.get("returnedAt")
        )
        if item.collection == BOOKS:
            expected = (doc.get("totalCopies") or 0) - open_loans
        else:
            expected = open_loans
        txn.update(item.collection, item.doc_id, {item.field: expected})

    store.run_transaction(_fix)


def reconcile(store: DocumentStore, repair: bool = False) -> List[Discrepancy]:
    """Reports counter drift and optionally rewrites the drifted counters."""
    found = find_discrepancies(store)
    for item in found:
        logger.warning(
            f"{item.collection}/{item.doc_id} {item.field} is {item.recorded}, ledger implies {item.expected}"
        )
        if repair:
            _repair(store, item)
            logger.info(f"Repaired {item.collection}/{item.doc_id} {item.field}")
    return found
