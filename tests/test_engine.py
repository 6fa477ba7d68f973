import random
from datetime import datetime, timedelta, timezone

import pytest

from lending.clock import parse_timestamp
from lending.config import LendingPolicy
from lending.engine import LendingEngine
from lending.errors import (
    AlreadyReturnedError,
    CapacityExceededError,
    LimitExceededError,
    NotFoundError,
)
from lending.models import BOOKS, MEMBERS, TRANSACTIONS

UTC = timezone.utc


@pytest.fixture
def engine(store, clock):
    return LendingEngine(store, LendingPolicy(), clock)


def snapshot(store):
    return {
        coll: sorted(store.list_documents(coll), key=lambda item: item[0])
        for coll in (BOOKS, MEMBERS, TRANSACTIONS)
    }


def open_loans(store, field, owner_id):
    return sum(
        1 for _, tx in store.list_documents(TRANSACTIONS)
        if tx[field] == owner_id and tx["returnedAt"] is None
    )


def test_issue_updates_counters_and_writes_ledger(store, seed, engine):
    seed(books={"B1": 2}, members={"M1": 0})

    tx_id = engine.issue_book("M1", "B1")

    assert store.get(BOOKS, "B1")["availableCopies"] == 1
    assert store.get(MEMBERS, "M1")["borrowedBooks"] == 1
    tx = store.get(TRANSACTIONS, tx_id)
    assert tx["memberId"] == "M1"
    assert tx["bookId"] == "B1"
    assert tx["memberName"] == "Member M1"
    assert tx["membershipId"] == "LIB-0000M1"
    assert tx["bookTitle"] == "Title B1"
    assert tx["bookAuthor"] == "Author B1"
    assert parse_timestamp(tx["issuedAt"]) == datetime(2024, 1, 1, 10, 0, tzinfo=UTC)
    assert parse_timestamp(tx["dueDate"]) == datetime(2024, 1, 15, 10, 0, tzinfo=UTC)
    assert tx["returnedAt"] is None
    assert tx["fine"] == 0
    assert tx["finePaid"] is False


def test_issue_copies_caller_snapshot_fields(store, seed, engine):
    seed(books={"B1": 1}, members={"M1": 0})

    tx_id = engine.issue_book(
        "M1", "B1",
        member_fields={"memberName": "Ada Lovelace", "membershipId": "LIB-ADA001"},
        book_fields={"bookTitle": "Notes", "bookAuthor": "A. Lovelace"},
    )

    tx = store.get(TRANSACTIONS, tx_id)
    assert tx["memberName"] == "Ada Lovelace"
    assert tx["membershipId"] == "LIB-ADA001"
    assert tx["bookTitle"] == "Notes"
    assert tx["bookAuthor"] == "A. Lovelace"


@pytest.mark.parametrize(
    "member_id, book_id, kind",
    [("nobody", "B1", "member"), ("M1", "nothing", "book")],
)
def test_issue_missing_documents(store, seed, engine, member_id, book_id, kind):
    seed(books={"B1": 1}, members={"M1": 0})
    before = snapshot(store)

    with pytest.raises(NotFoundError) as excinfo:
        engine.issue_book(member_id, book_id)

    assert excinfo.value.kind == kind
    assert snapshot(store) == before


def test_issue_out_of_stock_changes_nothing(store, seed, engine):
    seed(books={"B1": (2, 0)}, members={"M1": 0})
    before = snapshot(store)

    with pytest.raises(CapacityExceededError):
        engine.issue_book("M1", "B1")

    assert snapshot(store) == before


def test_issue_at_borrow_limit_changes_nothing(store, seed, engine):
    seed(books={"B1": 5}, members={"M1": 3})
    before = snapshot(store)

    with pytest.raises(LimitExceededError) as excinfo:
        engine.issue_book("M1", "B1")

    assert excinfo.value.limit == 3
    assert snapshot(store) == before


def test_stock_is_checked_before_borrow_limit(store, seed, engine):
    seed(books={"B1": (1, 0)}, members={"M1": 3})
    with pytest.raises(CapacityExceededError):
        engine.issue_book("M1", "B1")


def test_policy_is_injected(store, seed, clock):
    seed(books={"B1": 5}, members={"M1": 0})
    engine = LendingEngine(store, LendingPolicy(loan_days=7, max_borrow=1, fine_per_day=5), clock)

    tx_id = engine.issue_book("M1", "B1")
    assert parse_timestamp(store.get(TRANSACTIONS, tx_id)["dueDate"]) == datetime(2024, 1, 8, 10, 0, tzinfo=UTC)
    with pytest.raises(LimitExceededError):
        engine.issue_book("M1", "B1")

    clock.set(datetime(2024, 1, 10, 10, 0, tzinfo=UTC))
    assert engine.return_book(tx_id) == 10


def test_return_on_time_has_no_fine(store, seed, engine, clock):
    seed(books={"B1": 1}, members={"M1": 0})
    tx_id = engine.issue_book("M1", "B1")

    clock.set(datetime(2024, 1, 15, 9, 0, tzinfo=UTC))
    assert engine.return_book(tx_id) == 0

    tx = store.get(TRANSACTIONS, tx_id)
    assert parse_timestamp(tx["returnedAt"]) == datetime(2024, 1, 15, 9, 0, tzinfo=UTC)
    assert tx["fine"] == 0
    assert store.get(BOOKS, "B1")["availableCopies"] == 1
    assert store.get(MEMBERS, "M1")["borrowedBooks"] == 0


@pytest.mark.parametrize("days_late, fine", [(1, 2), (3, 6), (10, 20)])
def test_return_late_charges_per_day(store, seed, engine, clock, days_late, fine):
    seed(books={"B1": 1}, members={"M1": 0})
    tx_id = engine.issue_book("M1", "B1")

    clock.set(datetime(2024, 1, 15, 10, 0, tzinfo=UTC) + timedelta(days=days_late))
    assert engine.return_book(tx_id) == fine
    assert store.get(TRANSACTIONS, tx_id)["fine"] == fine


def test_second_return_is_rejected(store, seed, engine, clock):
    seed(books={"B1": 2}, members={"M1": 0})
    tx_id = engine.issue_book("M1", "B1")
    clock.advance(days=20)
    engine.return_book(tx_id)
    before = snapshot(store)

    clock.advance(days=5)
    with pytest.raises(AlreadyReturnedError):
        engine.return_book(tx_id)

    assert snapshot(store) == before


def test_return_unknown_transaction(store, seed, engine):
    seed(books={"B1": 1}, members={"M1": 0})
    with pytest.raises(NotFoundError) as excinfo:
        engine.return_book("missing")
    assert excinfo.value.kind == "transaction"


def test_return_with_deleted_member_keeps_loan_open(store, seed, engine):
    seed(books={"B1": 1}, members={"M1": 0})
    tx_id = engine.issue_book("M1", "B1")
    store.delete(MEMBERS, "M1")

    with pytest.raises(NotFoundError) as excinfo:
        engine.return_book(tx_id)

    assert excinfo.value.kind == "member"
    assert store.get(TRANSACTIONS, tx_id)["returnedAt"] is None
    assert store.get(BOOKS, "B1")["availableCopies"] == 0


def test_return_floors_borrow_counter_at_zero(store, seed, engine):
    seed(books={"B1": 1}, members={"M1": 0})
    tx_id = engine.issue_book("M1", "B1")
    store.run_transaction(lambda txn: txn.update(MEMBERS, "M1", {"borrowedBooks": 0}))

    engine.return_book(tx_id)

    assert store.get(MEMBERS, "M1")["borrowedBooks"] == 0


def test_return_trusts_ledger_over_caller(store, seed, engine, clock):
    seed(books={"B1": 1, "B2": 1}, members={"M1": 0, "M2": 0})
    tx_id = engine.issue_book("M1", "B1")
    clock.set(datetime(2024, 1, 20, 10, 0, tzinfo=UTC))

    fine = engine.return_book(tx_id, member_id="M2", book_id="B2", due_date="2024-01-30T10:00:00+00:00")

    assert fine == 10
    assert store.get(BOOKS, "B1")["availableCopies"] == 1
    assert store.get(BOOKS, "B2")["availableCopies"] == 1
    assert store.get(MEMBERS, "M2")["borrowedBooks"] == 0


def test_end_to_end_scenario(store, seed, engine, clock):
    seed(books={"B1": 2}, members={"M1": 0})

    tx_id = engine.issue_book("M1", "B1")
    tx = store.get(TRANSACTIONS, tx_id)
    assert parse_timestamp(tx["dueDate"]).date().isoformat() == "2024-01-15"
    assert store.get(BOOKS, "B1")["availableCopies"] == 1
    assert store.get(MEMBERS, "M1")["borrowedBooks"] == 1

    clock.set(datetime(2024, 1, 20, 10, 0, tzinfo=UTC))
    fine = engine.return_book(tx_id)

    assert fine == 10
    assert store.get(BOOKS, "B1")["availableCopies"] == 2
    assert store.get(MEMBERS, "M1")["borrowedBooks"] == 0
    tx = store.get(TRANSACTIONS, tx_id)
    assert parse_timestamp(tx["returnedAt"]).date().isoformat() == "2024-01-20"
    assert tx["fine"] == 10


def test_counters_track_open_loans_through_random_sequence(store, seed, engine, clock):
    books = {"B1": 1, "B2": 2, "B3": 3}
    members = {"M1": 0, "M2": 0, "M3": 0}
    seed(books=books, members=members)
    rng = random.Random(7)
    open_ids = []

    for _ in range(60):
        clock.advance(hours=rng.randint(1, 48))
        if open_ids and rng.random() < 0.4:
            engine.return_book(open_ids.pop(rng.randrange(len(open_ids))))
        else:
            try:
                open_ids.append(engine.issue_book(rng.choice(list(members)), rng.choice(list(books))))
            except (CapacityExceededError, LimitExceededError):
                pass

        for book_id, total in books.items():
            available = store.get(BOOKS, book_id)["availableCopies"]
            assert 0 <= available <= total
            assert total - available == open_loans(store, "bookId", book_id)
        for member_id in members:
            assert store.get(MEMBERS, member_id)["borrowedBooks"] == open_loans(store, "memberId", member_id)
