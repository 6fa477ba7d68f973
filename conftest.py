from datetime import datetime, timedelta, timezone

import pytest

from lending.config import LendingPolicy
from lending.library import Library
from lending.models import BOOKS, MEMBERS
from lending.store import MemoryDocumentStore, SQLiteDocumentStore


class FakeClock:
    """Settable clock passed to the engine in place of the wall clock."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, value: datetime) -> None:
        self.now = value


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc))


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    # Each test gets its own database file
    if request.param == "memory":
        return MemoryDocumentStore(retry_backoff=0)
    return SQLiteDocumentStore(db_file=str(tmp_path / f"test_{request.node.name}.db"), retry_backoff=0.001)


@pytest.fixture
def seed(store):
    """Creates book and member documents with fixed ids."""

    def _seed(books=None, members=None):
        for book_id, copies in (books or {}).items():
            total, available = copies if isinstance(copies, tuple) else (copies, copies)
            store.create(
                BOOKS,
                {
                    "title": f"Title {book_id}",
                    "author": f"Author {book_id}",
                    "isbn": "",
                    "category": "",
                    "rackLocation": "",
                    "totalCopies": total,
                    "availableCopies": available,
                },
                doc_id=book_id,
            )
        for member_id, borrowed in (members or {}).items():
            store.create(
                MEMBERS,
                {
                    "name": f"Member {member_id}",
                    "email": f"{member_id.lower()}@example.com",
                    "phone": "",
                    "membershipId": f"LIB-{member_id:0>6}",
                    "borrowedBooks": borrowed,
                },
                doc_id=member_id,
            )

    return _seed


@pytest.fixture
def lib(tmp_path, request, clock):
    db_file = str(tmp_path / f"test_{request.node.name}.db")
    library = Library(db_file=db_file, policy=LendingPolicy(), clock=clock)
    yield library
    library.close()
