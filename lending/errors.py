from typing import Optional


class LendingError(Exception):
    """Base class for failures surfaced by the lending desk."""


class NotFoundError(LendingError, LookupError):
    """A referenced member, book or transaction does not exist."""

    def __init__(self, kind: str, doc_id: str) -> None:
        self.kind = kind
        self.doc_id = doc_id
        super().__init__(f"{kind.capitalize()} not found.")


class LendingConflict(LendingError):
    """A business rule refused the operation. Retrying will not help."""


class CapacityExceededError(LendingConflict):
    def __init__(self, book_id: Optional[str] = None) -> None:
        self.book_id = book_id
        super().__init__("No copies available for this book right now.")


class LimitExceededError(LendingConflict):
    def __init__(self, limit: int, member_id: Optional[str] = None) -> None:
        self.limit = limit
        self.member_id = member_id
        super().__init__(f"Borrow limit reached: this member already has {limit} books.")


class AlreadyReturnedError(LendingConflict):
    def __init__(self, transaction_id: str) -> None:
        self.transaction_id = transaction_id
        super().__init__(f"Transaction {transaction_id} has already been returned.")


class RecordInUseError(LendingConflict):
    """Deleting a book or member that open loans still reference."""

    def __init__(self, kind: str, doc_id: str, open_loans: int) -> None:
        self.kind = kind
        self.doc_id = doc_id
        self.open_loans = open_loans
        super().__init__(
            f"{kind.capitalize()} {doc_id} has {open_loans} open loan(s) and cannot be removed."
        )


class TransientStoreError(LendingError):
    """The store kept aborting on concurrent writes until the retry budget ran out."""

    def __init__(self, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(
            f"The operation conflicted with concurrent updates {attempts} time(s). Please try again."
        )
