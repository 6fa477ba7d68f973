"""Library Lending - core package

Modules:
- Lending engine: issue and return as atomic store transactions (engine.py)
- Due dates, fines and loan status (clock.py, status.py)
- Document store adapters: SQLite and in-memory (store/)
- Catalogue and membership facade (library.py)
- Counter audit and repair (audit.py)
- HTTP API (api.py) and CLI (cli.py)
"""

from lending.config import LendingPolicy
from lending.engine import LendingEngine
from lending.errors import (
    AlreadyReturnedError,
    CapacityExceededError,
    LendingConflict,
    LendingError,
    LimitExceededError,
    NotFoundError,
    RecordInUseError,
    TransientStoreError,
)
from lending.library import Library
from lending.status import LoanStatus, compute_fine, compute_status

__all__ = [
    "LendingPolicy",
    "LendingEngine",
    "Library",
    "LoanStatus",
    "compute_fine",
    "compute_status",
    "LendingError",
    "LendingConflict",
    "NotFoundError",
    "CapacityExceededError",
    "LimitExceededError",
    "AlreadyReturnedError",
    "RecordInUseError",
    "TransientStoreError",
]
