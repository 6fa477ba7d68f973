import pytest

from lending.errors import TransientStoreError
from lending.store import DocumentExists, DocumentMissing, SQLiteDocumentStore


def bump(store, doc_id="d1"):
    """Changes a document behind the back of a running transaction."""
    store.run_transaction(lambda txn: txn.update("things", doc_id, {"n": store.get("things", doc_id)["n"] + 1}))


def test_create_get_and_delete(store):
    doc_id = store.create("things", {"name": "lamp", "tags": ["a", "b"]})

    assert store.get("things", doc_id) == {"name": "lamp", "tags": ["a", "b"]}
    assert store.get("things", "absent") is None
    assert store.delete("things", doc_id) is True
    assert store.delete("things", doc_id) is False
    assert store.get("things", doc_id) is None


def test_create_rejects_taken_id(store):
    store.create("things", {"n": 1}, doc_id="d1")
    with pytest.raises(DocumentExists):
        store.create("things", {"n": 2}, doc_id="d1")
    assert store.get("things", "d1") == {"n": 1}


def test_collections_are_separate(store):
    store.create("things", {"n": 1}, doc_id="same")
    store.create("others", {"n": 2}, doc_id="same")

    assert store.get("things", "same") == {"n": 1}
    assert [doc_id for doc_id, _ in store.list_documents("others")] == ["same"]


def test_returned_documents_are_copies(store):
    store.create("things", {"tags": ["a"]}, doc_id="d1")
    store.get("things", "d1")["tags"].append("b")
    assert store.get("things", "d1") == {"tags": ["a"]}


def test_transaction_merges_updates_and_creates(store):
    store.create("things", {"n": 1, "keep": True}, doc_id="d1")

    def work(txn):
        doc = txn.get("things", "d1")
        txn.update("things", "d1", {"n": doc["n"] + 1})
        txn.create("things", "d2", {"n": 0})
        return "done"

    assert store.run_transaction(work) == "done"
    assert store.get("things", "d1") == {"n": 2, "keep": True}
    assert store.get("things", "d2") == {"n": 0}


def test_read_after_write_is_refused(store):
    store.create("things", {"n": 1}, doc_id="d1")

    def work(txn):
        txn.update("things", "d1", {"n": 5})
        txn.get("things", "d1")

    with pytest.raises(RuntimeError):
        store.run_transaction(work)
    assert store.get("things", "d1") == {"n": 1}


def test_callback_error_discards_buffered_writes(store):
    store.create("things", {"n": 1}, doc_id="d1")

    def work(txn):
        txn.get("things", "d1")
        txn.update("things", "d1", {"n": 99})
        raise ValueError("nope")

    with pytest.raises(ValueError):
        store.run_transaction(work)
    assert store.get("things", "d1") == {"n": 1}


def test_commit_is_all_or_nothing(store):
    store.create("things", {"n": 1}, doc_id="d1")

    def work(txn):
        txn.get("things", "d1")
        txn.update("things", "d1", {"n": 2})
        txn.create("things", "d3", {"n": 3})
        txn.update("things", "ghost", {"n": 4})

    with pytest.raises(DocumentMissing):
        store.run_transaction(work)
    assert store.get("things", "d1") == {"n": 1}
    assert store.get("things", "d3") is None


def test_conflict_reruns_callback_against_fresh_state(store):
    store.create("things", {"n": 1}, doc_id="d1")
    seen = []

    def work(txn):
        doc = txn.get("things", "d1")
        seen.append(doc["n"])
        if len(seen) == 1:
            bump(store)
        txn.update("things", "d1", {"n": doc["n"] * 10})

    store.run_transaction(work)

    assert seen == [1, 2]
    assert store.get("things", "d1") == {"n": 20}


def test_conflict_on_absent_document_is_detected(store):
    def work(txn):
        if txn.get("things", "late") is None:
            store.create("things", {"n": 1}, doc_id="late")
        txn.create("things", "other", {"n": 0})

    store.run_transaction(work)
    assert store.get("things", "other") == {"n": 0}


def test_exhausted_retries_raise_transient_error(store):
    store.create("things", {"n": 0}, doc_id="d1")
    calls = []

    def work(txn):
        calls.append(1)
        doc = txn.get("things", "d1")
        bump(store)
        txn.update("things", "d1", {"n": doc["n"] - 100})

    with pytest.raises(TransientStoreError) as excinfo:
        store.run_transaction(work, max_attempts=3)

    assert len(calls) == 3
    assert excinfo.value.attempts == 3
    assert "try again" in str(excinfo.value).lower()
    assert store.get("things", "d1") == {"n": 3}


def test_sqlite_documents_survive_reopen(tmp_path):
    db_file = str(tmp_path / "persist.db")
    first = SQLiteDocumentStore(db_file=db_file)
    first.create("things", {"title": "Čapek"}, doc_id="d1")
    first.run_transaction(lambda txn: txn.update("things", "d1", {"read": True}))

    second = SQLiteDocumentStore(db_file=db_file)
    assert second.get("things", "d1") == {"title": "Čapek", "read": True}
    assert second.list_documents("things") == [("d1", {"title": "Čapek", "read": True})]


def test_transaction_delete(store):
    store.create("things", {"n": 1}, doc_id="d1")
    store.create("things", {"n": 2}, doc_id="d2")

    def work(txn):
        txn.get("things", "d1")
        txn.delete("things", "d1")
        txn.update("things", "d2", {"n": 3})

    store.run_transaction(work)
    assert store.get("things", "d1") is None
    assert store.get("things", "d2") == {"n": 3}

    with pytest.raises(DocumentMissing):
        store.run_transaction(lambda txn: txn.delete("things", "d1"))


def test_delete_is_retried_when_document_changes(store):
    store.create("things", {"n": 1}, doc_id="d1")
    seen = []

    def work(txn):
        doc = txn.get("things", "d1")
        seen.append(doc["n"])
        if len(seen) == 1:
            bump(store)
        if doc["n"] > 1:
            return False
        txn.delete("things", "d1")
        return True

    assert store.run_transaction(work) is False
    assert seen == [1, 2]
    assert store.get("things", "d1") == {"n": 2}


def test_failed_commit_keeps_deleted_document(store):
    store.create("things", {"n": 1}, doc_id="d1")

    def work(txn):
        txn.delete("things", "d1")
        txn.update("things", "ghost", {"n": 2})

    with pytest.raises(DocumentMissing):
        store.run_transaction(work)
    assert store.get("things", "d1") == {"n": 1}
