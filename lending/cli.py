import logging
import subprocess
import sys
import webbrowser
from typing import Optional

import typer

from lending import ui_helpers
from lending.config import settings
from lending.errors import LendingError, TransientStoreError
from lending.library import Library

logging.basicConfig(level=settings.log_level)

app = typer.Typer(help="Library lending desk CLI")

_state = {"db_file": None, "library": None}


def get_library() -> Library:
    """Seçili veritabanı için Library örneğini al veya ilk kullanımda oluştur."""
    if _state["library"] is None:
        _state["library"] = Library(db_file=_state["db_file"] or settings.db_file)
    return _state["library"]


def _fail(exc: Exception) -> None:
    if isinstance(exc, TransientStoreError):
        print(f"Busy: {exc}")
    else:
        print(f"Error: {exc}")
    raise typer.Exit(code=1)


@app.callback()
def _global_options(
    db: Optional[str] = typer.Option(None, "--db", envvar="LENDING_DB_FILE", help="SQLite database file"),
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Output format: plain | json | rich"),
):
    """CLI için genel seçenekler (veritabanı dosyası, çıktı modu)."""
    if db != _state["db_file"]:
        _state["db_file"] = db
        _state["library"] = None
    if output:
        ui_helpers.set_output_mode(output)


# --- Katalog ---
@app.command("add-book")
def cli_add_book(
    title: str,
    author: str,
    copies: int = typer.Option(1, "--copies", "-c", help="Number of physical copies"),
    isbn: str = typer.Option("", "--isbn"),
    category: str = typer.Option("", "--category"),
    rack: str = typer.Option("", "--rack", help="Rack location"),
):
    """Kataloğa yeni bir kitap ekle."""
    try:
        book = get_library().add_book(title, author, isbn=isbn, category=category,
                                      total_copies=copies, rack_location=rack)
    except ValueError as e:
        _fail(e)
    print(f"Added book {book.id}: {book.title} by {book.author} ({book.total_copies} copies)")


@app.command("add-member")
def cli_add_member(name: str, email: str, phone: str = typer.Option("", "--phone")):
    """Yeni bir üye kaydet."""
    try:
        member = get_library().add_member(name, email, phone)
    except ValueError as e:
        _fail(e)
    print(f"Added member {member.id}: {member.name} [{member.membership_id}]")


@app.command("books")
def cli_books(query: Optional[str] = typer.Option(None, "--query", "-q", help="Search text")):
    """Kitapları listele veya ara."""
    lib = get_library()
    ui_helpers.print_books(lib.search_books(query) if query else lib.list_books())


@app.command("members")
def cli_members(query: Optional[str] = typer.Option(None, "--query", "-q", help="Search text")):
    """Üyeleri listele veya ara."""
    lib = get_library()
    ui_helpers.print_members(lib.search_members(query) if query else lib.list_members())


# --- Ödünç işlemleri ---
@app.command("issue")
def cli_issue(member_id: str, book_id: str):
    """Bir üyeye kitap ödünç ver."""
    try:
        tx_id = get_library().issue_book(member_id, book_id)
    except LendingError as e:
        _fail(e)
    print(f"Issued. Transaction: {tx_id}")


@app.command("return")
def cli_return(transaction_id: str):
    """Ödünç alınan kitabı iade et ve cezayı göster."""
    try:
        fine = get_library().return_book(transaction_id)
    except LendingError as e:
        _fail(e)
    if fine:
        print(f"Returned late. Fine due: {fine}")
    else:
        print("Returned on time. No fine.")


@app.command("transactions")
def cli_transactions(
    status: Optional[str] = typer.Option(None, "--status", "-s", help="issued | overdue | returned"),
    query: Optional[str] = typer.Option(None, "--query", "-q", help="Member name, book title or membership ID"),
    member: Optional[str] = typer.Option(None, "--member", "-m", help="Only this member's transactions"),
):
    """Ödünç işlemlerini listele."""
    try:
        views = get_library().list_transactions(status=status, query=query, member_id=member)
    except ValueError:
        print(f"Unknown status: {status}. Use issued, overdue or returned.")
        raise typer.Exit(code=2)
    ui_helpers.print_transactions(views)


@app.command("member")
def cli_member(member_id: str):
    """Bir üyenin ödünç özetini göster."""
    try:
        summary = get_library().member_summary(member_id)
    except LendingError as e:
        _fail(e)
    m = summary.member
    print(f"{m.name} [{m.membership_id}] <{m.email}>")
    print(f"Active: {summary.active}  Overdue: {summary.overdue}  Total fine: {summary.total_fine}")
    ui_helpers.print_transactions(summary.transactions)


# --- Raporlama ve bakım ---
@app.command("stats")
def cli_stats():
    """Kütüphane istatistiklerini göster."""
    ui_helpers.print_stats(get_library().get_statistics())


@app.command("audit")
def cli_audit(repair: bool = typer.Option(False, "--repair", help="Rewrite drifted counters from the ledger")):
    """Kopya ve ödünç sayaçlarını açık ödünçlerle karşılaştır."""
    try:
        items = get_library().check_integrity(repair=repair)
    except LendingError as e:
        _fail(e)
    ui_helpers.print_discrepancies(items, repaired=repair)


@app.command("serve")
def cli_serve(
    host: str = typer.Option(settings.api_host, "--host"),
    port: int = typer.Option(settings.api_port, "--port"),
    open_browser: bool = typer.Option(False, "--open", help="Open the API docs in a browser"),
):
    """Uvicorn kullanarak HTTP API sunucusunu başlat."""
    url = f"http://{host}:{port}/docs"
    print(f"Starting lending API on {url}")
    if open_browser:
        webbrowser.open(url)
    subprocess.run(
        [sys.executable, "-m", "uvicorn", "lending.api:app", "--host", host, "--port", str(port)],
        check=False,
    )


if __name__ == "__main__":
    app()
