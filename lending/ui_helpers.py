import json
import os
from typing import Any, Dict, List

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

# Environment variable controlling CLI output mode
# İzin verilen değerler: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LENDING_CLI_OUTPUT"

_console = Console()

_STATUS_STYLES = {"issued": "cyan", "overdue": "bold red", "returned": "green"}


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    # Geçersiz değerleri yoksay; mevcut varsayılanı koru
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def print_books(books: List[Any]) -> None:
    """Kitap listesini mevcut çıktı moduna göre yazdır."""
    mode = get_output_mode()
    if not books:
        print("No books in library.")
        return

    if mode == "json":
        print(json.dumps([{"id": b.id, **b.to_dict()} for b in books], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="📚 Books", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Title")
        table.add_column("Author")
        table.add_column("Available", justify="right")
        for b in books:
            table.add_row(b.id, b.title, b.author, f"{b.available_copies}/{b.total_copies}")
        _console.print(table)
    else:
        for b in books:
            print(f"{b.id} - {b.title} by {b.author} ({b.available_copies}/{b.total_copies} available)")


def print_members(members: List[Any]) -> None:
    mode = get_output_mode()
    if not members:
        print("No members registered.")
        return

    if mode == "json":
        print(json.dumps([{"id": m.id, **m.to_dict()} for m in members], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="👥 Members", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Membership")
        table.add_column("Name")
        table.add_column("Email")
        table.add_column("Borrowed", justify="right")
        for m in members:
            table.add_row(m.id, m.membership_id, m.name, m.email, str(m.borrowed_books))
        _console.print(table)
    else:
        for m in members:
            print(f"{m.id} - {m.name} <{m.email}> [{m.membership_id}] borrowed: {m.borrowed_books}")


def print_transactions(views: List[Any]) -> None:
    """Ödünç kayıtlarını türetilmiş durum ve cezalarıyla yazdır.

    - plain: 'ID - Title -> Member [status] due YYYY-MM-DD fine N'
    - json: işlem nesnelerinden oluşan dizi
    - rich: durumu renklendirilmiş tablo
    """
    mode = get_output_mode()
    if not views:
        print("No transactions found.")
        return

    if mode == "json":
        print(json.dumps([v.to_dict() for v in views], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="🔁 Transactions", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Book")
        table.add_column("Member")
        table.add_column("Due")
        table.add_column("Status")
        table.add_column("Fine", justify="right")
        for v in views:
            tx = v.transaction
            style = _STATUS_STYLES.get(v.status.value, "white")
            table.add_row(
                tx.id,
                tx.book_title,
                f"{tx.member_name} ({tx.membership_id})",
                tx.due_date.date().isoformat(),
                f"[{style}]{v.status.value}[/]",
                str(v.fine),
            )
        _console.print(table)
    else:
        for v in views:
            tx = v.transaction
            print(
                f"{tx.id} - {tx.book_title} -> {tx.member_name} [{v.status.value}] "
                f"due {tx.due_date.date().isoformat()} fine {v.fine}"
            )


def print_stats(stats: Dict[str, Any]) -> None:
    """İstatistikleri mevcut çıktı moduna göre yazdır."""
    mode = get_output_mode()
    if not stats:
        print("No statistics available.")
        return

    labels = {
        "total_books": "Total Books",
        "total_copies": "Total Copies",
        "available_copies": "Available Copies",
        "borrowed_copies": "Borrowed Copies",
        "total_members": "Total Members",
        "open_loans": "Open Loans",
        "overdue_loans": "Overdue Loans",
    }
    if mode == "json":
        print(json.dumps(stats, ensure_ascii=False))
    elif mode == "rich":
        content = "\n".join(f"[bold]{labels.get(k, k)}:[/] {v}" for k, v in stats.items())
        _console.print(Panel.fit(content, title="📊 Stats", border_style="blue"))
    else:
        for key, value in stats.items():
            print(f"{labels.get(key, key)}: {value}")


def print_discrepancies(items: List[Any], repaired: bool) -> None:
    mode = get_output_mode()
    if mode == "json":
        print(json.dumps({"repaired": repaired, "discrepancies": [i.to_dict() for i in items]}))
        return
    if not items:
        print("Counters match the ledger.")
        return
    verb = "Repaired" if repaired else "Found"
    for i in items:
        print(f"{verb}: {i.collection}/{i.doc_id} {i.field} recorded {i.recorded}, expected {i.expected}")
