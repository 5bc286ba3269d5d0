import json
import os
from datetime import datetime
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from libraryau.models import Loan

# CLI çıktı modunu kontrol eden ortam değişkeni
# İzin verilen değerler: 'plain' (varsayılan), 'json', 'rich'
OUTPUT_MODE_ENV = "LIBRARYAU_CLI_OUTPUT"

_console = Console()

STAT_LABELS = {
    "total_templates": "Templates",
    "total_copies": "Copies",
    "available_copies": "Available Copies",
    "total_borrowers": "Borrowers",
    "active_loans": "Active Loans",
    "overdue_loans": "Overdue Loans",
}


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def print_loans_result(loans: List[Loan], labels: Dict[str, str], now: datetime, empty_message: str) -> None:
    """Ödünç listesini mevcut çıktı moduna göre yazdır.

    ``labels`` kopya kimliğinden ekranda gösterilecek barkoda eşlemedir.
    """
    mode = get_output_mode()

    if not loans:
        print(empty_message)
        return

    rows = [
        {
            "loan_id": loan.id,
            "barcode": labels.get(loan.copy_id, loan.copy_id),
            "borrower_id": loan.borrower_id,
            "due_at": loan.due_at.date().isoformat(),
            "overdue_days": loan.overdue_days(now),
            "remaining_days": loan.remaining_days(now),
        }
        for loan in loans
    ]

    if mode == "json":
        print(json.dumps(rows, ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="📚 Loans", show_lines=True, header_style="bold cyan")
        table.add_column("Barcode", style="magenta", no_wrap=True)
        table.add_column("Borrower")
        table.add_column("Due")
        table.add_column("Overdue", justify="right", style="red")
        table.add_column("Remaining", justify="right")
        for row in rows:
            table.add_row(row["barcode"], row["borrower_id"], row["due_at"],
                          str(row["overdue_days"]), str(row["remaining_days"]))
        _console.print(table)
    else:
        for row in rows:
            print(f"{row['barcode']} - {row['borrower_id']} due {row['due_at']} "
                  f"(overdue {row['overdue_days']}d, remaining {row['remaining_days']}d)")


def print_stats_result(stats: Dict[str, Any]) -> None:
    mode = get_output_mode()

    if not stats:
        print("No statistics available.")
        return

    if mode == "json":
        print(json.dumps(stats, ensure_ascii=False))
    elif mode == "rich":
        content = "\n".join(f"[bold]{STAT_LABELS.get(k, k)}:[/] {v}" for k, v in stats.items())
        _console.print(Panel.fit(content, title="📊 Stats", border_style="blue"))
    else:
        for key, value in stats.items():
            print(f"{STAT_LABELS.get(key, key)}: {value}")


def print_book_info(info: Optional[Any]) -> None:
    mode = get_output_mode()
    if info is None:
        print("Book not found.")
        return
    fields = {
        "title": info.title,
        "author": info.author,
        "publisher": info.publisher,
        "category": info.category,
        "published_date": info.published_date,
    }
    if mode == "json":
        print(json.dumps(fields, ensure_ascii=False))
    elif mode == "rich":
        content = "\n".join(f"[bold]{k.replace('_', ' ').title()}:[/] {v or '-'}" for k, v in fields.items())
        _console.print(Panel.fit(content, title="🔎 ISBN", border_style="green"))
    else:
        for key, value in fields.items():
            if value:
                print(f"{key.replace('_', ' ').title()}: {value}")
