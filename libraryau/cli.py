"""Yerel bakım komutları: katalog yükleme, barkod kontrolü ve raporlar.

Bu komutlar veritabanı dosyasına doğrudan erişen operatör için yazılmıştır;
yönetici hesabı yetkilendirmesi ``LibrarySession`` üzerinden yapılır.
"""

import logging
from pathlib import Path
from typing import Dict, Optional

import typer

from libraryau import barcode
from libraryau.config import settings
from libraryau.database import SqliteRepository
from libraryau.errors import ExternalServiceError, LibraryError
from libraryau.isbn_lookup import IsbnLookupService
from libraryau.lending import LendingService
from libraryau.models import EntityKind
from libraryau.seed import load_catalog
from libraryau.ui_helpers import print_book_info, print_loans_result, print_stats_result, set_output_mode

app = typer.Typer(help="Kütüphane ödünç sistemi CLI")

_state: Dict[str, Optional[str]] = {"db_file": None}


def _service() -> LendingService:
    return LendingService(SqliteRepository(_state["db_file"]))


def _fail(error: LibraryError) -> None:
    print(f"Error [{error.kind}]: {error}")
    raise typer.Exit(code=1)


def _copy_labels(service: LendingService) -> Dict[str, str]:
    return {c.id: c.barcode for c in service.repository.query(EntityKind.COPY)}


@app.callback()
def _global_options(
    db: Optional[str] = typer.Option(None, "--db", help="SQLite veritabanı dosyası"),
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Çıktı formatı: plain | json | rich (varsayılan: plain)",
    ),
):
    """CLI için genel seçenekler."""
    logging.basicConfig(level=settings.log_level.upper(),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    _state["db_file"] = db
    if output:
        set_output_mode(output)


@app.command("seed")
def cli_seed(catalog: Path = typer.Argument(..., help="JSON katalog dosyası")):
    """İlk açılışta kataloğu JSON dosyasından yükle."""
    try:
        records = load_catalog(catalog)
        created = _service().bulk_seed_from_catalog(records)
    except LibraryError as e:
        _fail(e)
        return
    if created:
        print(f"Seeded {created} templates.")
    else:
        print("Catalog already initialized; nothing seeded.")


@app.command("barcode")
def cli_barcode(raw: str):
    """Bir barkodun türünü ve geçerliliğini göster."""
    kind = barcode.classify(raw)
    valid = barcode.validate(raw)
    print(f"Kind: {kind.value}")
    print(f"Valid: {'yes' if valid else 'no'}")
    parsed = barcode.parse(raw) if kind is barcode.BarcodeKind.SYSTEM else None
    if parsed:
        print(f"Template: {parsed[0]}")
        print(f"Copy: {parsed[1]}")
    if not valid:
        raise typer.Exit(code=1)


@app.command("overdue")
def cli_overdue():
    """Gecikmiş ödünçleri listele."""
    service = _service()
    now = service.clock()
    print_loans_result(service.overdue_loans(now), _copy_labels(service), now, "No overdue loans.")


@app.command("due-soon")
def cli_due_soon():
    """İade tarihi yaklaşan ödünçleri listele."""
    service = _service()
    now = service.clock()
    print_loans_result(service.due_soon_loans(now), _copy_labels(service), now, "No loans due soon.")


@app.command("stats")
def cli_stats():
    """Kütüphane istatistiklerini göster."""
    print_stats_result(_service().statistics())


@app.command("lookup")
def cli_lookup(isbn: str):
    """ISBN ile Google Books / Open Library üzerinden kitap bilgisi ara."""
    try:
        info = IsbnLookupService().fetch_book_info(isbn)
    except LibraryError as e:
        _fail(e)
        return
    except ExternalServiceError as e:
        print(f"Lookup failed: {e}")
        raise typer.Exit(code=2)
    print_book_info(info)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
