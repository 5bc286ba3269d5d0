import os
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from libraryau.config import settings as base_settings
from libraryau.database import SqliteRepository
from libraryau.lending import LendingService
from libraryau.repository import InMemoryRepository

T0 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Testlerde elle ilerletilebilen saat."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    # Ortamdan bağımsız, bilinen varsayılanlar
    return replace(
        base_settings,
        barcode_prefix="LIB",
        reuse_isbn_for_first_copy=True,
        default_max_loans_per_borrower=3,
        default_loan_days=14,
        default_warning_days_before_due=2,
        default_allow_same_title_concurrent=False,
        block_borrower_delete_with_active_loans=False,
        bootstrap_super_admin_email="root@school.edu",
    )


@pytest.fixture
def repo():
    return InMemoryRepository()


@pytest.fixture
def service(repo, config, clock):
    return LendingService(repo, config, clock=clock)


@pytest.fixture
def template(service):
    return service.add_template("Ulysses", "James Joyce", isbn="978-0-19-953567-5")


@pytest.fixture
def borrower(service):
    return service.add_borrower("Ayşe", "Yılmaz", "2023001", "ayse@school.edu")


@pytest.fixture
def copy(service, template):
    return service.register_copies(template.id)[0]


@pytest.fixture
def sqlite_repo(tmp_path, request):
    # Her test için benzersiz bir veritabanı dosyası oluştur
    db_file = str(tmp_path / f"test_{request.node.name}.db")
    repository = SqliteRepository(db_file)
    yield repository
    repository.close()
    if os.path.exists(db_file):
        os.remove(db_file)


@pytest.fixture
def t0():
    return T0
