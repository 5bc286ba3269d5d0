import pytest

from libraryau.database import SqliteRepository
from libraryau.errors import ConcurrentModification, StorageUnavailable
from libraryau.lending import LendingService
from libraryau.models import Borrower, CatalogTemplate, EntityKind
from libraryau.repository import read_set

pytestmark = pytest.mark.integration


def test_create_and_get_round_trip(sqlite_repo):
    template_id = sqlite_repo.create(CatalogTemplate(title="Sapiens", author="Yuval Noah Harari", ordinal=1))
    loaded = sqlite_repo.get(EntityKind.TEMPLATE, template_id)
    assert loaded.title == "Sapiens"
    assert loaded.version == 1
    assert sqlite_repo.get(EntityKind.TEMPLATE, "missing") is None


def test_persistence_across_instances(sqlite_repo):
    sqlite_repo.create(CatalogTemplate(title="Sapiens", author="Yuval Noah Harari"))
    again = SqliteRepository(sqlite_repo.db_file)
    assert [t.title for t in again.query(EntityKind.TEMPLATE)] == ["Sapiens"]


def test_stale_version_is_rejected_and_nothing_is_written(sqlite_repo):
    borrower_id = sqlite_repo.create(Borrower(name="Ali", surname="Demir", external_number="123", email="a@b.co"))
    snapshot = sqlite_repo.get(EntityKind.BORROWER, borrower_id)
    sqlite_repo.transactional_update(read_set(snapshot), [snapshot.evolve(name="Veli")])

    with pytest.raises(ConcurrentModification):
        sqlite_repo.transactional_update(
            read_set(snapshot),
            [snapshot.evolve(name="Can"), CatalogTemplate(title="Orphan", author="Nobody")],
        )
    assert sqlite_repo.get(EntityKind.BORROWER, borrower_id).name == "Veli"
    assert sqlite_repo.query(EntityKind.TEMPLATE) == []


def test_listeners_are_notified(sqlite_repo):
    seen = []
    unsubscribe = sqlite_repo.subscribe(lambda changed: seen.extend(e.kind for e in changed))
    sqlite_repo.create(CatalogTemplate(title="Dune", author="Frank Herbert"))
    unsubscribe()
    sqlite_repo.create(CatalogTemplate(title="Emma", author="Jane Austen"))
    assert seen == [EntityKind.TEMPLATE]


def test_lending_flow_on_sqlite(sqlite_repo, config, clock):
    service = LendingService(sqlite_repo, config, clock=clock)
    t = service.add_template("Ulysses", "James Joyce", isbn="9780199535675")
    c = service.register_copies(t.id)[0]
    b = service.add_borrower("Ayşe", "Yılmaz", "2023001", "ayse@school.edu")
    loan = service.borrow(c.id, b.id)

    assert sqlite_repo.get(EntityKind.COPY, c.id).is_available is False
    service.return_loan(loan.id)
    assert sqlite_repo.get(EntityKind.COPY, c.id).is_available is True
    assert sqlite_repo.get(EntityKind.LOAN, loan.id).returned_at == clock.now


def test_unreachable_storage(tmp_path):
    with pytest.raises(StorageUnavailable):
        SqliteRepository(str(tmp_path / "missing" / "library.db"))
