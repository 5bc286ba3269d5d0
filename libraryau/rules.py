"""Ödünç iş kuralları.

Buradaki fonksiyonlar saf ve senkrondur: depodan alınmış bir anlık görüntüyü
doğrular, kalıcı hale getirilecek yeni varlık durumlarını döndürür ya da
tipli bir ret (``LibraryError`` alt sınıfı) yükseltir.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Sequence, Set, Tuple

from libraryau import barcode
from libraryau.errors import (
    AlreadyReturned,
    CopyUnavailable,
    DuplicateTitleActive,
    EntityDeleted,
    EntityInUse,
    EntityNotFound,
    LoanLimitExceeded,
    ValidationFailed,
)
from libraryau.models import Borrower, CatalogTemplate, Copy, Loan, SystemSettings


def require_present(entity, entity_id: str):
    if entity is None:
        raise EntityNotFound(f"{entity_id} not found", entity_id)
    if getattr(entity, "is_deleted", False):
        raise EntityDeleted(f"{entity_id} is deleted", entity_id)
    return entity


def plan_borrow(
    copy: Optional[Copy],
    borrower: Optional[Borrower],
    active_loans: Sequence[Loan],
    active_loan_copies: Iterable[Copy],
    settings: SystemSettings,
    now: datetime,
    *,
    copy_id: str = "",
    borrower_id: str = "",
) -> Tuple[Loan, Copy]:
    """Ödünç verme ön koşullarını kontrol eder.

    ``active_loans`` öğrencinin iade edilmemiş ödünçleri,
    ``active_loan_copies`` ise bu ödünçlerin kopyalarıdır.
    """
    copy = require_present(copy, copy_id)
    borrower = require_present(borrower, borrower_id)

    if not copy.is_available:
        raise CopyUnavailable(f"copy {copy.id} is already on loan", copy.id)

    open_loans = [loan for loan in active_loans if not loan.is_returned]
    if len(open_loans) >= settings.max_loans_per_borrower:
        raise LoanLimitExceeded(
            f"borrower {borrower.id} already holds {len(open_loans)} loans",
            borrower.id,
            limit=settings.max_loans_per_borrower,
        )

    if not settings.allow_same_title_concurrent:
        open_copy_ids = {loan.copy_id for loan in open_loans}
        for held in active_loan_copies:
            if held.id in open_copy_ids and held.template_id == copy.template_id:
                raise DuplicateTitleActive(
                    f"borrower {borrower.id} already holds a copy of {copy.template_id}",
                    borrower.id,
                    copy.template_id,
                )

    loan = Loan(
        copy_id=copy.id,
        borrower_id=borrower.id,
        borrowed_at=now,
        due_at=now + timedelta(days=settings.default_loan_days),
    )
    return loan, copy.evolve(is_available=False)


def plan_return(loan: Optional[Loan], copy: Optional[Copy], now: datetime, *, loan_id: str = "") -> Tuple[Loan, Optional[Copy]]:
    if loan is None:
        raise EntityNotFound(f"loan {loan_id} not found", loan_id)
    if loan.is_returned:
        raise AlreadyReturned(f"loan {loan.id} was returned at {loan.returned_at}", loan.id)
    returned = loan.evolve(returned_at=now, is_returned=True)
    # Kopya arşivlenmiş olsa bile müsaitlik bilgisi düzeltilir
    freed = copy.evolve(is_available=True) if copy is not None else None
    return returned, freed


def plan_copies(
    template: Optional[CatalogTemplate],
    existing_copies: Sequence[Copy],
    count: int,
    now: datetime,
    *,
    reuse_isbn: bool = True,
    taken_barcodes: Optional[Set[str]] = None,
    template_id: str = "",
) -> Tuple[List[Copy], CatalogTemplate]:
    """Bir şablon için ``count`` yeni kopya üretir.

    Kopya numaraları şablonda saklanan sayaçtan devam eder, böylece silinmiş
    kopyalar da dahil olmak üzere şablon başına benzersiz kalır.
    """
    template = require_present(template, template_id)
    if count < 1:
        raise ValidationFailed("copy count must be at least 1", template.id, field="count")

    taken = set(taken_barcodes or ())
    last = max([template.last_sequence] + [c.sequence_number for c in existing_copies])
    copies: List[Copy] = []
    for offset in range(1, count + 1):
        sequence = last + offset
        code = None
        # Hiç kopya yoksa ilk kopya ISBN barkodunu kullanabilir
        if offset == 1 and not existing_copies and reuse_isbn and template.has_valid_isbn:
            candidate = barcode.normalize_isbn(template.isbn)
            if candidate not in taken:
                code = candidate
        if code is None:
            code = barcode.generate(template.ordinal, sequence)
        if code in taken:
            raise ValidationFailed(f"barcode collision: {code}", template.id, field="barcode")
        taken.add(code)
        copies.append(
            Copy(template_id=template.id, barcode=code, sequence_number=sequence, created_at=now)
        )
    return copies, template.evolve(last_sequence=last + count)


def ensure_not_in_use(target_id: str, copy_ids: Iterable[str], active_loans: Iterable[Loan]) -> None:
    ids = set(copy_ids)
    blocking = [loan.id for loan in active_loans if not loan.is_returned and loan.copy_id in ids]
    if blocking:
        raise EntityInUse(f"{target_id} has active loans", target_id, *blocking)
