"""Ödünç kural motoru.

Her işlem depodan taze bir anlık görüntü alır, ``rules`` modülüyle doğrular
ve bütün değişiklikleri tek bir ``transactional_update`` çağrısıyla yazar.
Depo yazmayı ``ConcurrentModification`` ile reddederse işlem bir kez daha
denenir.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, TypeVar

from libraryau import barcode, rules
from libraryau.config import Settings, settings as default_settings
from libraryau.errors import (
    ConcurrentModification,
    EntityInUse,
    EntityNotFound,
    LibraryError,
    ValidationFailed,
)
from libraryau.models import (
    BarcodeClaim,
    Borrower,
    CatalogTemplate,
    Copy,
    Document,
    EntityKind,
    Loan,
    SystemSettings,
    is_valid_email,
    utcnow,
)
from libraryau.repository import DocKey, Repository, new_id, read_set

logger = logging.getLogger(__name__)

SETTINGS_ID = "app"
TEMPLATE_FIELDS = ("title", "author", "isbn", "publisher", "editor", "category", "description")

T = TypeVar("T")


@dataclass
class SoftDeleteResult:
    """Silme sonucu. ``active_loan_ids`` doluysa çağıran kullanıcıyı uyarmalıdır."""

    entity: Document
    cascaded: List[Document] = field(default_factory=list)
    active_loan_ids: List[str] = field(default_factory=list)

    @property
    def has_warning(self) -> bool:
        return bool(self.active_loan_ids)


class LendingService:
    """Katalog, öğrenci ve ödünç işlemlerini yönetir."""

    def __init__(
        self,
        repository: Repository,
        config: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.repository = repository
        self.config = config or default_settings
        self.clock = clock

    # ------------------------- Yardımcılar ------------------------- #
    def _run(self, operation: str, attempt: Callable[[], T]) -> T:
        """İşlemi çalıştırır; eşzamanlı değişiklikte yalnızca bir kez yeniden dener."""
        for try_no in (1, 2):
            try:
                return attempt()
            except ConcurrentModification:
                if try_no == 2:
                    logger.warning("%s: concurrent modification persisted, giving up", operation)
                    raise
                logger.warning("%s: concurrent modification, retrying with a fresh snapshot", operation)
            except LibraryError as e:
                logger.info("%s rejected: %s %s", operation, e.kind, list(e.entity_ids))
                raise
        raise AssertionError("unreachable")

    @staticmethod
    def _check_ordinal(ordinal: int) -> None:
        # Sistem barkodu şablon numarası için yalnızca 3 hane ayırır
        if ordinal > barcode.MAX_ORDINAL:
            raise ValidationFailed(
                f"catalog is full: template ordinal {ordinal} exceeds {barcode.MAX_ORDINAL}", field="ordinal"
            )

    @staticmethod
    def _claim_barcodes(copies: List[Copy]) -> Tuple[List[Copy], List[BarcodeClaim], Dict[DocKey, int]]:
        """Kopyalara kimlik atar ve barkodları için sahiplik kayıtları üretir.

        Okuma kümesindeki sürüm 0, barkodun işlem anında hâlâ boşta olmasını
        şart koşar; aynı barkodu alan eşzamanlı ikinci yazma reddedilir.
        """
        copies = [c if c.id else c.evolve(id=new_id()) for c in copies]
        claims = [BarcodeClaim.for_copy(c) for c in copies]
        reads = {(EntityKind.BARCODE, c.barcode): 0 for c in copies}
        return copies, claims, reads

    def _active_loans_where(self, predicate: Callable[[Loan], bool]) -> List[Loan]:
        return self.repository.query(EntityKind.LOAN, lambda l: not l.is_returned and predicate(l))

    # ------------------------- Sistem ayarları ------------------------- #
    def get_settings(self) -> SystemSettings:
        """Tekil ayar belgesini döndürür; yoksa yapılandırmadan varsayılanlarla oluşturur."""
        current = self.repository.get(EntityKind.SETTINGS, SETTINGS_ID)
        if current is not None:
            return current
        now = self.clock()
        fresh = SystemSettings(
            id=SETTINGS_ID,
            max_loans_per_borrower=self.config.default_max_loans_per_borrower,
            default_loan_days=self.config.default_loan_days,
            warning_days_before_due=self.config.default_warning_days_before_due,
            allow_same_title_concurrent=self.config.default_allow_same_title_concurrent,
            created_at=now,
            updated_at=now,
        )
        if not fresh.is_valid:
            raise ValidationFailed("configured lending defaults are invalid", field="settings")
        try:
            # Okuma kümesindeki sürüm 0: belge hâlâ yoksa oluştur
            return self.repository.transactional_update({(EntityKind.SETTINGS, SETTINGS_ID): 0}, [fresh])[0]
        except ConcurrentModification:
            return self.repository.get(EntityKind.SETTINGS, SETTINGS_ID)

    def update_settings(
        self,
        *,
        max_loans: Optional[int] = None,
        loan_days: Optional[int] = None,
        warning_days: Optional[int] = None,
        allow_same_title: Optional[bool] = None,
    ) -> SystemSettings:
        def attempt() -> SystemSettings:
            current = self.get_settings()
            updated = current.with_updated(
                max_loans=max_loans,
                loan_days=loan_days,
                warning_days=warning_days,
                allow_same_title=allow_same_title,
                now=self.clock(),
            )
            return self.repository.transactional_update(read_set(current), [updated])[0]

        stored = self._run("update_settings", attempt)
        logger.info("System settings updated: max_loans=%s loan_days=%s warning_days=%s same_title=%s",
                    stored.max_loans_per_borrower, stored.default_loan_days,
                    stored.warning_days_before_due, stored.allow_same_title_concurrent)
        return stored

    # ------------------------- Katalog ------------------------- #
    @staticmethod
    def _clean_template_fields(values: Dict[str, Any]) -> Dict[str, Any]:
        cleaned = {k: (v or "").strip() for k, v in values.items()}
        if "title" in cleaned and not cleaned["title"]:
            raise ValidationFailed("title cannot be empty", field="title")
        if "author" in cleaned and not cleaned["author"]:
            raise ValidationFailed("author cannot be empty", field="author")
        if cleaned.get("isbn"):
            if not barcode.is_plausible_isbn(cleaned["isbn"]):
                raise ValidationFailed(f"invalid ISBN: {cleaned['isbn']}", field="isbn")
            cleaned["isbn"] = barcode.normalize_isbn(cleaned["isbn"])
        return cleaned

    def add_template(
        self,
        title: str,
        author: str,
        isbn: str = "",
        publisher: str = "",
        editor: str = "",
        category: str = "",
        description: str = "",
    ) -> CatalogTemplate:
        """Yeni bir kitap şablonu ekler ve ona barkodlarda kullanılacak sıra numarası atar."""
        values = self._clean_template_fields({
            "title": title, "author": author, "isbn": isbn, "publisher": publisher,
            "editor": editor, "category": category, "description": description,
        })

        def attempt() -> CatalogTemplate:
            current = self.get_settings()
            ordinal = current.template_counter + 1
            self._check_ordinal(ordinal)
            template = CatalogTemplate(ordinal=ordinal, created_at=self.clock(), **values)
            stored = self.repository.transactional_update(
                read_set(current), [current.evolve(template_counter=ordinal), template]
            )
            return stored[1]

        template = self._run("add_template", attempt)
        logger.info("Template added: %s (#%s) %s", template.id, template.ordinal, template.title)
        return template

    def update_template(self, template_id: str, **changes: str) -> CatalogTemplate:
        unknown = set(changes) - set(TEMPLATE_FIELDS)
        if unknown:
            raise ValidationFailed(f"unknown template fields: {sorted(unknown)}", template_id, field=sorted(unknown)[0])
        values = self._clean_template_fields(changes)

        def attempt() -> CatalogTemplate:
            template = rules.require_present(self.repository.get(EntityKind.TEMPLATE, template_id), template_id)
            return self.repository.transactional_update(read_set(template), [template.evolve(**values)])[0]

        return self._run("update_template", attempt)

    def register_copies(self, template_id: str, count: int = 1) -> List[Copy]:
        """Şablon için ``count`` adet yeni kopya oluşturur."""
        def attempt() -> List[Copy]:
            template = self.repository.get(EntityKind.TEMPLATE, template_id)
            existing = self.repository.query(EntityKind.COPY, lambda c: c.template_id == template_id)
            taken = {c.barcode for c in self.repository.query(EntityKind.COPY)}
            taken.update(claim.id for claim in self.repository.query(EntityKind.BARCODE))
            copies, updated = rules.plan_copies(
                template,
                existing,
                count,
                self.clock(),
                reuse_isbn=self.config.reuse_isbn_for_first_copy,
                taken_barcodes=taken,
                template_id=template_id,
            )
            copies, claims, reads = self._claim_barcodes(copies)
            reads.update(read_set(template))
            stored = self.repository.transactional_update(reads, [updated, *copies, *claims])
            return stored[1:1 + len(copies)]

        copies = self._run("register_copies", attempt)
        logger.info("Registered %d copies for template %s: %s",
                    len(copies), template_id, ", ".join(c.barcode for c in copies))
        return copies

    def copies_of(self, template_id: str, include_deleted: bool = False) -> List[Copy]:
        return sorted(
            self.repository.query(
                EntityKind.COPY,
                lambda c: c.template_id == template_id and (include_deleted or not c.is_deleted),
            ),
            key=lambda c: c.sequence_number,
        )

    def find_copy_by_barcode(self, raw: str) -> Optional[Copy]:
        if not barcode.validate(raw):
            raise ValidationFailed(f"invalid barcode: {raw!r}", field="barcode")
        value = raw.strip().upper()
        if barcode.classify(value) is barcode.BarcodeKind.ISBN:
            value = barcode.normalize_isbn(value)
        matches = self.repository.query(EntityKind.COPY, lambda c: c.barcode == value and not c.is_deleted)
        return matches[0] if matches else None

    def search_templates(self, term: str) -> List[CatalogTemplate]:
        return self.repository.query(EntityKind.TEMPLATE, lambda t: not t.is_deleted and t.matches(term))

    # ------------------------- Öğrenciler ------------------------- #
    def add_borrower(self, name: str, surname: str, external_number: str, email: str) -> Borrower:
        borrower = Borrower(
            name=(name or "").strip(),
            surname=(surname or "").strip(),
            external_number=(external_number or "").strip(),
            email=(email or "").strip(),
            created_at=self.clock(),
        )
        if not borrower.is_valid:
            raise ValidationFailed("name, surname, email and a 3+ character number are required",
                                   field="borrower")
        if not is_valid_email(borrower.email):
            raise ValidationFailed(f"invalid email: {borrower.email}", field="email")
        if self.find_borrower_by_number(borrower.external_number) is not None:
            raise ValidationFailed(f"number already registered: {borrower.external_number}",
                                   field="external_number")
        borrower_id = self.repository.create(borrower)
        logger.info("Borrower added: %s (%s)", borrower_id, borrower.external_number)
        return self.repository.get(EntityKind.BORROWER, borrower_id)

    def find_borrower_by_number(self, number: str) -> Optional[Borrower]:
        number = (number or "").strip()
        matches = self.repository.query(
            EntityKind.BORROWER, lambda b: b.external_number == number and not b.is_deleted
        )
        return matches[0] if matches else None

    def search_borrowers(self, term: str) -> List[Borrower]:
        return self.repository.query(EntityKind.BORROWER, lambda b: not b.is_deleted and b.matches(term))

    # ------------------------- Ödünç işlemleri ------------------------- #
    def borrow(self, copy_id: str, borrower_id: str) -> Loan:
        """Kopyayı öğrenciye ödünç verir.

        Öğrenci belgesi de yeniden yazılır; böylece aynı öğrenci için eşzamanlı
        ödünç işlemleri birbirini görmeden limiti aşamaz.
        Ayarlar ve şablon da okuma kümesindedir: karar verildikten sonra
        değişirlerse işlem yeni anlık görüntüyle tekrarlanır.
        """
        def attempt() -> Loan:
            current = self.get_settings()
            copy = self.repository.get(EntityKind.COPY, copy_id)
            borrower = self.repository.get(EntityKind.BORROWER, borrower_id)
            template = self.repository.get(EntityKind.TEMPLATE, copy.template_id) if copy is not None else None
            active = self._active_loans_where(lambda l: l.borrower_id == borrower_id)
            held = [self.repository.get(EntityKind.COPY, loan.copy_id) for loan in active]
            loan, taken_copy = rules.plan_borrow(
                copy,
                borrower,
                active,
                [c for c in held if c is not None],
                current,
                self.clock(),
                copy_id=copy_id,
                borrower_id=borrower_id,
            )
            stored = self.repository.transactional_update(
                read_set(copy, borrower, template, current), [loan, taken_copy, borrower]
            )
            return stored[0]

        loan = self._run("borrow", attempt)
        logger.info("Loan %s: copy %s -> borrower %s, due %s",
                    loan.id, copy_id, borrower_id, loan.due_at.isoformat())
        return loan

    def return_loan(self, loan_id: str) -> Loan:
        def attempt() -> Loan:
            loan = self.repository.get(EntityKind.LOAN, loan_id)
            copy = self.repository.get(EntityKind.COPY, loan.copy_id) if loan is not None else None
            returned, freed = rules.plan_return(loan, copy, self.clock(), loan_id=loan_id)
            writes = [returned] + ([freed] if freed is not None else [])
            return self.repository.transactional_update(read_set(loan, copy), writes)[0]

        loan = self._run("return", attempt)
        logger.info("Loan %s returned (copy %s)", loan.id, loan.copy_id)
        return loan

    def active_loans(self, borrower_id: Optional[str] = None) -> List[Loan]:
        return self._active_loans_where(lambda l: borrower_id is None or l.borrower_id == borrower_id)

    def overdue_loans(self, now: Optional[datetime] = None) -> List[Loan]:
        now = now or self.clock()
        loans = self._active_loans_where(lambda l: l.is_overdue(now))
        return sorted(loans, key=lambda l: l.due_at)

    def due_soon_loans(self, now: Optional[datetime] = None) -> List[Loan]:
        now = now or self.clock()
        warning_days = self.get_settings().warning_days_before_due
        loans = self._active_loans_where(lambda l: l.is_due_soon(now, warning_days))
        return sorted(loans, key=lambda l: l.due_at)

    def loan_history(self, borrower_id: str) -> List[Loan]:
        loans = self.repository.query(EntityKind.LOAN, lambda l: l.borrower_id == borrower_id)
        return sorted(loans, key=lambda l: l.borrowed_at, reverse=True)

    # ------------------------- Çöp kutusu ------------------------- #
    def soft_delete(self, kind: EntityKind, entity_id: str) -> SoftDeleteResult:
        """Varlığı arşivler (silindi olarak işaretler); fiziksel olarak kaldırmaz."""
        handlers = {
            EntityKind.TEMPLATE: self._delete_template,
            EntityKind.COPY: self._delete_copy,
            EntityKind.BORROWER: self._delete_borrower,
        }
        if kind not in handlers:
            raise ValidationFailed(f"{kind.value} records cannot be deleted", entity_id, field="kind")
        result = self._run(f"soft_delete[{kind.value}]", lambda: handlers[kind](entity_id))
        if result.has_warning:
            logger.warning("%s %s archived with %d active loans", kind.value, entity_id, len(result.active_loan_ids))
        else:
            logger.info("%s %s archived", kind.value, entity_id)
        return result

    def _delete_template(self, template_id: str) -> SoftDeleteResult:
        template = rules.require_present(self.repository.get(EntityKind.TEMPLATE, template_id), template_id)
        copies = self.copies_of(template_id)
        rules.ensure_not_in_use(template_id, [c.id for c in copies], self.active_loans())
        now = self.clock()
        stored = self.repository.transactional_update(
            read_set(template, *copies),
            [template.archived(now)] + [c.archived(now) for c in copies],
        )
        return SoftDeleteResult(entity=stored[0], cascaded=stored[1:])

    def _delete_copy(self, copy_id: str) -> SoftDeleteResult:
        copy = rules.require_present(self.repository.get(EntityKind.COPY, copy_id), copy_id)
        rules.ensure_not_in_use(copy_id, [copy_id], self.active_loans())
        stored = self.repository.transactional_update(read_set(copy), [copy.archived(self.clock())])
        return SoftDeleteResult(entity=stored[0])

    def _delete_borrower(self, borrower_id: str) -> SoftDeleteResult:
        borrower = rules.require_present(self.repository.get(EntityKind.BORROWER, borrower_id), borrower_id)
        loan_ids = [loan.id for loan in self.active_loans(borrower_id)]
        if loan_ids and self.config.block_borrower_delete_with_active_loans:
            raise EntityInUse(f"borrower {borrower_id} has active loans", borrower_id, *loan_ids)
        stored = self.repository.transactional_update(read_set(borrower), [borrower.archived(self.clock())])
        return SoftDeleteResult(entity=stored[0], active_loan_ids=loan_ids)

    def restore(self, kind: EntityKind, entity_id: str) -> Document:
        def attempt() -> Document:
            if kind not in (EntityKind.TEMPLATE, EntityKind.COPY, EntityKind.BORROWER):
                raise ValidationFailed(f"{kind.value} records cannot be restored", entity_id, field="kind")
            entity = self.repository.get(kind, entity_id)
            if entity is None:
                raise EntityNotFound(f"{entity_id} not found", entity_id)
            if not entity.is_deleted:
                raise ValidationFailed(f"{entity_id} is not deleted", entity_id, field="status")
            writes: List[Document] = [entity.restored()]
            reads = read_set(entity)
            if kind is EntityKind.TEMPLATE:
                # Şablonla birlikte silinen kopyaları da geri getir
                cascaded = self.repository.query(
                    EntityKind.COPY,
                    lambda c: c.template_id == entity_id and c.is_deleted and c.deleted_at == entity.deleted_at,
                )
                writes.extend(c.restored() for c in cascaded)
                reads.update(read_set(*cascaded))
            elif kind is EntityKind.COPY:
                template = self.repository.get(EntityKind.TEMPLATE, entity.template_id)
                rules.require_present(template, entity.template_id)
                reads.update(read_set(template))
            elif kind is EntityKind.BORROWER:
                holder = self.find_borrower_by_number(entity.external_number)
                if holder is not None and holder.id != entity_id:
                    raise ValidationFailed(f"number already registered: {entity.external_number}",
                                           entity_id, holder.id, field="external_number")
            return self.repository.transactional_update(reads, writes)[0]

        restored = self._run(f"restore[{kind.value}]", attempt)
        logger.info("%s %s restored", kind.value, entity_id)
        return restored

    def deleted(self, kind: EntityKind) -> List[Document]:
        items = self.repository.query(kind, lambda e: getattr(e, "is_deleted", False))
        return sorted(items, key=lambda e: e.deleted_at, reverse=True)

    # ------------------------- İlk kurulum ------------------------- #
    def bulk_seed_from_catalog(self, records: Iterable[Any]) -> int:
        """Depo boşken ve ilk açılışta kataloğu toplu olarak yükler.

        Tüm şablonlar, kopyalar ve ``is_first_launch=False`` tek bir işlemde
        yazılır; ikinci çağrı hiçbir şey yapmaz. Oluşturulan şablon sayısını
        döndürür.
        """
        records = list(records)

        def attempt() -> int:
            current = self.get_settings()
            if not current.is_first_launch:
                logger.info("Catalog seed skipped: first launch already completed")
                return 0
            if self.repository.query(EntityKind.TEMPLATE):
                logger.info("Catalog seed skipped: catalog is not empty")
                return 0

            now = self.clock()
            writes: List[Document] = []
            reads = read_set(current)
            ordinal = current.template_counter
            for record in records:
                title = (record.title or "").strip()
                if not title:
                    continue
                ordinal += 1
                self._check_ordinal(ordinal)
                isbn = "".join(ch for ch in (record.isbn or "") if ch.isdigit())
                template = CatalogTemplate(
                    id=new_id(),
                    ordinal=ordinal,
                    title=title,
                    author=(record.author or "").strip(),
                    isbn=isbn,
                    publisher=(record.publisher or "").strip(),
                    editor=(record.editor or "").strip(),
                    category=(record.category or "").strip(),
                    description=(record.description or "").strip(),
                    created_at=now,
                )
                if record.copy_count > 0:
                    copies, template = rules.plan_copies(template, [], record.copy_count, now, reuse_isbn=False)
                    copies, claims, claim_reads = self._claim_barcodes(copies)
                    reads.update(claim_reads)
                    writes.append(template)
                    writes.extend(copies)
                    writes.extend(claims)
                else:
                    writes.append(template)

            finished = current.with_first_launch_complete(now).evolve(template_counter=ordinal)
            stored = self.repository.transactional_update(reads, [finished, *writes])
            return sum(1 for entity in stored if isinstance(entity, CatalogTemplate))

        created = self._run("bulk_seed", attempt)
        if created:
            logger.info("Catalog seeded with %d templates", created)
        return created

    # ------------------------- İstatistikler ------------------------- #
    def statistics(self, now: Optional[datetime] = None) -> Dict[str, int]:
        now = now or self.clock()
        copies = self.repository.query(EntityKind.COPY, lambda c: not c.is_deleted)
        active = self.active_loans()
        return {
            "total_templates": len(self.repository.query(EntityKind.TEMPLATE, lambda t: not t.is_deleted)),
            "total_copies": len(copies),
            "available_copies": sum(1 for c in copies if c.is_available),
            "total_borrowers": len(self.repository.query(EntityKind.BORROWER, lambda b: not b.is_deleted)),
            "active_loans": len(active),
            "overdue_loans": sum(1 for loan in active if loan.is_overdue(now)),
        }
