"""Katalog varlık modeli.

Şablon (CatalogTemplate), kopya (Copy), öğrenci (Borrower), ödünç (Loan),
yönetici hesabı (AdministratorAccount) ve sistem ayarları (SystemSettings).
Türetilmiş alanların hepsi varlık durumunun ve açıkça verilen ``now``
değerinin saf fonksiyonlarıdır.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field, fields, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional

from libraryau import barcode
from libraryau.barcode import BarcodeKind


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


EMAIL_RE = re.compile(r"^[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}$")


def is_valid_email(email: Optional[str]) -> bool:
    return bool(email) and EMAIL_RE.match(email.strip()) is not None


def _to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _from_iso(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _whole_days(delta: timedelta) -> int:
    # Kesirli günler aşağı yuvarlanır
    return int(delta.total_seconds() // 86400)


class EntityKind(Enum):
    TEMPLATE = "bookTemplates"
    COPY = "bookCopies"
    BORROWER = "students"
    LOAN = "borrowedBooks"
    ADMIN = "adminUsers"
    SETTINGS = "appSettings"
    BARCODE = "barcodes"


class RecordStatus(Enum):
    ACTIVE = "active"
    DELETED = "deleted"


class LoanStatus(Enum):
    ACTIVE = "active"
    OVERDUE = "overdue"
    RETURNED = "returned"


_DATETIME_FIELDS = {"created_at", "updated_at", "deleted_at", "borrowed_at", "due_at", "returned_at"}


class Document:
    """Belge deposu için ortak serileştirme yardımcıları."""

    kind: EntityKind

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key, value in data.items():
            if key in _DATETIME_FIELDS:
                data[key] = _to_iso(value)
            elif isinstance(value, Enum):
                data[key] = value.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        for key in _DATETIME_FIELDS & values.keys():
            values[key] = _from_iso(values[key])
        if "status" in values and not isinstance(values["status"], RecordStatus):
            values["status"] = RecordStatus(values["status"])
        return cls(**values)

    def evolve(self, **changes):
        return replace(self, **changes)


class SoftDeletable:
    status: RecordStatus
    deleted_at: Optional[datetime]

    @property
    def is_deleted(self) -> bool:
        return self.status is RecordStatus.DELETED

    def archived(self, now: datetime):
        return replace(self, status=RecordStatus.DELETED, deleted_at=now)

    def restored(self):
        return replace(self, status=RecordStatus.ACTIVE, deleted_at=None)


@dataclass
class CatalogTemplate(Document, SoftDeletable):
    """Bir kitabın fiziksel kopyalardan bağımsız genel bilgileri."""

    title: str
    author: str
    isbn: str = ""
    publisher: str = ""
    editor: str = ""
    category: str = ""
    description: str = ""
    ordinal: int = 0
    last_sequence: int = 0
    id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    status: RecordStatus = RecordStatus.ACTIVE
    deleted_at: Optional[datetime] = None
    version: int = 0

    kind = EntityKind.TEMPLATE

    @property
    def has_valid_isbn(self) -> bool:
        return barcode.is_plausible_isbn(self.isbn)

    def matches(self, term: str) -> bool:
        t = term.lower().strip()
        return any(t in value.lower() for value in (self.title, self.author, self.isbn, self.category))


@dataclass
class Copy(Document, SoftDeletable):
    """Bir şablonun tekil, barkodlu fiziksel örneği."""

    template_id: str
    barcode: str
    sequence_number: int
    is_available: bool = True
    id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    status: RecordStatus = RecordStatus.ACTIVE
    deleted_at: Optional[datetime] = None
    version: int = 0

    kind = EntityKind.COPY

    @property
    def barcode_kind(self) -> BarcodeKind:
        return barcode.classify(self.barcode)


@dataclass
class Borrower(Document, SoftDeletable):
    name: str
    surname: str
    external_number: str
    email: str
    id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    status: RecordStatus = RecordStatus.ACTIVE
    deleted_at: Optional[datetime] = None
    version: int = 0

    kind = EntityKind.BORROWER

    @property
    def full_name(self) -> str:
        return f"{self.name} {self.surname}"

    @property
    def is_valid(self) -> bool:
        return (
            bool(self.name.strip())
            and bool(self.surname.strip())
            and bool(self.email.strip())
            and len(self.external_number.strip()) >= 3
        )

    def matches(self, term: str) -> bool:
        t = term.lower().strip()
        return any(
            t in value.lower()
            for value in (self.name, self.surname, self.full_name, self.external_number, self.email)
        )


@dataclass
class Loan(Document):
    """Bir kopyayı bir öğrenciye belirli bir süre için bağlayan kayıt.

    Silinmez; kalıcı denetim izidir. ``returned_at``/``is_returned`` yalnızca
    iade işlemiyle, bir kez değişir.
    """

    copy_id: str
    borrower_id: str
    borrowed_at: datetime
    due_at: datetime
    returned_at: Optional[datetime] = None
    is_returned: bool = False
    id: Optional[str] = None
    version: int = 0

    kind = EntityKind.LOAN

    @property
    def is_active(self) -> bool:
        return not self.is_returned

    def is_overdue(self, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        return not self.is_returned and now > self.due_at

    def overdue_days(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        if not self.is_overdue(now):
            return 0
        return max(0, _whole_days(now - self.due_at))

    def remaining_days(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        if self.is_returned:
            return 0
        return max(0, _whole_days(self.due_at - now))

    def is_due_soon(self, now: Optional[datetime] = None, warning_days: int = 2) -> bool:
        now = now or utcnow()
        return (
            not self.is_returned
            and not self.is_overdue(now)
            and self.due_at <= now + timedelta(days=warning_days)
        )

    def status(self, now: Optional[datetime] = None) -> LoanStatus:
        if self.is_returned:
            return LoanStatus.RETURNED
        if self.is_overdue(now):
            return LoanStatus.OVERDUE
        return LoanStatus.ACTIVE


@dataclass
class AdministratorAccount(Document):
    email: str
    display_name: str
    is_approved: bool = False
    is_super_admin: bool = False
    id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    version: int = 0

    kind = EntityKind.ADMIN

    def __post_init__(self) -> None:
        # Süper adminler her zaman onaylıdır
        if self.is_super_admin:
            self.is_approved = True

    @property
    def is_active(self) -> bool:
        return self.is_super_admin or self.is_approved

    @property
    def is_pending_approval(self) -> bool:
        return not self.is_super_admin and not self.is_approved

    def with_updated_role(self, is_super_admin: bool) -> "AdministratorAccount":
        return replace(
            self,
            is_super_admin=is_super_admin,
            is_approved=True if is_super_admin else self.is_approved,
        )


@dataclass
class SystemSettings(Document):
    """Dağıtım başına tek belge; ödünç kurallarının eşiklerini belirler."""

    max_loans_per_borrower: int = 3
    default_loan_days: int = 14
    warning_days_before_due: int = 2
    allow_same_title_concurrent: bool = False
    is_first_launch: bool = True
    template_counter: int = 0
    id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    version: int = 0

    kind = EntityKind.SETTINGS

    @property
    def is_valid(self) -> bool:
        return (
            self.max_loans_per_borrower > 0
            and self.default_loan_days > 0
            and self.warning_days_before_due >= 0
        )

    def with_updated(
        self,
        *,
        max_loans: Optional[int] = None,
        loan_days: Optional[int] = None,
        warning_days: Optional[int] = None,
        allow_same_title: Optional[bool] = None,
        now: Optional[datetime] = None,
    ) -> "SystemSettings":
        return replace(
            self,
            max_loans_per_borrower=max(1, max_loans) if max_loans is not None else self.max_loans_per_borrower,
            default_loan_days=max(1, loan_days) if loan_days is not None else self.default_loan_days,
            warning_days_before_due=(
                max(0, warning_days) if warning_days is not None else self.warning_days_before_due
            ),
            allow_same_title_concurrent=(
                allow_same_title if allow_same_title is not None else self.allow_same_title_concurrent
            ),
            updated_at=now or utcnow(),
        )

    def with_first_launch_complete(self, now: Optional[datetime] = None) -> "SystemSettings":
        return replace(self, is_first_launch=False, updated_at=now or utcnow())


@dataclass
class BarcodeClaim(Document):
    """Bir barkodun tek bir kopyaya ait olduğunu kaydeder; kimliği barkodun kendisidir."""

    copy_id: str
    template_id: str
    id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    version: int = 0

    kind = EntityKind.BARCODE

    @classmethod
    def for_copy(cls, copy: "Copy") -> "BarcodeClaim":
        return cls(id=copy.barcode, copy_id=copy.id, template_id=copy.template_id, created_at=copy.created_at)


ENTITY_TYPES = {
    EntityKind.TEMPLATE: CatalogTemplate,
    EntityKind.COPY: Copy,
    EntityKind.BORROWER: Borrower,
    EntityKind.LOAN: Loan,
    EntityKind.ADMIN: AdministratorAccount,
    EntityKind.SETTINGS: SystemSettings,
    EntityKind.BARCODE: BarcodeClaim,
}
