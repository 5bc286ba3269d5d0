"""Oturum katmanı: kimlik sağlayıcı + yetkilendirme + ödünç motoru.

Her çağrıda oturumdaki hesap yeniden okunur; böylece onayın kaldırılması
veya rol değişikliği bir sonraki işlemde hemen etkili olur.
"""

from __future__ import annotations

from typing import Iterable, List, Optional

from libraryau.auth import AdminService, IdentityProvider, Permission, require_permission
from libraryau.config import Settings
from libraryau.lending import LendingService, SoftDeleteResult
from libraryau.models import (
    AdministratorAccount,
    Borrower,
    CatalogTemplate,
    Copy,
    Document,
    EntityKind,
    Loan,
    SystemSettings,
)
from libraryau.repository import Repository

DELETE_PERMISSIONS = {
    EntityKind.TEMPLATE: Permission.MANAGE_BOOKS,
    EntityKind.COPY: Permission.MANAGE_BOOKS,
    EntityKind.BORROWER: Permission.MANAGE_BORROWERS,
}


class LibrarySession:
    def __init__(
        self,
        repository: Repository,
        identity: IdentityProvider,
        config: Optional[Settings] = None,
        lending: Optional[LendingService] = None,
    ) -> None:
        self.identity = identity
        self.lending = lending or LendingService(repository, config)
        self.admins = AdminService(repository, config)

    @property
    def account(self) -> Optional[AdministratorAccount]:
        return self.admins.get_account(self.identity.current_session_account_id())

    def _require(self, permission: Permission) -> AdministratorAccount:
        return require_permission(self.account, permission)

    # Katalog
    def add_template(self, title: str, author: str, **details: str) -> CatalogTemplate:
        self._require(Permission.MANAGE_BOOKS)
        return self.lending.add_template(title, author, **details)

    def update_template(self, template_id: str, **changes: str) -> CatalogTemplate:
        self._require(Permission.MANAGE_BOOKS)
        return self.lending.update_template(template_id, **changes)

    def register_copies(self, template_id: str, count: int = 1) -> List[Copy]:
        self._require(Permission.MANAGE_BOOKS)
        return self.lending.register_copies(template_id, count)

    def seed_catalog(self, records: Iterable) -> int:
        self._require(Permission.MANAGE_BOOKS)
        return self.lending.bulk_seed_from_catalog(records)

    # Öğrenciler
    def add_borrower(self, name: str, surname: str, external_number: str, email: str) -> Borrower:
        self._require(Permission.MANAGE_BORROWERS)
        return self.lending.add_borrower(name, surname, external_number, email)

    # Ödünç
    def borrow(self, copy_id: str, borrower_id: str) -> Loan:
        self._require(Permission.MANAGE_LOANS)
        return self.lending.borrow(copy_id, borrower_id)

    def return_loan(self, loan_id: str) -> Loan:
        self._require(Permission.MANAGE_LOANS)
        return self.lending.return_loan(loan_id)

    # Çöp kutusu
    def soft_delete(self, kind: EntityKind, entity_id: str) -> SoftDeleteResult:
        self._require(DELETE_PERMISSIONS.get(kind, Permission.MANAGE_SETTINGS))
        return self.lending.soft_delete(kind, entity_id)

    def restore(self, kind: EntityKind, entity_id: str) -> Document:
        self._require(DELETE_PERMISSIONS.get(kind, Permission.MANAGE_SETTINGS))
        return self.lending.restore(kind, entity_id)

    # Sistem ayarları
    def update_settings(self, **changes) -> SystemSettings:
        self._require(Permission.MANAGE_SETTINGS)
        return self.lending.update_settings(**changes)

    # Yönetici hesapları
    def approve_admin(self, target_id: str) -> AdministratorAccount:
        return self.admins.approve(self.account, target_id)

    def revoke_admin(self, target_id: str) -> AdministratorAccount:
        return self.admins.revoke_approval(self.account, target_id)

    def set_super_admin(self, target_id: str, is_super_admin: bool) -> AdministratorAccount:
        return self.admins.set_super_admin(self.account, target_id, is_super_admin)

    def pending_admins(self) -> List[AdministratorAccount]:
        return self.admins.pending_accounts(self.account)
