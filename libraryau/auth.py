"""Yönetici yetkilendirme durum makinesi.

Hesap yaşam döngüsü: ``Unauthenticated -> {PendingApproval, Active}``.
Onay bekleyen bir hesap yalnızca aktif bir süper admin tarafından
onaylanarak aktif olur. Süper adminler onay bayrağından bağımsız olarak her
zaman aktiftir.

Oturum süresi kimlik sağlayıcının sorumluluğundadır; buradaki değişiklikler
yalnızca bir sonraki izin kontrolünü etkiler.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import FrozenSet, List, Optional, Protocol

from libraryau.config import Settings, settings as default_settings
from libraryau.errors import EntityNotFound, PermissionDenied, ValidationFailed
from libraryau.models import AdministratorAccount, EntityKind, is_valid_email, utcnow
from libraryau.repository import Repository, read_set

logger = logging.getLogger(__name__)


class Permission(Enum):
    MANAGE_BOOKS = "manageBooks"
    MANAGE_BORROWERS = "manageStudents"
    MANAGE_LOANS = "manageBorrowing"
    MANAGE_ADMINS = "manageAdmins"
    MANAGE_SETTINGS = "manageSettings"


class Role(Enum):
    ADMIN = "admin"
    SUPER_ADMIN = "superAdmin"

    @property
    def permissions(self) -> FrozenSet[Permission]:
        return ROLE_PERMISSIONS[self]

    @classmethod
    def of(cls, account: AdministratorAccount) -> "Role":
        return cls.SUPER_ADMIN if account.is_super_admin else cls.ADMIN


ROLE_PERMISSIONS = {
    Role.ADMIN: frozenset({Permission.MANAGE_BOOKS, Permission.MANAGE_BORROWERS, Permission.MANAGE_LOANS}),
    Role.SUPER_ADMIN: frozenset(Permission),
}


class AccountState(Enum):
    UNAUTHENTICATED = "unauthenticated"
    PENDING_APPROVAL = "pendingApproval"
    ACTIVE = "active"


def state_of(account: Optional[AdministratorAccount]) -> AccountState:
    if account is None:
        return AccountState.UNAUTHENTICATED
    return AccountState.ACTIVE if account.is_active else AccountState.PENDING_APPROVAL


def permissions_for(account: Optional[AdministratorAccount]) -> FrozenSet[Permission]:
    if state_of(account) is not AccountState.ACTIVE:
        return frozenset()
    return Role.of(account).permissions


def has_permission(account: Optional[AdministratorAccount], permission: Permission) -> bool:
    return permission in permissions_for(account)


def require_permission(account: Optional[AdministratorAccount], permission: Permission) -> AdministratorAccount:
    if not has_permission(account, permission):
        account_id = account.id if account is not None else None
        raise PermissionDenied(
            f"{state_of(account).value} account lacks {permission.value}",
            account_id,
            permission=permission.value,
        )
    return account


class IdentityProvider(Protocol):
    """Kimlik sağlayıcı: yalnızca oturumdaki hesabın kimliği kullanılır."""

    def current_session_account_id(self) -> Optional[str]:
        ...


class StaticIdentity:
    """Sabit bir hesap kimliği döndüren basit kimlik sağlayıcı."""

    def __init__(self, account_id: Optional[str] = None) -> None:
        self.account_id = account_id

    def current_session_account_id(self) -> Optional[str]:
        return self.account_id

    def sign_in(self, account_id: str) -> None:
        self.account_id = account_id

    def sign_out(self) -> None:
        self.account_id = None


class AdminService:
    """Yönetici hesaplarının kaydı, onayı ve rol değişiklikleri."""

    def __init__(self, repository: Repository, config: Optional[Settings] = None) -> None:
        self.repository = repository
        self.config = config or default_settings

    def get_account(self, account_id: Optional[str]) -> Optional[AdministratorAccount]:
        if not account_id:
            return None
        return self.repository.get(EntityKind.ADMIN, account_id)

    def sign_up(self, account_id: str, email: str, display_name: str) -> AdministratorAccount:
        """Kimlik sağlayıcıda oluşturulan kullanıcı için yönetici kaydı açar.

        Yapılandırılmış önyükleme süper admini dışında her hesap onay
        bekleyerek başlar.
        """
        account_id = (account_id or "").strip()
        email = (email or "").strip()
        display_name = (display_name or "").strip()
        if not account_id:
            raise ValidationFailed("account id cannot be empty", field="id")
        if not display_name:
            raise ValidationFailed("display name cannot be empty", account_id, field="display_name")
        if not is_valid_email(email):
            raise ValidationFailed(f"invalid email: {email}", account_id, field="email")
        if self.get_account(account_id) is not None:
            raise ValidationFailed(f"account {account_id} already exists", account_id, field="id")

        bootstrap = self.config.bootstrap_super_admin_email
        is_bootstrap = bool(bootstrap) and email.lower() == bootstrap.strip().lower()
        account = AdministratorAccount(
            id=account_id,
            email=email,
            display_name=display_name,
            is_approved=is_bootstrap,
            is_super_admin=is_bootstrap,
            created_at=utcnow(),
        )
        self.repository.create(account)
        logger.info("Admin account %s signed up (%s)", account_id, state_of(account).value)
        return self.get_account(account_id)

    def _target_for(self, actor: Optional[AdministratorAccount], target_id: str) -> AdministratorAccount:
        require_permission(actor, Permission.MANAGE_ADMINS)
        if actor.id == target_id:
            raise PermissionDenied("accounts cannot change their own role or approval", target_id,
                                   permission=Permission.MANAGE_ADMINS.value)
        target = self.get_account(target_id)
        if target is None:
            raise EntityNotFound(f"admin {target_id} not found", target_id)
        return target

    def _save(self, target: AdministratorAccount, updated: AdministratorAccount) -> AdministratorAccount:
        return self.repository.transactional_update(read_set(target), [updated])[0]

    def approve(self, actor: Optional[AdministratorAccount], target_id: str) -> AdministratorAccount:
        target = self._target_for(actor, target_id)
        saved = self._save(target, target.evolve(is_approved=True))
        logger.info("Admin %s approved by %s", target_id, actor.id)
        return saved

    def revoke_approval(self, actor: Optional[AdministratorAccount], target_id: str) -> AdministratorAccount:
        target = self._target_for(actor, target_id)
        # Süper adminler her zaman onaylıdır; önce rolleri düşürülmelidir
        if target.is_super_admin:
            raise ValidationFailed("demote the super admin before revoking approval", target_id,
                                   field="is_approved")
        saved = self._save(target, target.evolve(is_approved=False))
        logger.info("Admin %s approval revoked by %s", target_id, actor.id)
        return saved

    def set_super_admin(self, actor: Optional[AdministratorAccount], target_id: str, is_super_admin: bool) -> AdministratorAccount:
        target = self._target_for(actor, target_id)
        saved = self._save(target, target.with_updated_role(is_super_admin))
        logger.info("Admin %s role set to %s by %s", target_id, Role.of(saved).value, actor.id)
        return saved

    def list_accounts(self, actor: Optional[AdministratorAccount]) -> List[AdministratorAccount]:
        require_permission(actor, Permission.MANAGE_ADMINS)
        return sorted(self.repository.query(EntityKind.ADMIN), key=lambda a: a.created_at)

    def pending_accounts(self, actor: Optional[AdministratorAccount]) -> List[AdministratorAccount]:
        return [a for a in self.list_accounts(actor) if a.is_pending_approval]
