"""Ödünç çekirdeğinin hata türleri.

Her hata bir ``kind`` koduna ve ilgili varlık kimliklerine (``entity_ids``)
sahiptir. Kullanıcıya gösterilecek metni sunum katmanı bu alanlardan üretir;
buradaki mesajlar yalnızca geliştirici içindir.
"""

from __future__ import annotations

from typing import Optional, Tuple


class LibraryError(Exception):
    """Tüm kural ihlallerinin ve depolama hatalarının temel sınıfı."""

    kind = "LibraryError"
    retryable = False

    def __init__(self, message: str = "", *entity_ids: str) -> None:
        super().__init__(message or self.kind)
        self.entity_ids: Tuple[str, ...] = tuple(i for i in entity_ids if i is not None)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "entity_ids": list(self.entity_ids), "message": str(self)}


class EntityNotFound(LibraryError):
    kind = "EntityNotFound"


class EntityDeleted(LibraryError):
    kind = "EntityDeleted"


class EntityInUse(LibraryError):
    """Aktif bir ödünç kaydı silmeyi engelliyor."""

    kind = "EntityInUse"


class ValidationFailed(LibraryError):
    kind = "ValidationFailed"

    def __init__(self, message: str = "", *entity_ids: str, field: Optional[str] = None) -> None:
        super().__init__(message, *entity_ids)
        self.field = field

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["field"] = self.field
        return data


class CopyUnavailable(LibraryError):
    kind = "CopyUnavailable"


class LoanLimitExceeded(LibraryError):
    kind = "LoanLimitExceeded"

    def __init__(self, message: str = "", *entity_ids: str, limit: int = 0) -> None:
        super().__init__(message, *entity_ids)
        self.limit = limit

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["limit"] = self.limit
        return data


class DuplicateTitleActive(LibraryError):
    kind = "DuplicateTitleActive"


class AlreadyReturned(LibraryError):
    kind = "AlreadyReturned"


class PermissionDenied(LibraryError):
    kind = "PermissionDenied"

    def __init__(self, message: str = "", *entity_ids: str, permission: Optional[str] = None) -> None:
        super().__init__(message, *entity_ids)
        self.permission = permission

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["permission"] = self.permission
        return data


class ConcurrentModification(LibraryError):
    """Depo koşullu yazmayı reddetti; anlık görüntü yeniden alınıp denenebilir."""

    kind = "ConcurrentModification"
    retryable = True


class StorageUnavailable(LibraryError):
    """Depolama katmanı hatası. Kural ihlalleriyle asla karıştırılmaz."""

    kind = "StorageUnavailable"


class ExternalServiceError(Exception):
    pass
