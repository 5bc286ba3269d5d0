import os
import tempfile
from dataclasses import dataclass
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


def _default_database_file() -> str:
    # Öncelik:
    # 1) LIBRARY_DB_FILE (açık geçersiz kılma)
    # 2) LIBRARY_DATA_FILE (eski ortam değişkeni)
    # 3) İşlem başına geçici dosya
    return (
        os.environ.get("LIBRARY_DB_FILE")
        or os.environ.get("LIBRARY_DATA_FILE")
        or os.path.join(tempfile.gettempdir(), f"libraryau_{os.getpid()}.db")
    )


@dataclass
class Settings:
    # Veritabanı Ayarları
    database_file: str = _default_database_file()

    # Barkod Ayarları
    barcode_prefix: str = os.getenv("LIBRARY_BARCODE_PREFIX", "LIB")
    reuse_isbn_for_first_copy: bool = _env_flag("REUSE_ISBN_BARCODE", "True")

    # Ödünç Kuralları (yalnızca ilk SystemSettings belgesi için varsayılanlar)
    default_max_loans_per_borrower: int = int(os.getenv("DEFAULT_MAX_LOANS", "3"))
    default_loan_days: int = int(os.getenv("DEFAULT_LOAN_DAYS", "14"))
    default_warning_days_before_due: int = int(os.getenv("DEFAULT_WARNING_DAYS", "2"))
    default_allow_same_title_concurrent: bool = _env_flag("ALLOW_SAME_TITLE", "False")

    # Aktif ödüncü olan öğrencinin silinmesi engellensin mi?
    block_borrower_delete_with_active_loans: bool = _env_flag("BLOCK_BORROWER_DELETE", "False")

    # Yetkilendirme Ayarları
    bootstrap_super_admin_email: Optional[str] = os.getenv("BOOTSTRAP_SUPER_ADMIN_EMAIL")

    # Harici API Ayarları
    isbn_lookup_timeout: float = float(os.getenv("ISBN_LOOKUP_TIMEOUT", "10"))
    google_books_api_key: Optional[str] = os.getenv("GOOGLE_BOOKS_API_KEY")

    # Uygulama Ayarları
    app_name: str = os.getenv("APP_NAME", "Kütüphane Ödünç Sistemi")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    debug: bool = _env_flag("DEBUG", "False")
    environment: str = os.getenv("ENVIRONMENT", "development")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()
