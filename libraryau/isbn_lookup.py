"""ISBN'den kitap bilgisi çekme servisi.

Önce Google Books denenir; sonuç yoksa Open Library'ye geri düşülür.
Yalnızca yeni şablon formunu doldurmak için kullanılır, ödünç kurallarına
katılmaz.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from libraryau import barcode
from libraryau.config import settings
from libraryau.errors import ExternalServiceError, ValidationFailed

logger = logging.getLogger(__name__)

GOOGLE_BOOKS_URL = "https://www.googleapis.com/books/v1/volumes"
OPEN_LIBRARY_URL = "https://openlibrary.org/api/books"


@dataclass
class BookInfo:
    title: Optional[str] = None
    author: Optional[str] = None
    publisher: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    published_date: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return bool((self.title or "").strip()) or bool((self.author or "").strip())

    def template_fields(self) -> Dict[str, str]:
        """``LendingService.add_template`` için anahtar kelime argümanları."""
        return {
            "title": self.title or "",
            "author": self.author or "",
            "publisher": self.publisher or "",
            "category": self.category or "",
            "description": self.description or "",
        }


class IsbnLookupService:
    def __init__(self, timeout: Optional[float] = None, api_key: Optional[str] = None) -> None:
        self.timeout = timeout if timeout is not None else settings.isbn_lookup_timeout
        self.api_key = api_key if api_key is not None else settings.google_books_api_key

    def fetch_book_info(self, isbn: str) -> Optional[BookInfo]:
        if not barcode.is_plausible_isbn(isbn):
            raise ValidationFailed(f"invalid ISBN: {isbn}", field="isbn")
        clean = barcode.normalize_isbn(isbn)

        google = self._fetch_from_google_books(clean)
        if google is not None and google.is_valid:
            return google
        return self._fetch_from_open_library(clean)

    # ------------------------- Kaynaklar ------------------------- #
    def _fetch_from_google_books(self, isbn: str) -> Optional[BookInfo]:
        url = f"{GOOGLE_BOOKS_URL}?q=isbn:{isbn}"
        if self.api_key:
            url += f"&key={self.api_key}"
        resp = self._http_get_with_retry(url)
        if resp is None or resp.status_code != 200:
            logger.info("Google Books returned no result for %s", isbn)
            return None
        return self._parse_google_books(resp.json())

    def _fetch_from_open_library(self, isbn: str) -> Optional[BookInfo]:
        url = f"{OPEN_LIBRARY_URL}?bibkeys=ISBN:{isbn}&format=json&jscmd=data"
        resp = self._http_get_with_retry(url)
        if resp is None:
            raise ExternalServiceError("ISBN services unreachable")
        if resp.status_code != 200:
            logger.info("Open Library returned %s for %s", resp.status_code, isbn)
            return None
        return self._parse_open_library(resp.json(), isbn)

    @staticmethod
    def _parse_google_books(data: Dict[str, Any]) -> Optional[BookInfo]:
        if not data.get("totalItems"):
            return None
        items = data.get("items") or []
        if not items:
            return None
        volume = items[0].get("volumeInfo") or {}
        categories = volume.get("categories") or []
        return BookInfo(
            title=volume.get("title") or None,
            author=", ".join(volume.get("authors") or []) or None,
            publisher=volume.get("publisher") or None,
            description=volume.get("description") or None,
            category=categories[0] if categories else None,
            published_date=volume.get("publishedDate") or None,
        )

    @staticmethod
    def _parse_open_library(data: Dict[str, Any], isbn: str) -> Optional[BookInfo]:
        book = data.get(f"ISBN:{isbn}")
        if not book:
            return None
        authors = [a.get("name") for a in book.get("authors") or [] if isinstance(a, dict) and a.get("name")]
        publishers = [p.get("name") for p in book.get("publishers") or [] if isinstance(p, dict) and p.get("name")]
        return BookInfo(
            title=book.get("title") or None,
            author=", ".join(authors) or None,
            publisher=publishers[0] if publishers else None,
            published_date=book.get("publish_date") or None,
        )

    def _http_get_with_retry(self, url: str, retries: int = 3, backoff: float = 0.5) -> Optional[httpx.Response]:
        """Geçici ağ sorunları için httpx.get etrafında basit yeniden deneme sarmalayıcısı."""
        for attempt in range(retries):
            try:
                return httpx.get(url, timeout=self.timeout)
            except httpx.RequestError as exc:
                logger.warning("GET %s failed (%s/%s): %s", url.split("?")[0], attempt + 1, retries, exc)
                if attempt < retries - 1:
                    time.sleep(backoff * (2 ** attempt))
        return None
