from unittest.mock import MagicMock

import httpx
import pytest

from libraryau import isbn_lookup
from libraryau.errors import ExternalServiceError, ValidationFailed
from libraryau.isbn_lookup import BookInfo, IsbnLookupService

GOOGLE_HIT = {
    "totalItems": 1,
    "items": [{
        "volumeInfo": {
            "title": "Ulysses",
            "authors": ["James Joyce"],
            "publisher": "Oxford",
            "categories": ["Fiction"],
            "publishedDate": "2008",
        }
    }],
}

OPEN_LIBRARY_HIT = {
    "ISBN:9780199535675": {
        "title": "Ulysses",
        "authors": [{"name": "James Joyce"}],
        "publishers": [{"name": "Oxford University Press"}],
        "publish_date": "2008",
    }
}


def _response(status_code, payload):
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = payload
    return resp


@pytest.fixture
def service():
    return IsbnLookupService(timeout=1, api_key="")


def test_google_books_hit(service, monkeypatch):
    get = MagicMock(return_value=_response(200, GOOGLE_HIT))
    monkeypatch.setattr(isbn_lookup.httpx, "get", get)

    info = service.fetch_book_info("978-0-19-953567-5")
    assert info.title == "Ulysses"
    assert info.author == "James Joyce"
    assert info.category == "Fiction"
    assert get.call_count == 1
    assert "isbn:9780199535675" in get.call_args[0][0]


def test_falls_back_to_open_library(service, monkeypatch):
    get = MagicMock(side_effect=[_response(200, {"totalItems": 0}), _response(200, OPEN_LIBRARY_HIT)])
    monkeypatch.setattr(isbn_lookup.httpx, "get", get)

    info = service.fetch_book_info("9780199535675")
    assert info.publisher == "Oxford University Press"
    assert info.is_valid
    assert "openlibrary.org" in get.call_args[0][0]


def test_not_found_anywhere(service, monkeypatch):
    get = MagicMock(side_effect=[_response(404, {}), _response(200, {})])
    monkeypatch.setattr(isbn_lookup.httpx, "get", get)
    assert service.fetch_book_info("9780199535675") is None


def test_network_failure_raises_after_retries(service, monkeypatch):
    get = MagicMock(side_effect=httpx.ConnectError("offline"))
    monkeypatch.setattr(isbn_lookup.httpx, "get", get)
    monkeypatch.setattr(isbn_lookup.time, "sleep", lambda _: None)

    with pytest.raises(ExternalServiceError):
        service.fetch_book_info("9780199535675")
    assert get.call_count == 6


def test_invalid_isbn_is_rejected_without_network(service, monkeypatch):
    get = MagicMock()
    monkeypatch.setattr(isbn_lookup.httpx, "get", get)
    with pytest.raises(ValidationFailed):
        service.fetch_book_info("XJ19")
    get.assert_not_called()


def test_book_info_template_fields():
    info = BookInfo(title="Dune", author="Frank Herbert")
    assert info.template_fields()["title"] == "Dune"
    assert info.template_fields()["publisher"] == ""
    assert not BookInfo().is_valid
