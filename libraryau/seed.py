"""İlk açılışta kataloğu statik bir JSON dosyasından yükleme."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, List, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from libraryau.errors import ValidationFailed

logger = logging.getLogger(__name__)


class CatalogRecord(BaseModel):
    """Katalog dosyasındaki tek bir kayıt.

    Hem İngilizce alan adlarını hem de eski katalog dosyasının Türkçe
    başlıklarını (``BAŞLIK``, ``YAZAR``, ``ISBN NUMARASI`` ...) kabul eder.
    """

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    title: str = Field("", validation_alias=AliasChoices("title", "BAŞLIK"))
    author: str = Field("", validation_alias=AliasChoices("author", "YAZAR"))
    isbn: str = Field("", validation_alias=AliasChoices("isbn", "ISBN NUMARASI"))
    publisher: str = Field("", validation_alias=AliasChoices("publisher", "YAYINEVİ"))
    editor: str = Field("", validation_alias=AliasChoices("editor", "EDİTÖR"))
    category: str = Field("", validation_alias=AliasChoices("category", "CATEGORY"))
    description: str = Field("", validation_alias=AliasChoices("description", "DESCRIPTION"))
    copy_count: int = Field(1, ge=0, validation_alias=AliasChoices("copy_count", "copyCount", "COPY_COUNT"))

    @field_validator("title", "author", "isbn", "publisher", "editor", "category", "description", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        # Bazı kayıtlarda ISBN sayı olarak, boş alanlar null olarak geliyor
        if value is None:
            return ""
        return str(value)


def parse_catalog(payload: Any) -> List[CatalogRecord]:
    if not isinstance(payload, list):
        raise ValidationFailed("catalog must be a JSON array", field="catalog")
    records: List[CatalogRecord] = []
    for index, item in enumerate(payload):
        try:
            records.append(CatalogRecord.model_validate(item))
        except ValidationError as e:
            raise ValidationFailed(f"catalog entry {index} is invalid: {e.error_count()} errors",
                                   field=f"catalog[{index}]") from e
    valid = sum(1 for r in records if r.title)
    logger.info("Catalog parsed: %d entries, %d with a title", len(records), valid)
    return records


def load_catalog(path: Union[str, Path]) -> List[CatalogRecord]:
    """JSON katalog dosyasını okuyup doğrulanmış kayıtlara dönüştürür."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            payload = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        raise ValidationFailed(f"cannot read catalog {path}: {e}", field="catalog") from e
    return parse_catalog(payload)
