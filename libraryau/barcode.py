"""Barkod kimliği: ISBN ve sistem (LIB) barkodlarını ayırt eder, doğrular ve üretir.

Sistem barkodu biçimi: ``LIB`` + 3 haneli şablon numarası + 3 haneli kopya
numarası, ör. ``LIB001003``.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Optional, Tuple

from libraryau.config import settings
from libraryau.errors import ValidationFailed

ORDINAL_WIDTH = 3
SEQUENCE_WIDTH = 3
MAX_ORDINAL = 10 ** ORDINAL_WIDTH - 1
MAX_SEQUENCE = 10 ** SEQUENCE_WIDTH - 1


class BarcodeKind(Enum):
    ISBN = "isbn"      # Orijinal ISBN barkodu
    SYSTEM = "system"  # Sistem tarafından oluşturulan LIB barkodu


def _prefix(prefix: Optional[str]) -> str:
    # Karşılaştırmalar büyük harfle yapılır
    return (prefix or settings.barcode_prefix).upper()


def normalize_isbn(raw: Optional[str]) -> str:
    if raw is None:
        return ""
    return re.sub(r"[^0-9Xx]", "", raw).upper()


def is_plausible_isbn(raw: Optional[str]) -> bool:
    """ISBN-10/13 biçim kontrolü (kontrol toplamı aranmaz).

    - ISBN-13: 13 rakam
    - ISBN-10: 9 rakam ve ardından bir rakam veya 'X'
    """
    if not raw:
        return False
    s = raw.replace("-", "").replace(" ", "").upper()
    if len(s) == 13:
        return s.isdigit()
    if len(s) == 10:
        return s[:9].isdigit() and (s[9].isdigit() or s[9] == "X")
    return False


def classify(raw: str, prefix: Optional[str] = None) -> BarcodeKind:
    if raw and raw.strip().upper().startswith(_prefix(prefix)):
        return BarcodeKind.SYSTEM
    return BarcodeKind.ISBN


def validate(raw: Optional[str], prefix: Optional[str] = None) -> bool:
    if not raw or not raw.strip():
        return False
    value = raw.strip()
    if classify(value, prefix) is BarcodeKind.SYSTEM:
        return parse(value, prefix) is not None
    return is_plausible_isbn(value)


def generate(template_ordinal: int, sequence_number: int, prefix: Optional[str] = None) -> str:
    """Şablon numarası ve kopya numarasından deterministik sistem barkodu üretir."""
    if not 1 <= template_ordinal <= MAX_ORDINAL:
        raise ValidationFailed(
            f"template ordinal out of range: {template_ordinal}", field="template_ordinal"
        )
    if not 1 <= sequence_number <= MAX_SEQUENCE:
        raise ValidationFailed(
            f"sequence number out of range: {sequence_number}", field="sequence_number"
        )
    return (
        f"{_prefix(prefix)}"
        f"{template_ordinal:0{ORDINAL_WIDTH}d}"
        f"{sequence_number:0{SEQUENCE_WIDTH}d}"
    )


def parse(raw: str, prefix: Optional[str] = None) -> Optional[Tuple[int, int]]:
    """Sistem barkodundan (şablon numarası, kopya numarası) çiftini çıkarır."""
    p = _prefix(prefix)
    value = (raw or "").strip().upper()
    if not value.startswith(p):
        return None
    digits = value[len(p):]
    if len(digits) != ORDINAL_WIDTH + SEQUENCE_WIDTH or not digits.isdigit():
        return None
    return int(digits[:ORDINAL_WIDTH]), int(digits[ORDINAL_WIDTH:])
