import pytest

from libraryau import barcode
from libraryau.barcode import BarcodeKind
from libraryau.errors import ValidationFailed


@pytest.mark.parametrize(
    "raw, kind, valid",
    [
        ("978-605-9129-68-8", BarcodeKind.ISBN, True),
        ("9786059129688", BarcodeKind.ISBN, True),
        ("0-19-953567-X", BarcodeKind.ISBN, True),
        ("LIB001003", BarcodeKind.SYSTEM, True),
        ("LIB1003", BarcodeKind.SYSTEM, False),
        ("LIB00100A", BarcodeKind.SYSTEM, False),
        ("XJ19", BarcodeKind.ISBN, False),
    ],
)
def test_classify_and_validate(raw, kind, valid):
    assert barcode.classify(raw) is kind
    assert barcode.validate(raw) is valid


def test_validate_rejects_empty_input():
    assert barcode.validate("") is False
    assert barcode.validate("   ") is False
    assert barcode.validate(None) is False


def test_isbn13_with_letters_is_not_plausible():
    assert barcode.is_plausible_isbn("97860591296X8") is False
    assert barcode.is_plausible_isbn("12345") is False


def test_normalize_isbn_keeps_digits_and_check_letter():
    assert barcode.normalize_isbn("978-605-9129-68-8") == "9786059129688"
    assert barcode.normalize_isbn("0 19 953567 x") == "019953567X"
    assert barcode.normalize_isbn(None) == ""


def test_generate_is_zero_padded():
    assert barcode.generate(7, 3) == "LIB007003"
    assert barcode.generate(1, 3) == "LIB001003"
    assert barcode.generate(999, 999) == "LIB999999"


def test_generate_is_deterministic_and_injective():
    codes = {barcode.generate(o, s) for o in range(1, 30) for s in range(1, 30)}
    assert len(codes) == 29 * 29
    assert barcode.generate(12, 4) == barcode.generate(12, 4)


def test_generated_codes_parse_back():
    code = barcode.generate(42, 17)
    assert barcode.parse(code) == (42, 17)
    assert barcode.validate(code)


@pytest.mark.parametrize("ordinal, sequence", [(0, 1), (1, 0), (1000, 1), (1, 1000)])
def test_generate_rejects_out_of_range(ordinal, sequence):
    with pytest.raises(ValidationFailed):
        barcode.generate(ordinal, sequence)


def test_custom_prefix():
    assert barcode.generate(2, 5, prefix="KUT") == "KUT002005"
    assert barcode.classify("KUT002005", prefix="KUT") is BarcodeKind.SYSTEM
    assert barcode.classify("KUT002005") is BarcodeKind.ISBN


def test_lowercase_configured_prefix_round_trips(monkeypatch):
    monkeypatch.setattr(barcode.settings, "barcode_prefix", "lib")
    code = barcode.generate(1, 3)
    assert code == "LIB001003"
    assert barcode.classify(code) is BarcodeKind.SYSTEM
    assert barcode.validate(code)
    assert barcode.parse(code) == (1, 3)
    assert barcode.validate(barcode.generate(4, 2, prefix="kut"), prefix="kut")
