import pytest

from utils.phone import InvalidPhoneNumberError, normalize_phone_number


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("06 12 34 56 78", "33612345678"),
        ("06.12.34.56.78", "33612345678"),
        ("06-12-34-56-78", "33612345678"),
        ("+33 6 12 34 56 78", "33612345678"),
        ("0033 6 12 34 56 78", "33612345678"),
        ("+1 (415) 555-0132", "14155550132"),
        ("33612345678", "33612345678"),
    ],
)
def test_normalizes_common_formats(raw: str, expected: str) -> None:
    assert normalize_phone_number(raw) == expected


def test_national_prefix_uses_given_country_code() -> None:
    assert normalize_phone_number("0470 12 34 56", country_code="32") == "32470123456"


@pytest.mark.parametrize("raw", ["", "12345", "06 12 34", "+33 6 12 AB 56 78", "1" * 16])
def test_rejects_invalid_numbers(raw: str) -> None:
    with pytest.raises(InvalidPhoneNumberError):
        normalize_phone_number(raw)
