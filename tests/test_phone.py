import pytest

from phone import format_phone_number, gateway_msisdn, normalize_phone_number, validate_phone_number


@pytest.mark.parametrize("raw", [
    "0712345678",
    "254712345678",
    "+254712345678",
    "+254 712 345 678",
    "712345678",
    "0712-345-678",
])
def test_valid_numbers_normalize_to_international(raw):
    assert validate_phone_number(raw)
    assert normalize_phone_number(raw) == "+254712345678"


@pytest.mark.parametrize("raw", ["12345", "", None, "0812345678", "25471234567", "2547123456789", "612345678"])
def test_invalid_numbers(raw):
    assert not validate_phone_number(raw)
    assert normalize_phone_number(raw) is None


def test_format_leaves_unknown_input_alone():
    assert format_phone_number("0712345678") == "+254712345678"
    assert format_phone_number("12345") == "12345"


def test_gateway_msisdn_has_no_plus():
    assert gateway_msisdn("0712345678") == "254712345678"
    assert gateway_msisdn("abc") is None
