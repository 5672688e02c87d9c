import re

COUNTRY_CODE = "254"
MOBILE_TRUNK_DIGIT = "7"
LOCAL_DIGITS = 9

_NON_DIGITS = re.compile(r"\D")
_INTERNATIONAL = re.compile(rf"^{COUNTRY_CODE}\d{{{LOCAL_DIGITS}}}$")


def _digits(phone):
    return _NON_DIGITS.sub("", phone or "")


def normalize_phone_number(phone):
    """Return the ``+254XXXXXXXXX`` form of ``phone`` or None if it is not a
    Kenyan mobile number.

    Accepts ``254712345678``, ``+254 712 345 678``, ``0712345678`` and
    ``712345678``.
    """
    digits = _digits(phone)
    if len(digits) == LOCAL_DIGITS + 1 and digits.startswith("0" + MOBILE_TRUNK_DIGIT):
        digits = digits[1:]
    if len(digits) == LOCAL_DIGITS and digits.startswith(MOBILE_TRUNK_DIGIT):
        digits = COUNTRY_CODE + digits
    if not _INTERNATIONAL.match(digits):
        return None
    return f"+{digits}"


def validate_phone_number(phone):
    return normalize_phone_number(phone) is not None


def format_phone_number(phone):
    """Display form; leaves anything unrecognised untouched."""
    return normalize_phone_number(phone) or phone


def gateway_msisdn(phone):
    """The bare ``2547XXXXXXXX`` digits payment providers expect."""
    normalized = normalize_phone_number(phone)
    return normalized[1:] if normalized else None
