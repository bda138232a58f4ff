"""
Document key (clave) generation utilities for Costa Rica electronic documents.

Layout of the 50-digit key:
    Country(3) + Day(2) + Month(2) + Year(2) + Issuer(12) +
    Branch(3) + Terminal(5) + DocType(2) + Sequential(10) +
    Situation(1) + SecurityCode(7) + CheckDigit(1)
"""
import re
from datetime import datetime
from typing import Dict

from app.utils.error_responses import KeyFormatError

COUNTRY_CODE = "506"
SITUATION_NORMAL = "1"
SITUATION_CONTINGENCY = "2"
SITUATION_NO_INTERNET = "3"
VALID_SITUATIONS = {SITUATION_NORMAL, SITUATION_CONTINGENCY, SITUATION_NO_INTERNET}

KEY_LENGTH = 50
BASE_LENGTH = KEY_LENGTH - 1


def _pad_digits(value: str, width: int, name: str) -> str:
    """Zero-pad a numeric field, failing instead of truncating"""
    value = str(value).strip()
    if not re.match(r'^\d+$', value):
        raise KeyFormatError(f"{name} must contain only digits: {value!r}", field=name)
    if len(value) > width:
        raise KeyFormatError(f"{name} exceeds {width} digits: {value}", field=name)
    return value.zfill(width)


def calculate_check_digit(base: str) -> int:
    """
    Weighted mod-11 check digit.

    Each digit at index i is multiplied by (i mod 6) + 2; the remainder r of the
    sum modulo 11 maps to r when r < 2, otherwise to 11 - r.
    """
    if not re.match(r'^\d+$', base):
        raise KeyFormatError(f"Key base must contain only digits: {base!r}")

    total = sum(int(digit) * ((i % 6) + 2) for i, digit in enumerate(base))
    remainder = total % 11
    return remainder if remainder < 2 else 11 - remainder


def generate_consecutive_number(
    branch: str,
    terminal: str,
    document_type: str,
    sequence_number: str
) -> str:
    """
    Generate consecutive number following Costa Rican format

    Format: Branch(3) + Terminal(5) + DocType(2) + Sequential(10)
    """
    if not re.match(r'^\d{2}$', str(document_type)):
        raise KeyFormatError(f"Document type must be a 2-digit code: {document_type!r}", field="documentType")

    return (
        _pad_digits(branch, 3, "branch")
        + _pad_digits(terminal, 5, "terminal")
        + str(document_type)
        + _pad_digits(sequence_number, 10, "sequenceNumber")
    )


def generate_key(
    branch: str,
    terminal: str,
    document_type: str,
    sequence_number: str,
    issue_date: datetime,
    issuer_id: str = "",
    security_code: str = "00000000",
    situation: str = SITUATION_NORMAL,
    country_code: str = COUNTRY_CODE
) -> str:
    """
    Derive the 50-digit document key.

    Deterministic for fixed inputs. Raises KeyFormatError when any field
    exceeds its width or is not numeric.
    """
    if not re.match(r'^\d{3}$', str(country_code)):
        raise KeyFormatError(f"Country code must be 3 digits: {country_code!r}", field="countryCode")
    if str(situation) not in VALID_SITUATIONS:
        raise KeyFormatError(f"Invalid situation code: {situation!r}", field="ceSituation")
    if not re.match(r'^\d{8}$', str(security_code)):
        raise KeyFormatError(f"Security code must be exactly 8 digits: {security_code!r}", field="securityCode")

    issuer = re.sub(r'[^\d]', '', str(issuer_id or "")) or "0"

    base = (
        str(country_code)
        + f"{issue_date.day:02d}{issue_date.month:02d}{issue_date.year % 100:02d}"
        + _pad_digits(issuer, 12, "issuerId")
        + generate_consecutive_number(branch, terminal, document_type, sequence_number)
        + str(situation)
        + str(security_code)[:7]
    )

    if len(base) != BASE_LENGTH:
        raise KeyFormatError(f"Key base must be {BASE_LENGTH} digits: {base}")

    return base + str(calculate_check_digit(base))


def validate_document_key_format(document_key: str) -> bool:
    """Check the 50-digit shape only"""
    return bool(re.match(r'^\d{50}$', str(document_key or "")))


def verify_document_key(document_key: str) -> bool:
    """Check shape and check digit"""
    if not validate_document_key_format(document_key):
        return False
    return calculate_check_digit(document_key[:BASE_LENGTH]) == int(document_key[-1])


def parse_document_key(document_key: str) -> Dict[str, str]:
    """
    Parse document key into its components

    Raises:
        KeyFormatError: If format is invalid
    """
    if not validate_document_key_format(document_key):
        raise KeyFormatError(f"Invalid document key format: {document_key}", field="documentKey")

    return {
        "country": document_key[0:3],
        "day": document_key[3:5],
        "month": document_key[5:7],
        "year": document_key[7:9],
        "issuer": document_key[9:21],
        "consecutive": document_key[21:41],
        "branch": document_key[21:24],
        "terminal": document_key[24:29],
        "document_type": document_key[29:31],
        "sequential": document_key[31:41],
        "situation": document_key[41],
        "security_code": document_key[42:49],
        "check_digit": document_key[49],
    }
