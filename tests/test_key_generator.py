"""
Tests for document key (clave) generation
"""
from datetime import datetime

import pytest

from app.utils.error_responses import KeyFormatError
from app.utils.key_generator import (
    calculate_check_digit,
    generate_consecutive_number,
    generate_key,
    parse_document_key,
    verify_document_key,
)

ISSUE_DATE = datetime(2025, 1, 1, 10, 30)


@pytest.mark.parametrize("base,expected", [
    ("0" * 49, 0),
    ("0" * 48 + "1", 9),
    ("1" * 49, 2),
    ("6" + "0" * 48, 1),
    ("2" + "0000" + "1" + "0" * 43, 0),
])
def test_check_digit_vectors(base, expected):
    assert calculate_check_digit(base) == expected


def test_check_digit_rejects_non_digits():
    with pytest.raises(KeyFormatError):
        calculate_check_digit("12a4")


def test_five_argument_key():
    key = generate_key("1", "1", "01", "1", ISSUE_DATE)

    expected_base = "506" + "010125" + "0" * 12 + "00100001010000000001" + "1" + "0000000"
    assert key == expected_base + "3"
    assert len(key) == 50


def test_key_is_deterministic():
    first = generate_key("2", "3", "04", "99", ISSUE_DATE, issuer_id="3101123456", security_code="87654321")
    second = generate_key("2", "3", "04", "99", ISSUE_DATE, issuer_id="3101123456", security_code="87654321")
    assert first == second
    assert verify_document_key(first)


def test_key_layout():
    key = generate_key("1", "1", "01", "1", ISSUE_DATE, issuer_id="3-101-123456", security_code="12345678")
    parts = parse_document_key(key)

    assert parts["country"] == "506"
    assert (parts["day"], parts["month"], parts["year"]) == ("01", "01", "25")
    assert parts["issuer"] == "003101123456"
    assert parts["consecutive"] == "00100001010000000001"
    assert parts["document_type"] == "01"
    assert parts["situation"] == "1"
    assert parts["security_code"] == "1234567"
    assert int(parts["check_digit"]) == calculate_check_digit(key[:49])


@pytest.mark.parametrize("kwargs,field", [
    ({"branch": "1000"}, "branch"),
    ({"terminal": "123456"}, "terminal"),
    ({"sequence_number": "12345678901"}, "sequenceNumber"),
    ({"issuer_id": "1234567890123"}, "issuerId"),
    ({"security_code": "1234567"}, "securityCode"),
    ({"security_code": "123456789"}, "securityCode"),
    ({"situation": "4"}, "ceSituation"),
    ({"branch": "A1"}, "branch"),
])
def test_field_width_violations(kwargs, field):
    arguments = dict(branch="1", terminal="1", document_type="01", sequence_number="1", issue_date=ISSUE_DATE)
    arguments.update(kwargs)

    with pytest.raises(KeyFormatError) as exc_info:
        generate_key(**arguments)
    assert exc_info.value.field == field


def test_consecutive_number():
    assert generate_consecutive_number("1", "1", "01", "1") == "00100001010000000001"
    assert generate_consecutive_number("123", "12345", "04", "1234567890") == "12312345041234567890"


def test_consecutive_number_requires_two_digit_type():
    with pytest.raises(KeyFormatError):
        generate_consecutive_number("1", "1", "1", "1")


def test_verify_detects_corrupted_check_digit():
    key = generate_key("1", "1", "01", "1", ISSUE_DATE)
    corrupted = key[:-1] + str((int(key[-1]) + 1) % 10)

    assert verify_document_key(key)
    assert not verify_document_key(corrupted)
    assert not verify_document_key(key[:-1])


def test_parse_rejects_bad_format():
    with pytest.raises(KeyFormatError):
        parse_document_key("506")
