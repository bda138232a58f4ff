"""
Structural validation of inbound electronic documents.

Checks run in a fixed order and stop at the first violation so the caller
always learns which field to fix first. The caller's payload is never
mutated; the returned model is built from a shallow copy.
"""
import re
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

import pydantic

from app.schemas.documents import ValidatedDocument
from app.schemas.enums import TICKET_DOCUMENT_NAME
from app.utils.error_responses import ValidationError

REQUIRED_STRING_FIELDS = (
    "documentName", "providerId", "countryCode", "securityCode",
    "activityCode", "consecutiveIdentifier", "ceSituation", "branch", "terminal",
    "conditionSale", "paymentMethod",
)

LOCATION_FIELDS = ("province", "canton", "district", "neighborhood", "details")

REFERENCE_FIELDS = ("documentType", "number", "issueDate", "code", "reason")

SECURITY_CODE_PATTERN = re.compile(r'^\d{8}$')

IDENTIFICATION_TYPE_PATTERN = re.compile(r'^\d{2}$')

# Widths of the stored party columns
MAX_NAME_LENGTH = 100
MAX_IDENTIFICATION_LENGTH = 20


def _is_non_empty_string(value: Any) -> bool:
    return isinstance(value, str) and len(value.strip()) > 0


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, Decimal):
        return value.is_finite()
    if isinstance(value, float):
        return value == value and value not in (float("inf"), float("-inf"))
    return isinstance(value, int)


def normalize_payload(body: Any) -> Dict[str, Any]:
    """
    Unwrap ``{"document": {...}}`` into the flat document object.

    Raises:
        ValidationError: If the body is not an object
    """
    if isinstance(body, Mapping) and isinstance(body.get("document"), Mapping):
        body = body["document"]
    if not isinstance(body, Mapping):
        raise ValidationError("document", "Invalid body: a document object is expected")
    return dict(body)


def _party_violation(party: Any, role: str) -> Optional[ValidationError]:
    """First problem found in an emitter or receiver block, or None"""
    if not isinstance(party, Mapping):
        return ValidationError(role, f"Missing {role} object")

    full_name = party.get("fullName")
    if not _is_non_empty_string(full_name):
        return ValidationError(f"{role}.fullName", f"{role}.fullName is required")
    if len(full_name) > MAX_NAME_LENGTH:
        return ValidationError(
            f"{role}.fullName",
            f"{role}.fullName cannot exceed {MAX_NAME_LENGTH} characters"
        )

    identifier = party.get("identifier")
    if (
        not isinstance(identifier, Mapping)
        or not _is_non_empty_string(identifier.get("type"))
        or not _is_non_empty_string(identifier.get("id"))
    ):
        return ValidationError(
            f"{role}.identifier",
            f"{role}.identifier.type and {role}.identifier.id are required"
        )
    if not IDENTIFICATION_TYPE_PATTERN.match(identifier["type"]):
        return ValidationError(
            f"{role}.identifier.type",
            f"{role}.identifier.type must be a 2-digit identification code"
        )
    if len(identifier["id"]) > MAX_IDENTIFICATION_LENGTH:
        return ValidationError(
            f"{role}.identifier.id",
            f"{role}.identifier.id cannot exceed {MAX_IDENTIFICATION_LENGTH} characters"
        )

    if not _is_non_empty_string(party.get("activityCode")):
        return ValidationError(f"{role}.activityCode", f"{role}.activityCode is required")

    location = party.get("location")
    if not isinstance(location, Mapping):
        return ValidationError(f"{role}.location", f"{role}.location is incomplete")
    for name in LOCATION_FIELDS:
        if not _is_non_empty_string(location.get(name)):
            return ValidationError(
                f"{role}.location.{name}",
                f"{role}.location is incomplete: {name} is required"
            )
    return None


def _validate_party(party: Any, role: str) -> None:
    violation = _party_violation(party, role)
    if violation is not None:
        raise violation


def _validate_order_lines(lines: Any) -> None:
    if not isinstance(lines, list) or len(lines) == 0:
        raise ValidationError(
            "orderLines",
            "orderLines is required and must contain at least one line"
        )

    for i, line in enumerate(lines):
        prefix = f"orderLines[{i}]"
        if not isinstance(line, Mapping):
            raise ValidationError(prefix, f"{prefix} must be an object")
        if not _is_non_empty_string(line.get("detail")):
            raise ValidationError(f"{prefix}.detail", f"{prefix}.detail is required")

        price = line.get("unitaryPrice")
        if not _is_number(price):
            raise ValidationError(f"{prefix}.unitaryPrice", f"{prefix}.unitaryPrice must be a number")
        if price < 0:
            raise ValidationError(f"{prefix}.unitaryPrice", f"{prefix}.unitaryPrice cannot be negative")

        if "quantity" in line and line["quantity"] is not None and not _is_number(line["quantity"]):
            raise ValidationError(f"{prefix}.quantity", f"{prefix}.quantity must be a number when provided")

        tax = line.get("tax")
        if tax is not None:
            if (
                not isinstance(tax, Mapping)
                or not _is_non_empty_string(tax.get("code"))
                or not _is_non_empty_string(tax.get("rateCode"))
                or not _is_number(tax.get("rate"))
            ):
                raise ValidationError(
                    f"{prefix}.tax",
                    f"{prefix}.tax is incomplete: 'code', 'rateCode' and 'rate' are required"
                )


def validate_document(payload: Any) -> ValidatedDocument:
    """
    Validate a document payload, flat or wrapped in ``{"document": ...}``.

    Returns:
        ValidatedDocument built from the untouched payload

    Raises:
        ValidationError: naming the first violated field
    """
    document = normalize_payload(payload)

    for name in REQUIRED_STRING_FIELDS:
        if not _is_non_empty_string(document.get(name)):
            raise ValidationError(name, f"Field '{name}' is missing or invalid")

    if not SECURITY_CODE_PATTERN.match(document["securityCode"]):
        raise ValidationError("securityCode", "securityCode must be a string of 8 digits")

    _validate_party(document.get("emitter"), "emitter")

    if document["documentName"] != TICKET_DOCUMENT_NAME:
        _validate_party(document.get("receiver"), "receiver")
    elif "receiver" in document and _party_violation(document["receiver"], "receiver") is not None:
        # Tickets carry no receiver rules; a partial receiver is left out
        del document["receiver"]

    _validate_order_lines(document.get("orderLines"))

    for name in ("currencyCode", "exchangeRate"):
        if document.get(name) is not None and not _is_non_empty_string(document[name]):
            raise ValidationError(name, f"{name} must be a string when provided")

    reference = document.get("referenceInfo")
    if reference is not None:
        if not isinstance(reference, Mapping):
            raise ValidationError("referenceInfo", "referenceInfo must be an object")
        for name in REFERENCE_FIELDS:
            if not _is_non_empty_string(reference.get(name)):
                raise ValidationError(f"referenceInfo.{name}", f"referenceInfo.{name} is required")

    try:
        return ValidatedDocument.model_validate(document)
    except pydantic.ValidationError as e:
        error = e.errors()[0]
        field = _error_location(error["loc"])
        raise ValidationError(field, f"{field}: {error['msg']}") from e


def _error_location(loc) -> str:
    """``("orderLines", 0, "code")`` -> ``orderLines[0].code``"""
    field = ""
    for part in loc:
        if isinstance(part, int):
            field += f"[{part}]"
        else:
            field += f".{part}" if field else str(part)
    return field or "document"
