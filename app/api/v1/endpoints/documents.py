"""
Document API endpoints for Costa Rica electronic documents.
Validation, emission, submission to Hacienda and status tracking.
"""
import json
from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends, Path, Request, status
from fastapi.responses import Response

from app.core.auth import (
    get_bearer_token, get_current_account, get_document_service, verify_callback_token
)
from app.schemas.documents import ConfirmationRequest, DocumentRecordResponse, EmissionResponse
from app.services.document_service import DocumentService
from app.utils.document_validator import normalize_payload
from app.utils.error_responses import ValidationError

router = APIRouter(
    prefix="/documents",
    tags=["Electronic Documents"],
    responses={404: {"description": "Not found"}}
)


async def read_document_body(request: Request, parse_float=Decimal) -> Any:
    """
    Parse the request body. Document amounts are kept as Decimal.

    Raises:
        ValidationError: If the body is not valid JSON
    """
    raw = await request.body()
    try:
        return json.loads(raw or b"null", parse_float=parse_float)
    except ValueError as e:
        raise ValidationError("document", f"Invalid JSON body: {e}") from e


EXAMPLE_DOCUMENT = {
    "documentName": "FacturaElectronica",
    "providerId": "3101123456",
    "countryCode": "506",
    "securityCode": "12345678",
    "activityCode": "930903",
    "consecutiveIdentifier": "1",
    "ceSituation": "1",
    "branch": "1",
    "terminal": "1",
    "conditionSale": "01",
    "paymentMethod": "01",
    "currencyCode": "CRC",
    "exchangeRate": "1",
    "emitter": {
        "fullName": "Comercial Ejemplo S.A.",
        "commercialName": "Ejemplo",
        "identifier": {"type": "02", "id": "3101123456"},
        "activityCode": "930903",
        "location": {
            "province": "1",
            "canton": "01",
            "district": "01",
            "neighborhood": "01",
            "details": "Avenida Central, San José"
        },
        "email": "facturacion@ejemplo.cr",
        "phone": {"countryCode": "506", "number": "22223333"}
    },
    "receiver": {
        "fullName": "Cliente Ejemplo",
        "identifier": {"type": "01", "id": "112340567"},
        "activityCode": "930903",
        "location": {
            "province": "1",
            "canton": "02",
            "district": "03",
            "neighborhood": "01",
            "details": "Escazú, 200 m norte del parque"
        },
        "email": "cliente@ejemplo.cr"
    },
    "orderLines": [
        {
            "detail": "Producto X",
            "code": "4321000000000",
            "unitaryPrice": 100,
            "quantity": 1,
            "measureUnit": "Unid",
            "tax": {"code": "01", "rateCode": "08", "rate": 13}
        }
    ]
}


@router.post(
    "/validate",
    summary="Validate document",
    description="Structural validation only; nothing is stored"
)
async def validate_document(
    request: Request,
    account_id: str = Depends(get_current_account),
    service: DocumentService = Depends(get_document_service)
):
    body = await read_document_body(request)
    service.validate(normalize_payload(body))
    return {"success": True}


@router.post(
    "/validate-and-emit",
    response_model=EmissionResponse,
    summary="Validate and emit document",
    description="Validate, derive the document key, generate and sign the XML and register it as pending"
)
async def validate_and_emit(
    request: Request,
    account_id: str = Depends(get_current_account),
    service: DocumentService = Depends(get_document_service)
):
    """
    Accepts either ``{"document": {...}}`` or the flat document object.

    Returns the XML, the signed XML when a signer is configured, and the
    50-digit document key.
    """
    body = await read_document_body(request)
    return service.validate_and_emit(normalize_payload(body), account_id)


@router.get(
    "/structure",
    summary="Example document",
    description="Complete example payload accepted by validate-and-emit"
)
async def document_structure():
    return {"document": EXAMPLE_DOCUMENT}


@router.post(
    "/callback",
    summary="Hacienda callback",
    description="Receives the verdict Hacienda posts to the configured callback URL",
    dependencies=[Depends(verify_callback_token)]
)
async def hacienda_callback(
    request: Request,
    service: DocumentService = Depends(get_document_service)
):
    body = await read_document_body(request, parse_float=float)
    new_status = service.handle_callback(body)
    return {"success": True, "documentKey": str(body["clave"]), "status": new_status}


@router.get(
    "/{document_key}",
    response_model=DocumentRecordResponse,
    summary="Get document",
    description="Document record with its current state and event history"
)
async def get_document(
    document_key: str = Path(..., description="50-digit document key"),
    account_id: str = Depends(get_current_account),
    service: DocumentService = Depends(get_document_service)
):
    return service.get_record(document_key, account_id)


@router.get(
    "/{document_key}/xml",
    summary="Download document XML",
    response_class=Response
)
async def get_document_xml(
    document_key: str = Path(..., description="50-digit document key"),
    account_id: str = Depends(get_current_account),
    service: DocumentService = Depends(get_document_service)
):
    xml_content = service.get_xml(document_key, account_id)
    return Response(
        content=xml_content,
        media_type="application/xml",
        headers={"Content-Disposition": f"attachment; filename={document_key}.xml"}
    )


@router.post(
    "/{document_key}/submit",
    response_model=DocumentRecordResponse,
    summary="Submit document to Hacienda"
)
async def submit_document(
    document_key: str = Path(..., description="50-digit document key"),
    account_id: str = Depends(get_current_account),
    service: DocumentService = Depends(get_document_service)
):
    return await service.submit(document_key, account_id)


@router.post(
    "/{document_key}/resubmit",
    response_model=DocumentRecordResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Resubmit errored document",
    description="Opens a new pending attempt for a document whose last attempt ended in error"
)
async def resubmit_document(
    document_key: str = Path(..., description="50-digit document key"),
    account_id: str = Depends(get_current_account),
    service: DocumentService = Depends(get_document_service)
):
    return service.resubmit(document_key, account_id)


@router.post(
    "/{document_key}/confirm",
    summary="Forward confirmation",
    description="Forwards a confirmation request to Hacienda with the caller's bearer token"
)
async def confirm_document(
    confirmation: ConfirmationRequest,
    document_key: str = Path(..., description="50-digit document key"),
    token: str = Depends(get_bearer_token),
    account_id: str = Depends(get_current_account),
    service: DocumentService = Depends(get_document_service)
):
    result = await service.confirm(document_key, account_id, confirmation.url, token)
    return {"success": True, "response": result}


@router.get(
    "/{document_key}/status",
    response_model=DocumentRecordResponse,
    summary="Poll Hacienda status"
)
async def poll_document_status(
    document_key: str = Path(..., description="50-digit document key"),
    account_id: str = Depends(get_current_account),
    service: DocumentService = Depends(get_document_service)
):
    return await service.poll_status(document_key, account_id)
