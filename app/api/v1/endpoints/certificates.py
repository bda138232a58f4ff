"""
Signing certificate registration and metadata
"""
import base64
import binascii

from fastapi import APIRouter, Depends, Path, status

from app.core.auth import get_certificate_service, get_current_account
from app.schemas.documents import CertificateResponse, CertificateUpload
from app.services.certificate_service import CertificateService
from app.utils.error_responses import ValidationError

router = APIRouter(
    prefix="/certificates",
    tags=["Certificates"],
    responses={404: {"description": "Not found"}}
)


@router.post(
    "",
    response_model=CertificateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register certificate",
    description="Validates a PKCS#12 certificate and stores it encrypted with AES-256-GCM"
)
async def register_certificate(
    upload: CertificateUpload,
    account_id: str = Depends(get_current_account),
    service: CertificateService = Depends(get_certificate_service)
):
    try:
        p12_data = base64.b64decode(upload.p12, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError("p12", "p12 must be valid base64") from e

    return service.register(account_id, p12_data, upload.password, name=upload.name)


@router.get(
    "/{certificate_id}",
    response_model=CertificateResponse,
    summary="Get certificate metadata"
)
async def get_certificate(
    certificate_id: int = Path(..., description="Certificate identifier"),
    account_id: str = Depends(get_current_account),
    service: CertificateService = Depends(get_certificate_service)
):
    return service.get(certificate_id, account_id)
