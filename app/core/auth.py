"""
Request dependencies: calling account, Hacienda gateway and per-request services
"""
import secrets
from typing import Optional
from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.database import get_db
from app.services.certificate_service import CertificateService
from app.services.document_service import DocumentService
from app.services.signature_service import build_signer
from app.utils.hacienda_client import HaciendaClient

# Confirmation tokens are passed through, never validated here
bearer = HTTPBearer(auto_error=False)


async def get_current_account(
    x_account_id: Optional[str] = Header(None, alias="X-Account-Id")
) -> str:
    """
    Account named by the upstream authentication layer

    Returns:
        Account identifier owning the request's documents

    Raises:
        HTTPException: If the header is missing or blank
    """
    if not x_account_id or not x_account_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Account-Id header is required",
        )
    return x_account_id.strip()


async def get_bearer_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer)
) -> str:
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization: Bearer <token> header is required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return credentials.credentials


async def verify_callback_token(
    request: Request,
    x_callback_token: Optional[str] = Header(None, alias="X-Callback-Token")
) -> None:
    """
    Check the shared secret carried by Hacienda callbacks

    Raises:
        HTTPException: If no secret is configured or the request does not match it
    """
    expected = settings.HACIENDA_CALLBACK_TOKEN
    supplied = x_callback_token or request.query_params.get("token") or ""
    if not expected or not secrets.compare_digest(supplied.encode(), expected.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid callback token",
        )


def get_hacienda_client(request: Request) -> HaciendaClient:
    """One gateway per application so the token cache is shared"""
    client = getattr(request.app.state, "hacienda_client", None)
    if client is None:
        client = HaciendaClient.from_settings(settings)
        request.app.state.hacienda_client = client
    return client


def get_document_service(
    db: Session = Depends(get_db),
    gateway: HaciendaClient = Depends(get_hacienda_client)
) -> DocumentService:
    return DocumentService(db, gateway, signer=build_signer(settings, db))


def get_certificate_service(db: Session = Depends(get_db)) -> CertificateService:
    return CertificateService(db)
