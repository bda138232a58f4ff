"""
Taxpayer lookup proxied to Hacienda's public economic activity API
"""
from fastapi import APIRouter, Depends, Path

from app.core.auth import get_current_account, get_document_service
from app.services.document_service import DocumentService

router = APIRouter(
    prefix="/taxpayers",
    tags=["Taxpayers"],
    responses={502: {"description": "Hacienda unavailable"}}
)


@router.get(
    "/{identification}",
    summary="Lookup taxpayer",
    description="Pass-through to Hacienda's taxpayer registry (5 second timeout)"
)
async def get_taxpayer(
    identification: str = Path(..., description="Identification number, digits only"),
    account_id: str = Depends(get_current_account),
    service: DocumentService = Depends(get_document_service)
):
    return await service.lookup_taxpayer(identification)
