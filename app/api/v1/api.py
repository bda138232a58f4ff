"""
API router aggregation for v1 endpoints
"""
from fastapi import APIRouter

# Import endpoint routers
from app.api.v1.endpoints import certificates, documents, taxpayers

api_router = APIRouter()

# Include endpoint routers
api_router.include_router(documents.router)
api_router.include_router(taxpayers.router)
api_router.include_router(certificates.router)


@api_router.get("/")
async def root():
    """API root endpoint"""
    return {
        "message": "Hacienda Electronic Document Broker API v1",
        "version": "1.0.0",
        "docs": "/docs"
    }
