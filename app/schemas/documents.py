"""
Document models for Costa Rica electronic documents.

Field names follow the camelCase payload accepted by the API; Python code
reads them through snake_case attributes.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class _PayloadModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class IdentifierData(_PayloadModel):
    type: str
    id: str


class LocationData(_PayloadModel):
    province: str
    canton: str
    district: str
    neighborhood: str
    details: str


class PhoneData(_PayloadModel):
    country_code: Optional[str] = Field(None, alias="countryCode")
    number: Optional[str] = None


class PartyData(_PayloadModel):
    """Emitter or receiver block"""
    full_name: str = Field(..., alias="fullName")
    identifier: IdentifierData
    activity_code: str = Field(..., alias="activityCode")
    location: LocationData
    commercial_name: Optional[str] = Field(None, alias="commercialName")
    email: Optional[str] = None
    phone: Optional[PhoneData] = None


class TaxData(_PayloadModel):
    code: str
    rate_code: str = Field(..., alias="rateCode")
    rate: Decimal


class OrderLine(_PayloadModel):
    detail: str
    unitary_price: Decimal = Field(..., alias="unitaryPrice")
    quantity: Optional[Decimal] = None
    code: Optional[str] = None
    measure_unit: Optional[str] = Field(None, alias="measureUnit")
    tax: Optional[TaxData] = None


class ReferenceInfo(_PayloadModel):
    """Original document referenced by a credit or debit note"""
    document_type: str = Field(..., alias="documentType")
    number: str
    issue_date: str = Field(..., alias="issueDate")
    code: str
    reason: str


class ValidatedDocument(_PayloadModel):
    """Canonical document handed to the key generator and XML emitter"""
    document_name: str = Field(..., alias="documentName")
    provider_id: str = Field(..., alias="providerId")
    country_code: str = Field(..., alias="countryCode")
    security_code: str = Field(..., alias="securityCode")
    activity_code: str = Field(..., alias="activityCode")
    consecutive_identifier: str = Field(..., alias="consecutiveIdentifier")
    ce_situation: str = Field(..., alias="ceSituation")
    branch: str
    terminal: str
    condition_sale: str = Field(..., alias="conditionSale")
    payment_method: str = Field(..., alias="paymentMethod")
    emitter: PartyData
    receiver: Optional[PartyData] = None
    order_lines: List[OrderLine] = Field(..., alias="orderLines")
    currency_code: Optional[str] = Field(None, alias="currencyCode")
    exchange_rate: Optional[str] = Field(None, alias="exchangeRate")
    reference_info: Optional[ReferenceInfo] = Field(None, alias="referenceInfo")
    document_key: Optional[str] = Field(None, alias="documentKey")


class EmissionResponse(BaseModel):
    success: bool = True
    document_key: str = Field(..., serialization_alias="documentKey")
    consecutive_number: str = Field(..., serialization_alias="consecutiveNumber")
    status: str
    xml: str
    signed_xml: Optional[str] = Field(None, serialization_alias="signedXml")


class ConfirmationRequest(BaseModel):
    url: str = Field(..., min_length=1)


class DocumentEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    event_type: str
    attempt: Optional[int] = None
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None
    created_at: datetime


class DocumentRecordResponse(BaseModel):
    document_key: str
    document_type: str
    document_name: str
    consecutive_number: str
    issue_date: datetime
    status: str
    attempt: int
    submitted_at: Optional[datetime] = None
    last_polled_at: Optional[datetime] = None
    remote_status: Optional[str] = None
    events: List[DocumentEventResponse] = []


class CertificateUpload(BaseModel):
    """PKCS#12 container as base64 plus its password"""
    p12: str = Field(..., min_length=1, description="Base64 encoded .p12 file")
    password: str
    name: Optional[str] = Field(None, max_length=100)


class CertificateResponse(BaseModel):
    """Certificate metadata; key material is never returned"""
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: Optional[str] = None
    subject: str
    issuer: str
    serial_number: str
    valid_from: datetime
    valid_to: datetime
    fingerprint: str
    hacienda_compatible: bool
    created_at: datetime
