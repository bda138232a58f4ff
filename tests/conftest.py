"""
Shared fixtures: in-memory database, fake Hacienda gateway, test certificates
"""
import copy
from datetime import datetime, timedelta, timezone

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app.core.auth import get_hacienda_client
from app.core.config import settings
from app.core.database import Base, get_db
from app.main import app as fastapi_app

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

ACCOUNT_HEADERS = {"X-Account-Id": "account-1"}
CALLBACK_TOKEN = "callback-secret"
CALLBACK_HEADERS = {"X-Callback-Token": CALLBACK_TOKEN}

VALID_DOCUMENT = {
    "documentName": "FacturaElectronica",
    "providerId": "P1",
    "countryCode": "506",
    "securityCode": "12345678",
    "activityCode": "930903",
    "consecutiveIdentifier": "1",
    "ceSituation": "1",
    "branch": "1",
    "terminal": "1",
    "conditionSale": "01",
    "paymentMethod": "01",
    "emitter": {
        "fullName": "Empresa Emisora S.A.",
        "identifier": {"type": "02", "id": "3101123456"},
        "activityCode": "930903",
        "location": {
            "province": "1",
            "canton": "1",
            "district": "1",
            "neighborhood": "01",
            "details": "San José centro"
        }
    },
    "receiver": {
        "fullName": "Cliente Receptor",
        "identifier": {"type": "01", "id": "112340567"},
        "activityCode": "930903",
        "location": {
            "province": "1",
            "canton": "02",
            "district": "03",
            "neighborhood": "01",
            "details": "Escazú"
        }
    },
    "orderLines": [
        {
            "detail": "Producto X",
            "unitaryPrice": 100,
            "quantity": 1,
            "tax": {"code": "01", "rateCode": "08", "rate": 13}
        }
    ]
}


def make_document(**overrides):
    """Fresh copy of the valid document with top-level overrides"""
    document = copy.deepcopy(VALID_DOCUMENT)
    document.update(overrides)
    return document


class FakeGateway:
    """
    Stands in for HaciendaClient. Responses are configurable per test and
    every call is recorded.
    """

    def __init__(self):
        self.calls = []
        self.submit_response = {"status_code": 202, "location": None, "body": None}
        self.status_response = {"ind-estado": "procesando"}
        self.confirmation_response = {"ind-estado": "aceptado"}
        self.taxpayer_response = {"nombre": "EMPRESA EMISORA SOCIEDAD ANONIMA", "tipoIdentificacion": "02"}
        self.error = None

    def _record(self, name, **kwargs):
        self.calls.append((name, kwargs))
        if self.error is not None:
            raise self.error

    async def submit_document(self, document_key, signed_xml, issue_date, emitter, receiver=None):
        self._record("submit_document", document_key=document_key, signed_xml=signed_xml,
                     emitter=emitter, receiver=receiver)
        return self.submit_response

    async def get_status(self, document_key):
        self._record("get_status", document_key=document_key)
        return dict(self.status_response, clave=document_key)

    async def send_confirmation(self, url, token):
        self._record("send_confirmation", url=url, token=token)
        return self.confirmation_response

    async def lookup_taxpayer(self, identification):
        self._record("lookup_taxpayer", identification=identification)
        return self.taxpayer_response


@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def client(db_session, gateway, monkeypatch):
    def override_get_db():
        yield db_session

    monkeypatch.setattr(settings, "HACIENDA_CALLBACK_TOKEN", CALLBACK_TOKEN)
    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[get_hacienda_client] = lambda: gateway
    try:
        yield TestClient(fastapi_app)
    finally:
        fastapi_app.dependency_overrides.clear()


def build_p12(password=b"secret", key_size=2048, days_valid=365, not_before_offset=-1):
    """Self-signed certificate packed as PKCS#12"""
    key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    name = x509.Name([
        x509.NameAttribute(NameOID.COUNTRY_NAME, "CR"),
        x509.NameAttribute(NameOID.COMMON_NAME, "EMPRESA EMISORA SA"),
        x509.NameAttribute(NameOID.SERIAL_NUMBER, "CPJ-3-101-123456"),
    ])
    now = datetime.now(timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now + timedelta(days=not_before_offset))
        .not_valid_after(now + timedelta(days=days_valid))
        .add_extension(
            x509.KeyUsage(
                digital_signature=True, content_commitment=True, key_encipherment=False,
                data_encipherment=False, key_agreement=False, key_cert_sign=False,
                crl_sign=False, encipher_only=False, decipher_only=False
            ),
            critical=True
        )
        .sign(key, hashes.SHA256())
    )
    encryption = (
        serialization.BestAvailableEncryption(password) if password
        else serialization.NoEncryption()
    )
    return pkcs12.serialize_key_and_certificates(b"test", key, certificate, None, encryption)


@pytest.fixture(scope="session")
def p12_data():
    return build_p12()
