"""
Signing capabilities for electronic documents.

The capability is chosen from SIGNING_MODE:
    none       no signature, unsigned XML only
    simulated  deterministic placeholder signature for development and tests
    p12        XAdES-EPES signature with a stored PKCS#12 certificate
"""
import logging
from xml.etree.ElementTree import Element, SubElement, fromstring, tostring

from sqlalchemy.orm import Session

from app.core.config import Settings
from app.schemas.enums import SigningMode
from app.services.certificate_service import CertificateService
from app.utils.error_responses import SignatureError
from app.utils.xml_signature import (
    ENVELOPED_ALGORITHM,
    SHA256_ALGORITHM,
    XMLDSIG_NS,
    document_digest,
    insert_before_root_close,
    sign_xml_with_p12,
)

logger = logging.getLogger(__name__)

SIMULATED_SIGNATURE_METHOD = "urn:simulated:sha256"


def _ds(tag: str) -> str:
    return f"{{{XMLDSIG_NS}}}{tag}"


class SimulatedSigner:
    """
    Placeholder signer: embeds a ds:Signature whose value is the document
    digest. Same input always yields the same output.
    """
    mode = SigningMode.SIMULATED

    def sign(self, xml_content: str) -> str:
        try:
            fromstring(xml_content)
        except SyntaxError as e:
            raise SignatureError(f"Document is not well-formed XML: {e}") from e

        digest = document_digest(xml_content)

        signature = Element(_ds("Signature"))
        signature.set("Id", "Signature-simulated")
        signed_info = SubElement(signature, _ds("SignedInfo"))
        SubElement(signed_info, _ds("SignatureMethod")).set("Algorithm", SIMULATED_SIGNATURE_METHOD)
        reference = SubElement(signed_info, _ds("Reference"))
        reference.set("URI", "")
        transforms = SubElement(reference, _ds("Transforms"))
        SubElement(transforms, _ds("Transform")).set("Algorithm", ENVELOPED_ALGORITHM)
        SubElement(reference, _ds("DigestMethod")).set("Algorithm", SHA256_ALGORITHM)
        SubElement(reference, _ds("DigestValue")).text = digest
        SubElement(signature, _ds("SignatureValue")).text = digest

        return insert_before_root_close(xml_content, tostring(signature, encoding="unicode"))


class P12Signer:
    """Signs with a stored certificate; key material lives only for the call."""
    mode = SigningMode.P12

    def __init__(self, certificate_service: CertificateService, certificate_id: int, policy_url: str):
        self.certificate_service = certificate_service
        self.certificate_id = certificate_id
        self.policy_url = policy_url

    def sign(self, xml_content: str) -> str:
        with self.certificate_service.signing_material(self.certificate_id) as (p12_data, password):
            signed_xml, cert_info = sign_xml_with_p12(xml_content, p12_data, password, self.policy_url)

        logger.info(f"Document signed with certificate {self.certificate_id} ({cert_info['subject']})")
        return signed_xml


def build_signer(settings: Settings, db: Session):
    """
    Build the signing capability configured in settings.

    Returns:
        A signer with ``sign(xml) -> signed_xml``, or None for mode ``none``

    Raises:
        SignatureError: If the mode is unknown or p12 has no certificate configured
    """
    try:
        mode = SigningMode(settings.SIGNING_MODE.lower())
    except ValueError as e:
        raise SignatureError(f"Unknown signing mode '{settings.SIGNING_MODE}'") from e

    if mode == SigningMode.NONE:
        return None
    if mode == SigningMode.SIMULATED:
        return SimulatedSigner()

    if settings.SIGNING_CERTIFICATE_ID is None:
        raise SignatureError("No signing certificate configured")
    return P12Signer(CertificateService(db), settings.SIGNING_CERTIFICATE_ID, settings.SIGNATURE_POLICY_URL)
