"""
XML digital signature implementation with XAdES-EPES standard.
Handles P12 certificate loading, XML signing, and signature verification.

The signature is enveloped: it is serialized on its own and inserted before
the closing tag of the document root, so removing it yields the exact
document that was digested.
"""
import base64
import hashlib
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Tuple
from xml.etree.ElementTree import (
    Element, SubElement, canonicalize, fromstring, register_namespace, tostring
)

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.serialization import pkcs12

from app.utils.error_responses import CertificateError, SignatureError

XMLDSIG_NS = "http://www.w3.org/2000/09/xmldsig#"
XADES_NS = "http://uri.etsi.org/01903/v1.3.2#"

C14N_ALGORITHM = "http://www.w3.org/TR/2001/REC-xml-c14n-20010315"
SHA256_ALGORITHM = "http://www.w3.org/2001/04/xmlenc#sha256"
RSA_SHA256_ALGORITHM = "http://www.w3.org/2001/04/xmldsig-more#rsa-sha256"
ENVELOPED_ALGORITHM = "http://www.w3.org/2000/09/xmldsig#enveloped-signature"

MIN_RSA_KEY_SIZE = 2048

register_namespace("ds", XMLDSIG_NS)
register_namespace("xades", XADES_NS)


def _ds(tag: str) -> str:
    return f"{{{XMLDSIG_NS}}}{tag}"


def _xades(tag: str) -> str:
    return f"{{{XADES_NS}}}{tag}"


def insert_before_root_close(xml_content: str, fragment: str) -> str:
    """Place an XML fragment as the last child of the document root."""
    stripped = xml_content.rstrip()
    close_index = stripped.rfind("</")
    if close_index == -1:
        raise SignatureError("Document has no closing root tag")
    return stripped[:close_index] + fragment + stripped[close_index:]


def remove_signature(signed_xml: str) -> str:
    """Undo insert_before_root_close for the ds:Signature fragment."""
    start = signed_xml.find("<ds:Signature")
    end_tag = "</ds:Signature>"
    end = signed_xml.find(end_tag, start)
    if start == -1 or end == -1:
        raise SignatureError("No signature found in XML")
    return signed_xml[:start] + signed_xml[end + len(end_tag):]


def _digest(data: str) -> str:
    return base64.b64encode(hashlib.sha256(data.encode("utf-8")).digest()).decode("utf-8")


def document_digest(xml_content: str) -> str:
    """SHA-256 digest of the canonical form of a document, base64 encoded."""
    return _digest(canonicalize(xml_data=xml_content))


class P12CertificateManager:
    """
    Manager for P12 certificate operations.
    Handles loading, parsing, and validation of P12 certificates.
    """

    def __init__(self, p12_data: bytes, password: str):
        """
        Initialize certificate manager with P12 data.

        Raises:
            CertificateError: If the container cannot be opened
        """
        self._private_key = None
        self._certificate = None
        self._load_certificate(p12_data, password)

    def _load_certificate(self, p12_data: bytes, password: str) -> None:
        try:
            private_key, certificate, _ = pkcs12.load_key_and_certificates(
                p12_data,
                password.encode("utf-8") if password else None
            )
        except (ValueError, TypeError) as e:
            raise CertificateError(f"Failed to load P12 certificate: {e}") from e

        if not private_key or not certificate:
            raise CertificateError("Invalid P12 certificate: missing private key or certificate")

        self._private_key = private_key
        self._certificate = certificate

    @property
    def private_key(self):
        return self._private_key

    @property
    def certificate(self) -> x509.Certificate:
        return self._certificate

    def get_certificate_info(self) -> Dict[str, Any]:
        """
        Get certificate information.

        Returns:
            Dictionary with certificate details
        """
        cert = self._certificate
        key_size = getattr(self._private_key, "key_size", None)

        return {
            "subject": cert.subject.rfc4514_string(),
            "issuer": cert.issuer.rfc4514_string(),
            "serial_number": str(cert.serial_number),
            "not_valid_before": cert.not_valid_before_utc,
            "not_valid_after": cert.not_valid_after_utc,
            "is_expired": datetime.now(timezone.utc) > cert.not_valid_after_utc,
            "fingerprint_sha256": cert.fingerprint(hashes.SHA256()).hex(),
            "public_key_size": key_size,
            "hacienda_compatible": self.is_hacienda_compatible(),
        }

    def _allows_digital_signature(self) -> bool:
        try:
            key_usage = self._certificate.extensions.get_extension_for_oid(
                x509.oid.ExtensionOID.KEY_USAGE
            ).value
        except x509.ExtensionNotFound:
            # No key usage extension means no restriction
            return True
        return key_usage.digital_signature

    def is_hacienda_compatible(self) -> bool:
        """RSA key of at least 2048 bits allowed to sign."""
        return (
            isinstance(self._private_key, rsa.RSAPrivateKey)
            and self._private_key.key_size >= MIN_RSA_KEY_SIZE
            and self._allows_digital_signature()
        )

    def validate_certificate(self) -> Tuple[bool, str]:
        """
        Validate certificate (basic validation).

        Returns:
            Tuple of (is_valid, error_message)
        """
        cert = self._certificate
        now = datetime.now(timezone.utc)

        if now < cert.not_valid_before_utc:
            return False, "Certificate is not yet valid"

        if now > cert.not_valid_after_utc:
            return False, "Certificate has expired"

        if not self._allows_digital_signature():
            return False, "Certificate does not allow digital signatures"

        # Costa Rican electronic documents require RSA
        if not isinstance(self._private_key, rsa.RSAPrivateKey):
            return False, "Certificate must use RSA key"

        if self._private_key.key_size < MIN_RSA_KEY_SIZE:
            return False, f"RSA key size must be at least {MIN_RSA_KEY_SIZE} bits, got {self._private_key.key_size}"

        return True, ""


class XAdESSignature:
    """
    XAdES-EPES (XML Advanced Electronic Signatures - Explicit Policy-based Electronic Signatures) implementation.
    Implements the Costa Rican Ministry of Finance requirements for XML digital signatures.
    """

    def __init__(self, certificate_manager: P12CertificateManager, policy_url: str):
        self.cert_manager = certificate_manager
        self.policy_url = policy_url

    def sign_xml(self, xml_content: str) -> str:
        """
        Sign XML content with an enveloped XAdES-EPES signature.

        Raises:
            SignatureError: If signing fails
        """
        try:
            fromstring(xml_content)
        except SyntaxError as e:
            raise SignatureError(f"Document is not well-formed XML: {e}") from e

        signature_elem = self._create_signature_element(document_digest(xml_content))
        return insert_before_root_close(xml_content, tostring(signature_elem, encoding="unicode"))

    def _create_signature_element(self, document_digest_value: str) -> Element:
        """Create XAdES-EPES signature element."""
        signature_id = f"Signature-{uuid.uuid4()}"
        signed_properties_id = f"SignedProperties-{signature_id}"

        signature = Element(_ds("Signature"))
        signature.set("Id", signature_id)

        signed_info = SubElement(signature, _ds("SignedInfo"))
        SubElement(signed_info, _ds("CanonicalizationMethod")).set("Algorithm", C14N_ALGORITHM)
        SubElement(signed_info, _ds("SignatureMethod")).set("Algorithm", RSA_SHA256_ALGORITHM)

        # Reference to the enveloping document
        reference = SubElement(signed_info, _ds("Reference"))
        reference.set("Id", f"Reference-{uuid.uuid4()}")
        reference.set("URI", "")
        transforms = SubElement(reference, _ds("Transforms"))
        SubElement(transforms, _ds("Transform")).set("Algorithm", ENVELOPED_ALGORITHM)
        SubElement(transforms, _ds("Transform")).set("Algorithm", C14N_ALGORITHM)
        SubElement(reference, _ds("DigestMethod")).set("Algorithm", SHA256_ALGORITHM)
        SubElement(reference, _ds("DigestValue")).text = document_digest_value

        # Qualifying properties are built first so their digest can be referenced
        qualifying_properties = self._create_qualifying_properties(signature_id, signed_properties_id)
        signed_properties = qualifying_properties.find(_xades("SignedProperties"))

        properties_reference = SubElement(signed_info, _ds("Reference"))
        properties_reference.set("Type", "http://uri.etsi.org/01903#SignedProperties")
        properties_reference.set("URI", f"#{signed_properties_id}")
        SubElement(properties_reference, _ds("DigestMethod")).set("Algorithm", SHA256_ALGORITHM)
        SubElement(properties_reference, _ds("DigestValue")).text = _digest(
            canonicalize(xml_data=tostring(signed_properties, encoding="unicode"))
        )

        signature_value = SubElement(signature, _ds("SignatureValue"))
        signature_value.set("Id", f"SignatureValue-{signature_id}")
        signature_value.text = self._calculate_signature(signed_info)

        key_info = SubElement(signature, _ds("KeyInfo"))
        key_info.set("Id", f"KeyInfo-{signature_id}")
        x509_data = SubElement(key_info, _ds("X509Data"))
        cert_der = self.cert_manager.certificate.public_bytes(serialization.Encoding.DER)
        SubElement(x509_data, _ds("X509Certificate")).text = base64.b64encode(cert_der).decode("utf-8")

        signature_object = SubElement(signature, _ds("Object"))
        signature_object.append(qualifying_properties)

        return signature

    def _create_qualifying_properties(self, signature_id: str, signed_properties_id: str) -> Element:
        """Create XAdES QualifyingProperties element."""
        qualifying_properties = Element(_xades("QualifyingProperties"))
        qualifying_properties.set("Target", f"#{signature_id}")

        signed_properties = SubElement(qualifying_properties, _xades("SignedProperties"))
        signed_properties.set("Id", signed_properties_id)

        signed_signature_properties = SubElement(signed_properties, _xades("SignedSignatureProperties"))
        SubElement(signed_signature_properties, _xades("SigningTime")).text = (
            datetime.now(timezone.utc).replace(microsecond=0).isoformat()
        )

        certificate = self.cert_manager.certificate
        cert_der = certificate.public_bytes(serialization.Encoding.DER)

        signing_certificate = SubElement(signed_signature_properties, _xades("SigningCertificate"))
        cert_element = SubElement(signing_certificate, _xades("Cert"))
        cert_digest = SubElement(cert_element, _xades("CertDigest"))
        SubElement(cert_digest, _ds("DigestMethod")).set("Algorithm", SHA256_ALGORITHM)
        SubElement(cert_digest, _ds("DigestValue")).text = base64.b64encode(
            hashlib.sha256(cert_der).digest()
        ).decode("utf-8")

        issuer_serial = SubElement(cert_element, _xades("IssuerSerial"))
        SubElement(issuer_serial, _ds("X509IssuerName")).text = certificate.issuer.rfc4514_string()
        SubElement(issuer_serial, _ds("X509SerialNumber")).text = str(certificate.serial_number)

        # Explicit policy makes this XAdES-EPES
        policy_identifier = SubElement(signed_signature_properties, _xades("SignaturePolicyIdentifier"))
        policy_id = SubElement(policy_identifier, _xades("SignaturePolicyId"))
        sig_policy_id = SubElement(policy_id, _xades("SigPolicyId"))
        SubElement(sig_policy_id, _xades("Identifier")).text = self.policy_url
        policy_hash = SubElement(policy_id, _xades("SigPolicyHash"))
        SubElement(policy_hash, _ds("DigestMethod")).set("Algorithm", SHA256_ALGORITHM)
        SubElement(policy_hash, _ds("DigestValue")).text = _digest(self.policy_url)

        signed_data_properties = SubElement(signed_properties, _xades("SignedDataObjectProperties"))
        data_format = SubElement(signed_data_properties, _xades("DataObjectFormat"))
        data_format.set("ObjectReference", "")
        SubElement(data_format, _xades("MimeType")).text = "text/xml"
        SubElement(data_format, _xades("Encoding")).text = "UTF-8"

        return qualifying_properties

    def _calculate_signature(self, signed_info: Element) -> str:
        """Calculate RSA-SHA256 signature of the canonical SignedInfo."""
        signed_info_bytes = canonicalize(xml_data=tostring(signed_info, encoding="unicode")).encode("utf-8")

        signature = self.cert_manager.private_key.sign(
            signed_info_bytes,
            padding.PKCS1v15(),
            hashes.SHA256()
        )
        return base64.b64encode(signature).decode("utf-8")


def verify_signature(signed_xml: str) -> Tuple[bool, str]:
    """
    Verify an enveloped signature produced by XAdESSignature.

    Checks the document digest and the RSA signature over SignedInfo using
    the embedded certificate. Does not validate the certificate chain.

    Returns:
        Tuple of (is_valid, error_message)
    """
    try:
        root = fromstring(signed_xml)
    except SyntaxError as e:
        return False, f"Signed XML is not well-formed: {e}"

    signature_elem = root.find(_ds("Signature"))
    if signature_elem is None:
        return False, "No signature found in XML"

    signed_info = signature_elem.find(_ds("SignedInfo"))
    signature_value = signature_elem.find(_ds("SignatureValue"))
    x509_cert_elem = signature_elem.find(f"{_ds('KeyInfo')}/{_ds('X509Data')}/{_ds('X509Certificate')}")
    if signed_info is None or signature_value is None or x509_cert_elem is None:
        return False, "Invalid signature structure"

    document_reference = signed_info.find(_ds("Reference"))
    expected_digest = document_reference.findtext(_ds("DigestValue"))
    if document_digest(remove_signature(signed_xml)) != expected_digest:
        return False, "Document digest mismatch"

    certificate = x509.load_der_x509_certificate(base64.b64decode(x509_cert_elem.text))
    signed_info_bytes = canonicalize(xml_data=tostring(signed_info, encoding="unicode")).encode("utf-8")
    try:
        certificate.public_key().verify(
            base64.b64decode(signature_value.text),
            signed_info_bytes,
            padding.PKCS1v15(),
            hashes.SHA256()
        )
    except InvalidSignature:
        return False, "Signature value does not match"

    return True, ""


def sign_xml_with_p12(xml_content: str, p12_data: bytes, password: str, policy_url: str) -> Tuple[str, Dict[str, Any]]:
    """
    Sign XML content with P12 certificate.

    Returns:
        Tuple of (signed_xml, certificate_info)

    Raises:
        CertificateError: If the certificate cannot be loaded
        SignatureError: If the certificate is not usable or signing fails
    """
    cert_manager = P12CertificateManager(p12_data, password)

    is_valid, error_msg = cert_manager.validate_certificate()
    if not is_valid:
        raise SignatureError(f"Certificate validation failed: {error_msg}")

    signed_xml = XAdESSignature(cert_manager, policy_url).sign_xml(xml_content)
    return signed_xml, cert_manager.get_certificate_info()
