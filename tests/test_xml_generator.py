"""
Tests for XML generation
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from xml.etree.ElementTree import fromstring

from conftest import make_document
from app.schemas.enums import DocumentType
from app.utils.document_validator import validate_document
from app.utils.key_generator import generate_consecutive_number, generate_key
from app.utils.xml_generator import XMLGenerator, format_decimal, generate_document_xml

NS = {"fe": XMLGenerator.NAMESPACES[DocumentType.FACTURA_ELECTRONICA]}
ISSUE_DATE = datetime(2025, 1, 15, 9, 0, tzinfo=timezone(timedelta(hours=-6)))


def render(payload, document_type=DocumentType.FACTURA_ELECTRONICA):
    document = validate_document(payload)
    key = generate_key("1", "1", document_type.value, "1", ISSUE_DATE,
                       issuer_id=document.emitter.identifier.id, security_code=document.security_code)
    consecutive = generate_consecutive_number("1", "1", document_type.value, "1")
    return key, generate_document_xml(document, document_type, key, consecutive, ISSUE_DATE)


def test_format_decimal_keeps_precision():
    assert format_decimal(Decimal("1234.56789")) == "1234.56789"
    assert format_decimal(Decimal("1E+2")) == "100"
    assert format_decimal(None) == "0"
    assert format_decimal(13) == "13"


def test_invoice_xml_structure():
    key, xml = render(make_document())
    root = fromstring(xml)

    assert xml.startswith('<?xml version="1.0" encoding="UTF-8"?>')
    assert root.tag == f"{{{NS['fe']}}}FacturaElectronica"
    assert root.findtext("fe:Clave", namespaces=NS) == key
    assert root.findtext("fe:NumeroConsecutivo", namespaces=NS) == "00100001010000000001"
    assert root.findtext("fe:FechaEmision", namespaces=NS) == "2025-01-15T09:00:00-06:00"
    assert root.findtext("fe:Emisor/fe:Nombre", namespaces=NS) == "Empresa Emisora S.A."
    assert root.findtext("fe:Receptor/fe:Nombre", namespaces=NS) == "Cliente Receptor"
    assert root.findtext("fe:Emisor/fe:Ubicacion/fe:Canton", namespaces=NS) == "01"
    assert root.findtext("fe:CodigoActividadReceptor", namespaces=NS) == "930903"


def test_line_and_totals():
    _, xml = render(make_document())
    root = fromstring(xml)

    line = root.find("fe:DetalleServicio/fe:LineaDetalle", namespaces=NS)
    assert line.findtext("fe:NumeroLinea", namespaces=NS) == "1"
    assert line.findtext("fe:Detalle", namespaces=NS) == "Producto X"
    assert line.findtext("fe:UnidadMedida", namespaces=NS) == "Unid"
    assert Decimal(line.findtext("fe:Impuesto/fe:Monto", namespaces=NS)) == Decimal("13")
    assert Decimal(line.findtext("fe:MontoTotalLinea", namespaces=NS)) == Decimal("113")

    summary = root.find("fe:ResumenFactura", namespaces=NS)
    assert summary.findtext("fe:CodigoTipoMoneda/fe:CodigoMoneda", namespaces=NS) == "CRC"
    assert Decimal(summary.findtext("fe:TotalGravado", namespaces=NS)) == Decimal("100")
    assert Decimal(summary.findtext("fe:TotalExento", namespaces=NS)) == Decimal("0")
    assert Decimal(summary.findtext("fe:TotalImpuesto", namespaces=NS)) == Decimal("13")
    assert Decimal(summary.findtext("fe:TotalComprobante", namespaces=NS)) == Decimal("113")


def test_prices_are_not_rounded():
    payload = make_document()
    payload["orderLines"] = [
        {"detail": "Servicio", "unitaryPrice": Decimal("10.12345"), "quantity": Decimal("3")},
    ]
    _, xml = render(payload)
    root = fromstring(xml)

    line = root.find("fe:DetalleServicio/fe:LineaDetalle", namespaces=NS)
    assert line.findtext("fe:PrecioUnitario", namespaces=NS) == "10.12345"
    assert line.findtext("fe:MontoTotal", namespaces=NS) == "30.37035"
    assert root.findtext("fe:ResumenFactura/fe:TotalExento", namespaces=NS) == "30.37035"
    assert root.find("fe:DetalleServicio/fe:LineaDetalle/fe:Impuesto", namespaces=NS) is None


def test_ticket_without_receiver():
    payload = make_document(documentName="TiqueteElectronico")
    del payload["receiver"]
    _, xml = render(payload, DocumentType.TIQUETE_ELECTRONICO)
    root = fromstring(xml)

    ns = {"te": XMLGenerator.NAMESPACES[DocumentType.TIQUETE_ELECTRONICO]}
    assert root.find("te:Receptor", namespaces=ns) is None
    assert root.find("te:CodigoActividadReceptor", namespaces=ns) is None


def test_reference_information():
    reference = {
        "documentType": "01",
        "number": "5" * 50,
        "issueDate": "2025-01-01T08:00:00-06:00",
        "code": "01",
        "reason": "Anula documento"
    }
    payload = make_document(documentName="NotaCreditoElectronica", referenceInfo=reference)
    _, xml = render(payload, DocumentType.NOTA_CREDITO_ELECTRONICA)

    ns = {"nc": XMLGenerator.NAMESPACES[DocumentType.NOTA_CREDITO_ELECTRONICA]}
    root = fromstring(xml)
    assert root.findtext("nc:InformacionReferencia/nc:Razon", namespaces=ns) == "Anula documento"
    assert root.findtext("nc:InformacionReferencia/nc:Numero", namespaces=ns) == "5" * 50


def test_output_is_deterministic():
    assert render(make_document()) == render(make_document())
