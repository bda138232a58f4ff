"""
XML generator for Costa Rica electronic documents (schema v4.4).

Amounts are rendered from Decimal exactly as received or computed; nothing
is rounded on the way out.
"""
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional
from xml.etree.ElementTree import Element, SubElement, tostring
from xml.dom import minidom

from app.schemas.documents import LocationData, OrderLine, PartyData, ReferenceInfo, ValidatedDocument
from app.schemas.enums import DocumentType

SCHEMA_BASE = "https://cdn.comprobanteselectronicos.go.cr/xml-schemas/v4.4"

XMLDSIG_NS = "http://www.w3.org/2000/09/xmldsig#"

DEFAULT_CURRENCY = "CRC"
DEFAULT_EXCHANGE_RATE = "1"


def format_decimal(value) -> str:
    """Render a number in plain notation without changing its precision"""
    if value is None:
        return "0"
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return format(value, "f")


class XMLGenerator:
    """
    Generates the XML wire format for validated documents.
    """

    # Document type to namespace mapping
    NAMESPACES = {
        DocumentType.FACTURA_ELECTRONICA: f"{SCHEMA_BASE}/facturaElectronica",
        DocumentType.NOTA_DEBITO_ELECTRONICA: f"{SCHEMA_BASE}/notaDebitoElectronica",
        DocumentType.NOTA_CREDITO_ELECTRONICA: f"{SCHEMA_BASE}/notaCreditoElectronica",
        DocumentType.TIQUETE_ELECTRONICO: f"{SCHEMA_BASE}/tiqueteElectronico",
        DocumentType.FACTURA_COMPRA: f"{SCHEMA_BASE}/facturaElectronicaCompra",
        DocumentType.FACTURA_EXPORTACION: f"{SCHEMA_BASE}/facturaElectronicaExportacion",
        DocumentType.RECIBO_PAGO: f"{SCHEMA_BASE}/reciboElectronicoPago",
    }

    def generate_xml(
        self,
        document: ValidatedDocument,
        document_type: DocumentType,
        document_key: str,
        consecutive_number: str,
        issue_date: datetime
    ) -> str:
        """
        Generate the complete XML for a document.

        Output is deterministic for fixed inputs.
        """
        root = Element(document.document_name)
        root.set("xmlns", self.NAMESPACES[document_type])
        root.set("xmlns:ds", XMLDSIG_NS)
        root.set("xmlns:xsi", "http://www.w3.org/2001/XMLSchema-instance")

        self._text(root, "Clave", document_key)
        self._text(root, "ProveedorSistemas", document.provider_id)
        self._text(root, "CodigoActividadEmisor", document.emitter.activity_code or document.activity_code)
        if document.receiver:
            self._text(root, "CodigoActividadReceptor", document.receiver.activity_code)
        self._text(root, "NumeroConsecutivo", consecutive_number)
        self._text(root, "FechaEmision", issue_date.isoformat())

        self._add_party(root, "Emisor", document.emitter)
        if document.receiver:
            self._add_party(root, "Receptor", document.receiver)

        self._text(root, "CondicionVenta", document.condition_sale)

        line_totals = self._add_line_items(root, document.order_lines)
        self._add_summary(root, document, line_totals)

        if document.reference_info:
            self._add_reference(root, document.reference_info)

        return self._format_xml(root)

    def _text(self, parent: Element, tag: str, value) -> Element:
        elem = SubElement(parent, tag)
        elem.text = str(value)
        return elem

    def _add_party(self, root: Element, tag: str, party: PartyData) -> None:
        """Add emitter or receiver block."""
        party_elem = SubElement(root, tag)
        self._text(party_elem, "Nombre", party.full_name)

        identificacion_elem = SubElement(party_elem, "Identificacion")
        self._text(identificacion_elem, "Tipo", party.identifier.type)
        self._text(identificacion_elem, "Numero", party.identifier.id)

        if party.commercial_name:
            self._text(party_elem, "NombreComercial", party.commercial_name)

        self._add_location(SubElement(party_elem, "Ubicacion"), party.location)

        if party.phone and party.phone.number:
            telefono_elem = SubElement(party_elem, "Telefono")
            self._text(telefono_elem, "CodigoPais", party.phone.country_code or "506")
            self._text(telefono_elem, "NumTelefono", party.phone.number)

        if party.email:
            self._text(party_elem, "CorreoElectronico", party.email)

    def _add_location(self, parent: Element, location: LocationData) -> None:
        self._text(parent, "Provincia", location.province)
        self._text(parent, "Canton", location.canton.zfill(2))
        self._text(parent, "Distrito", location.district.zfill(2))
        self._text(parent, "Barrio", location.neighborhood)
        self._text(parent, "OtrasSenas", location.details)

    def _add_line_items(self, root: Element, lines: List[OrderLine]) -> List[Dict[str, Decimal]]:
        """Add DetalleServicio and return per-line amounts for the summary."""
        detalle_servicio_elem = SubElement(root, "DetalleServicio")
        line_totals = []

        for number, line in enumerate(lines, start=1):
            quantity = line.quantity if line.quantity is not None else Decimal("1")
            subtotal = line.unitary_price * quantity
            tax_amount = (subtotal * line.tax.rate).scaleb(-2) if line.tax else Decimal("0")

            linea_elem = SubElement(detalle_servicio_elem, "LineaDetalle")
            self._text(linea_elem, "NumeroLinea", number)
            if line.code:
                self._text(linea_elem, "CodigoCABYS", line.code)
            self._text(linea_elem, "Cantidad", format_decimal(quantity))
            self._text(linea_elem, "UnidadMedida", line.measure_unit or "Unid")
            self._text(linea_elem, "Detalle", line.detail)
            self._text(linea_elem, "PrecioUnitario", format_decimal(line.unitary_price))
            self._text(linea_elem, "MontoTotal", format_decimal(subtotal))
            self._text(linea_elem, "SubTotal", format_decimal(subtotal))

            if line.tax:
                self._text(linea_elem, "BaseImponible", format_decimal(subtotal))
                impuesto_elem = SubElement(linea_elem, "Impuesto")
                self._text(impuesto_elem, "Codigo", line.tax.code)
                self._text(impuesto_elem, "CodigoTarifaIVA", line.tax.rate_code)
                self._text(impuesto_elem, "Tarifa", format_decimal(line.tax.rate))
                self._text(impuesto_elem, "Monto", format_decimal(tax_amount))
                self._text(linea_elem, "ImpuestoNeto", format_decimal(tax_amount))

            self._text(linea_elem, "MontoTotalLinea", format_decimal(subtotal + tax_amount))

            line_totals.append({
                "subtotal": subtotal,
                "tax": tax_amount,
                "taxed": line.tax is not None,
                "tax_code": line.tax.code if line.tax else None,
                "rate_code": line.tax.rate_code if line.tax else None,
            })

        return line_totals

    def _add_summary(
        self,
        root: Element,
        document: ValidatedDocument,
        line_totals: List[Dict[str, Decimal]]
    ) -> None:
        """Add ResumenFactura with totals."""
        resumen_elem = SubElement(root, "ResumenFactura")

        moneda_elem = SubElement(resumen_elem, "CodigoTipoMoneda")
        self._text(moneda_elem, "CodigoMoneda", document.currency_code or DEFAULT_CURRENCY)
        self._text(moneda_elem, "TipoCambio", document.exchange_rate or DEFAULT_EXCHANGE_RATE)

        total_gravado = sum((t["subtotal"] for t in line_totals if t["taxed"]), Decimal("0"))
        total_exento = sum((t["subtotal"] for t in line_totals if not t["taxed"]), Decimal("0"))
        total_venta = total_gravado + total_exento
        total_impuesto = sum((t["tax"] for t in line_totals), Decimal("0"))

        self._text(resumen_elem, "TotalGravado", format_decimal(total_gravado))
        self._text(resumen_elem, "TotalExento", format_decimal(total_exento))
        self._text(resumen_elem, "TotalVenta", format_decimal(total_venta))
        self._text(resumen_elem, "TotalDescuentos", "0")
        self._text(resumen_elem, "TotalVentaNeta", format_decimal(total_venta))

        # Tax breakdown per code and rate
        breakdown: Dict[tuple, Decimal] = {}
        for t in line_totals:
            if t["taxed"]:
                key = (t["tax_code"], t["rate_code"])
                breakdown[key] = breakdown.get(key, Decimal("0")) + t["tax"]
        for (code, rate_code), amount in breakdown.items():
            desglose_elem = SubElement(resumen_elem, "TotalDesgloseImpuesto")
            self._text(desglose_elem, "Codigo", code)
            self._text(desglose_elem, "CodigoTarifaIVA", rate_code)
            self._text(desglose_elem, "TotalMontoImpuesto", format_decimal(amount))

        self._text(resumen_elem, "TotalImpuesto", format_decimal(total_impuesto))

        total_comprobante = total_venta + total_impuesto
        medio_pago_elem = SubElement(resumen_elem, "MedioPago")
        self._text(medio_pago_elem, "TipoMedioPago", document.payment_method)
        self._text(medio_pago_elem, "TotalMedioPago", format_decimal(total_comprobante))

        self._text(resumen_elem, "TotalComprobante", format_decimal(total_comprobante))

    def _add_reference(self, root: Element, reference: ReferenceInfo) -> None:
        """Add InformacionReferencia for credit and debit notes."""
        referencia_elem = SubElement(root, "InformacionReferencia")
        self._text(referencia_elem, "TipoDocIR", reference.document_type)
        self._text(referencia_elem, "Numero", reference.number)
        self._text(referencia_elem, "FechaEmisionIR", reference.issue_date)
        self._text(referencia_elem, "Codigo", reference.code)
        self._text(referencia_elem, "Razon", reference.reason)

    def _format_xml(self, root: Element) -> str:
        """Format XML with proper indentation."""
        rough_string = tostring(root, encoding='unicode')

        reparsed = minidom.parseString(rough_string)
        formatted = reparsed.toprettyxml(indent="  ")

        # Remove empty lines and the declaration minidom adds
        lines = [line for line in formatted.split('\n') if line.strip()]
        if lines[0].startswith('<?xml'):
            lines = lines[1:]

        return '<?xml version="1.0" encoding="UTF-8"?>\n' + '\n'.join(lines)


def generate_document_xml(
    document: ValidatedDocument,
    document_type: DocumentType,
    document_key: str,
    consecutive_number: str,
    issue_date: datetime,
    generator: Optional[XMLGenerator] = None
) -> str:
    """Convenience function to generate XML for any document type."""
    generator = generator or XMLGenerator()
    return generator.generate_xml(document, document_type, document_key, consecutive_number, issue_date)
