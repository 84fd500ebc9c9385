from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, dataclass
from pathlib import Path

import requests

from emissor_ipm.config import (
    get_municipalities_path,
    get_output_dir,
    get_service_types_path,
    load_gateway_settings,
    load_tax_settings,
    load_yaml,
)
from emissor_ipm.models.invoice import Invoice
from emissor_ipm.models.party import Consumer, Issuer
from emissor_ipm.services.exceptions import GatewayRejectError, InvalidInvoiceData
from emissor_ipm.services.ipm_client import IpmClient, SubmissionResult, get_client
from emissor_ipm.services.municipality import MunicipalityResolver
from emissor_ipm.services.tax_codes import TaxCodeResolver
from emissor_ipm.services.xml_builder import NfseXmlBuilder
from emissor_ipm.utils.formatters import only_digits
from emissor_ipm.utils.reference_data import MunicipalityTable, ServiceTypeMappings
from emissor_ipm.utils.registry import mark_emitted, mark_failed
from emissor_ipm.utils.validators import is_valid_cnpj, is_valid_cpf_cnpj, validate_uf

logger = logging.getLogger(__name__)


@dataclass
class PreparedNfse:
    """Everything needed to preview and submit one NFS-e."""

    invoice: Invoice
    xml: bytes
    test_mode: bool


def _validate_parties(issuer: Issuer, consumer: Consumer) -> list[str]:
    problems = []
    if not is_valid_cnpj(issuer.cnpj):
        problems.append(f"CNPJ do emitente invalido: '{issuer.cnpj}'")
    doc = only_digits(consumer.cpf_cnpj)
    if doc and not is_valid_cpf_cnpj(doc):
        problems.append(f"CPF/CNPJ do tomador invalido: '{consumer.cpf_cnpj}'")
    for who, address in (("emitente", issuer.address), ("tomador", consumer.address)):
        try:
            validate_uf(address.uf)
        except ValueError as exc:
            problems.append(f"{who}: {exc}")
    return problems


def load_invoice(path: Path) -> Invoice:
    """Read an invoice document (YAML or JSON) and build an Invoice.

    Raises InvalidInvoiceData when the document is incomplete or invalid.
    """
    data = load_yaml(path)
    try:
        issuer = Issuer.from_dict(data["issuer"])
        consumer = Consumer.from_dict(data["consumer"])
    except (KeyError, TypeError, AttributeError) as exc:
        raise InvalidInvoiceData(f"{path}: emitente/tomador incompleto ({exc!r})") from exc

    problems = _validate_parties(issuer, consumer)
    if problems:
        raise InvalidInvoiceData("; ".join(problems), invoice_id=data.get("id"))

    try:
        return Invoice.create(
            issuer,
            consumer,
            data["service_description"],
            str(data["amount"]),
            iss_rate=str(data.get("iss_rate", "0")),
            service_type_key=data.get("service_type_key"),
            observation=data.get("observation") or "",
            client_id=data.get("client_id", ""),
            invoice_id=uuid.UUID(str(data["id"])) if data.get("id") else None,
        )
    except (KeyError, ValueError) as exc:
        raise InvalidInvoiceData(f"{path}: {exc}") from exc


def build_builder() -> NfseXmlBuilder:
    """Load tax configuration and reference data from the config directory."""
    tax = load_tax_settings()
    return NfseXmlBuilder(
        tax_config=tax.rates,
        tax_codes=TaxCodeResolver(ServiceTypeMappings.from_yaml(get_service_types_path())),
        municipalities=MunicipalityResolver(MunicipalityTable.from_csv(get_municipalities_path())),
        item_rate_source=tax.item_rate_source,
    )


def prepare(
    invoice: Invoice,
    test_mode: bool = True,
    builder: NfseXmlBuilder | None = None,
) -> PreparedNfse:
    """Build the XML. A malformed invoice is marked failed and the error re-raised."""
    builder = builder or build_builder()
    try:
        xml = builder.render_invoice_xml(invoice, test_mode)
    except InvalidInvoiceData as exc:
        mark_failed(str(invoice.id), str(exc))
        raise
    return PreparedNfse(invoice=invoice, xml=xml, test_mode=test_mode)


def submit(prepared: PreparedNfse, client: IpmClient | None = None) -> SubmissionResult:
    """Send the prepared XML to IPM and record the outcome in the registry.

    Raises GatewayRejectError when IPM does not accept the NFS-e.
    """
    client = client or get_client(load_gateway_settings())
    invoice_id = str(prepared.invoice.id)

    try:
        result = client.submit(prepared.xml, prepared.test_mode)
    except (requests.RequestException, RuntimeError) as exc:
        mark_failed(invoice_id, str(exc))
        raise

    if not result.success:
        reason = "; ".join(result.messages) or "NFS-e rejeitada sem mensagem"
        mark_failed(invoice_id, reason)
        raise GatewayRejectError(reason, response=asdict(result))

    mark_emitted(
        invoice_id,
        invoice_number=result.invoice_number,
        verification_code=result.verification_code,
        pdf_url=result.pdf_url,
        test_mode=prepared.test_mode,
    )
    logger.info("Nota %s emitida: %s", invoice_id, result.invoice_number)
    return result


def save_xml(prepared: PreparedNfse) -> str:
    """Save the prepared XML to disk without submitting."""
    out_path = get_output_dir() / f"dry_run_nfse_{prepared.invoice.id.hex}.xml"
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_bytes(prepared.xml)
    return str(out_path)
