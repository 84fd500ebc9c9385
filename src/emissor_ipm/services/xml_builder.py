from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from lxml import etree

from emissor_ipm.config import BRT
from emissor_ipm.models.invoice import Invoice
from emissor_ipm.models.party import Consumer
from emissor_ipm.models.tax_codes import TaxCodeBundle
from emissor_ipm.models.tax_config import TaxRateConfig, validate_item_rate_source
from emissor_ipm.services.municipality import MunicipalityResolver
from emissor_ipm.services.tax_codes import TaxCodeResolver
from emissor_ipm.services.xml_encoder import serialize_nfse
from emissor_ipm.utils.formatters import (
    determine_tomador_type,
    escape_xml_content,
    format_monetary,
    format_rate,
    only_digits,
    parse_phone_details,
    quantize_cents,
    strip_dots,
)

ZERO = Decimal("0")

# Global IBS/CBS reduction (pRedutor). No rule sets it yet.
GLOBAL_REDUCTION = Decimal("0")

PIS_COFINS_CST = "01"
PIS_COFINS_RETENTION = "2"
ITEM_TAX_SITUATION = "0000"
CASH_PAYMENT = "1"


def _sub(parent: etree._Element, tag: str, text: str | None = None) -> etree._Element:
    el = etree.SubElement(parent, tag)
    if text is not None:
        el.text = text
    return el


@dataclass(frozen=True)
class JurisdictionTax:
    rate: Decimal
    reduction: Decimal
    effective_rate: Decimal
    value: Decimal


@dataclass(frozen=True)
class IbsCbsAmounts:
    uf: JurisdictionTax
    mun: JurisdictionTax
    cbs: JurisdictionTax

    @property
    def ibs_total(self) -> Decimal:
        return self.uf.value + self.mun.value


def jurisdiction_tax(
    amount: Decimal,
    rate: Decimal,
    reduction: Decimal,
    global_reduction: Decimal = GLOBAL_REDUCTION,
) -> JurisdictionTax:
    """effective = rate x (1 - reduction) x (1 - global); value = amount x effective."""
    effective = rate * (1 - reduction) * (1 - global_reduction)
    return JurisdictionTax(
        rate=rate,
        reduction=reduction,
        effective_rate=effective,
        value=quantize_cents(amount * effective),
    )


def compute_ibs_cbs(amount: Decimal, tax_config: TaxRateConfig) -> IbsCbsAmounts:
    return IbsCbsAmounts(
        uf=jurisdiction_tax(amount, tax_config.ibs_uf_rate, tax_config.ibs_uf_reduction),
        mun=jurisdiction_tax(amount, tax_config.ibs_mun_rate, tax_config.ibs_mun_reduction),
        cbs=jurisdiction_tax(amount, tax_config.cbs_rate, tax_config.cbs_reduction),
    )


class NfseXmlBuilder:
    """Assemble the IPM NFS-e XML for one invoice.

    Holds only read-only collaborators, so one instance can serve concurrent
    builds. ``item_rate_source`` chooses the line item's aliquota:
    ``"issuer"`` uses the invoice's stated ISS rate, ``"configured"`` the
    configured UF IBS rate.
    """

    def __init__(
        self,
        tax_config: TaxRateConfig,
        tax_codes: TaxCodeResolver,
        municipalities: MunicipalityResolver,
        item_rate_source: str,
    ) -> None:
        self.tax_config = tax_config
        self.tax_codes = tax_codes
        self.municipalities = municipalities
        self.item_rate_source = validate_item_rate_source(item_rate_source)

    def build_invoice_xml(
        self,
        invoice: Invoice,
        is_test_mode: bool,
        today: date | None = None,
    ) -> etree._Element:
        """Build the <nfse> element.

        Raises InvalidInvoiceData when the issuer or consumer payload is malformed.
        """
        issuer = invoice.issuer()
        consumer = invoice.consumer()

        codes = self.tax_codes.resolve(invoice.service_type_key, issuer.cnae)
        issuer_tom = self.municipalities.resolve(issuer.address.city, issuer.address.uf)
        consumer_tom = self.municipalities.resolve(consumer.address.city, consumer.address.uf)

        root = etree.Element("nfse")
        if is_test_mode:
            _sub(root, "nfse_teste", "1")
        _sub(root, "identificador", invoice.id.hex)

        self._build_nf(root, invoice, today or datetime.now(BRT).date())

        prestador = _sub(root, "prestador")
        _sub(prestador, "cpfcnpj", only_digits(invoice.issuer_cnpj))
        _sub(prestador, "cidade", issuer_tom)

        self._build_tomador(root, consumer, consumer_tom)
        self._build_itens(root, invoice, codes, issuer_tom)
        self._build_ibscbs(root, codes)

        forma = _sub(root, "forma_pagamento")
        _sub(forma, "tipo_pagamento", CASH_PAYMENT)

        return root

    def render_invoice_xml(
        self,
        invoice: Invoice,
        is_test_mode: bool,
        today: date | None = None,
    ) -> bytes:
        return serialize_nfse(self.build_invoice_xml(invoice, is_test_mode, today))

    # --- sections ---

    def _build_nf(self, root: etree._Element, invoice: Invoice, today: date) -> None:
        amount = invoice.amount
        cfg = self.tax_config

        nf = _sub(root, "nf")
        _sub(nf, "data_fato_gerador", today.strftime("%d/%m/%Y"))
        _sub(nf, "valor_total", format_monetary(amount))
        for tag in ("valor_desconto", "valor_ir", "valor_inss", "valor_contribuicao_social", "valor_rps"):
            _sub(nf, tag, format_monetary(ZERO))

        pis_cofins = _sub(nf, "pis_cofins")
        _sub(pis_cofins, "cst", PIS_COFINS_CST)
        _sub(pis_cofins, "tipo_retencao", PIS_COFINS_RETENTION)
        _sub(pis_cofins, "base_calculo", format_monetary(amount))
        _sub(pis_cofins, "aliquota_pis", format_rate(cfg.pis_rate))
        _sub(pis_cofins, "aliquota_cofins", format_rate(cfg.cofins_rate))

        _sub(nf, "valor_pis", format_monetary(amount * cfg.pis_rate))
        _sub(nf, "valor_cofins", format_monetary(amount * cfg.cofins_rate))
        _sub(nf, "observacao", escape_xml_content(invoice.observation))

        self._build_ibscbs_nf(nf, amount)

    def _build_ibscbs_nf(self, nf: etree._Element, amount: Decimal) -> None:
        taxes = compute_ibs_cbs(amount, self.tax_config)
        jurisdictions = (("ibs_uf", taxes.uf), ("ibs_mun", taxes.mun), ("cbs", taxes.cbs))

        section = _sub(nf, "IBSCBS")
        for suffix, tax in jurisdictions:
            _sub(section, f"aliquota_{suffix}", format_rate(tax.rate))
            _sub(section, f"percentual_reducao_{suffix}", format_rate(tax.reduction))
            _sub(section, f"aliquota_efetiva_{suffix}", format_rate(tax.effective_rate))

        # IBS/CBS are not yet added to the invoice total
        _sub(section, "valor_total_nf", format_monetary(amount))

        regular = _sub(section, "tributacao_regular")
        for suffix, tax in jurisdictions:
            _sub(regular, f"aliquota_efetiva_regular_{suffix}", format_rate(tax.effective_rate))
            _sub(regular, f"valor_regular_{suffix}", format_monetary(tax.value))

        g_ibs = _sub(section, "gIBS")
        _sub(g_ibs, "valor_ibs_total", format_monetary(taxes.ibs_total))
        g_uf = _sub(g_ibs, "gIBSUF")
        _sub(g_uf, "valor_diferimento_uf", format_monetary(ZERO))
        _sub(g_uf, "valor_ibs_uf", format_monetary(taxes.uf.value))
        g_mun = _sub(g_ibs, "gIBSMun")
        _sub(g_mun, "valor_diferimento_mun", format_monetary(ZERO))
        _sub(g_mun, "valor_ibs_mun", format_monetary(taxes.mun.value))

        g_cbs = _sub(section, "gCBS")
        _sub(g_cbs, "valor_diferimento_cbs", format_monetary(ZERO))
        _sub(g_cbs, "valor_cbs", format_monetary(taxes.cbs.value))

    def _build_tomador(self, root: etree._Element, consumer: Consumer, tom_code: str) -> None:
        address = consumer.address
        ddd, number = parse_phone_details(consumer.phone)

        tomador = _sub(root, "tomador")
        _sub(tomador, "endereco_informado", "1")
        _sub(tomador, "tipo", determine_tomador_type(consumer.cpf_cnpj))
        _sub(tomador, "cpfcnpj", only_digits(consumer.cpf_cnpj))
        _sub(tomador, "ie", "")
        _sub(tomador, "nome_razao_social", escape_xml_content(consumer.name))
        _sub(tomador, "sobrenome_nome_fantasia", "")
        _sub(tomador, "logradouro", escape_xml_content(address.street))
        _sub(tomador, "numero_residencia", escape_xml_content(address.number))
        _sub(tomador, "complemento", escape_xml_content(address.complement))
        _sub(tomador, "ponto_referencia", "")
        _sub(tomador, "bairro", escape_xml_content(address.neighborhood))
        _sub(tomador, "cidade", tom_code)
        _sub(tomador, "cep", only_digits(address.zip_code))
        _sub(tomador, "email", escape_xml_content(consumer.email))
        # Always present, empty when there is no phone
        _sub(tomador, "ddd_fone_comercial", ddd)
        _sub(tomador, "fone_comercial", number)

    def _build_itens(
        self,
        root: etree._Element,
        invoice: Invoice,
        codes: TaxCodeBundle,
        issuer_tom: str,
    ) -> None:
        itens = _sub(root, "itens")
        lista = _sub(itens, "lista")
        _sub(lista, "tributa_municipio_prestador", "S")
        _sub(lista, "codigo_local_prestacao_servico", issuer_tom)
        _sub(lista, "unidade_codigo", "1")
        _sub(lista, "unidade_quantidade", "1")
        _sub(lista, "unidade_valor_unitario", format_monetary(invoice.amount))
        _sub(lista, "codigo_item_lista_servico", strip_dots(codes.service_list_code))
        _sub(lista, "codigo_nbs", strip_dots(codes.nbs_code))
        _sub(lista, "descritivo", escape_xml_content(invoice.service_description))
        _sub(lista, "aliquota_item_lista_servico", format_rate(self._item_rate(invoice)))
        _sub(lista, "situacao_tributaria", ITEM_TAX_SITUATION)
        _sub(lista, "valor_tributavel", format_monetary(invoice.amount))
        _sub(lista, "valor_deducao", format_monetary(ZERO))
        _sub(lista, "valor_issrf", format_monetary(ZERO))

    def _item_rate(self, invoice: Invoice) -> Decimal:
        if self.item_rate_source == "issuer":
            return invoice.iss_rate
        return self.tax_config.ibs_uf_rate

    def _build_ibscbs(self, root: etree._Element, codes: TaxCodeBundle) -> None:
        ibscbs = _sub(root, "IBSCBS")
        _sub(ibscbs, "finNFSe", "0")
        _sub(ibscbs, "indFinal", "1")
        _sub(ibscbs, "cIndOp", codes.operation_indicator)
        valores = _sub(ibscbs, "valores")
        trib = _sub(valores, "trib")
        g_ibscbs = _sub(trib, "gIBSCBS")
        _sub(g_ibscbs, "CST", codes.tax_situation_code)
        _sub(g_ibscbs, "cClassTrib", codes.tax_classification_code)
