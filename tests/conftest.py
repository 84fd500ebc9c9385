from __future__ import annotations

import uuid
from decimal import Decimal

import pytest
from lxml import etree

from emissor_ipm.models.invoice import Invoice
from emissor_ipm.models.municipality import Municipality
from emissor_ipm.models.party import Consumer, Issuer
from emissor_ipm.models.tax_codes import ServiceTypeTaxMapping
from emissor_ipm.models.tax_config import TaxRateConfig
from emissor_ipm.services.municipality import MunicipalityResolver
from emissor_ipm.services.tax_codes import TaxCodeResolver
from emissor_ipm.services.xml_builder import NfseXmlBuilder
from emissor_ipm.utils.reference_data import MunicipalityTable, ServiceTypeMappings

INVOICE_ID = uuid.UUID("6f1c2b7e-9a4d-4c1e-8b3a-2d5e7f901234")


def xml_text(el: etree._Element, xpath: str) -> str | None:
    """Extract text from an XML element by xpath."""
    found = el.find(xpath)
    return found.text if found is not None else None


# --- Party fixtures ---


@pytest.fixture
def issuer_dict() -> dict:
    return {
        "cnpj": "12.345.678/0001-95",
        "municipal_inscription": "12345",
        "name": "Empresa Teste Ltda",
        "cnae": "45.20-0-05",
        "address": {
            "street": "Rua Principal",
            "number": "123",
            "complement": "Sala 1",
            "neighborhood": "Centro",
            "city": "Concórdia",
            "uf": "SC",
            "zip_code": "89700-000",
        },
    }


@pytest.fixture
def consumer_dict() -> dict:
    return {
        "name": "Cliente Teste S.A.",
        "cpf_cnpj": "11.444.777/0001-61",
        "email": "cliente@teste.com.br",
        "phone": "(49) 3441-1234",
        "address": {
            "street": "Av Secundária",
            "number": "456",
            "neighborhood": "Bairro Novo",
            "city": "Florianópolis",
            "uf": "SC",
            "zip_code": "88000-000",
        },
    }


@pytest.fixture
def issuer(issuer_dict: dict) -> Issuer:
    return Issuer.from_dict(issuer_dict)


@pytest.fixture
def consumer(consumer_dict: dict) -> Consumer:
    return Consumer.from_dict(consumer_dict)


# --- Invoice fixtures ---


@pytest.fixture
def sample_invoice(issuer: Issuer, consumer: Consumer) -> Invoice:
    return Invoice.create(
        issuer,
        consumer,
        "Serviço de lavagem completa do veículo",
        Decimal("1500.00"),
        iss_rate=Decimal("0.05"),
        service_type_key="vehicle-wash-45200-05",
        client_id="client-123",
        invoice_id=INVOICE_ID,
    )


# --- Tax configuration and reference data ---


@pytest.fixture
def tax_config_dict() -> dict:
    return {
        "ibs_uf_rate": "0.025",
        "ibs_uf_reduction": "0",
        "ibs_mun_rate": "0.025",
        "ibs_mun_reduction": "0",
        "cbs_rate": "0.009",
        "cbs_reduction": "0",
        "pis_rate": "0.0065",
        "cofins_rate": "0.03",
    }


@pytest.fixture
def tax_config(tax_config_dict: dict) -> TaxRateConfig:
    return TaxRateConfig.from_dict(tax_config_dict)


@pytest.fixture
def vehicle_wash_mapping() -> ServiceTypeTaxMapping:
    return ServiceTypeTaxMapping(
        service_type_key="vehicle-wash-45200-05",
        cnae_code="45.20-0-05",
        description="Serviços de lavagem, lubrificação e polimento de veículos automotivos",
        nbs_code="149.01.00",
        service_list_code="14.01",
        operation_indicator="140101",
        tax_situation_code="200",
        tax_classification_code="140001",
    )


@pytest.fixture
def mappings(vehicle_wash_mapping: ServiceTypeTaxMapping) -> ServiceTypeMappings:
    return ServiceTypeMappings([vehicle_wash_mapping])


@pytest.fixture
def municipality_table() -> MunicipalityTable:
    return MunicipalityTable([
        Municipality(ibge_code="4204301", name="Concórdia", uf="SC", tom_code="8083"),
        Municipality(ibge_code="4205407", name="Florianópolis", uf="SC", tom_code="8105"),
        Municipality(ibge_code="4204202", name="Chapecó", uf="SC", tom_code="8081"),
    ])


@pytest.fixture
def builder(tax_config, mappings, municipality_table) -> NfseXmlBuilder:
    return NfseXmlBuilder(
        tax_config=tax_config,
        tax_codes=TaxCodeResolver(mappings),
        municipalities=MunicipalityResolver(municipality_table),
        item_rate_source="issuer",
    )


# --- Config dir fixture ---


@pytest.fixture
def config_dir(tmp_path, tax_config_dict):
    import yaml

    cfg = tmp_path / "config"
    cfg.mkdir()
    (cfg / "tax.yaml").write_text(yaml.dump({**tax_config_dict, "item_rate_source": "issuer"}))
    (cfg / "service_types.yaml").write_text(
        yaml.dump({
            "service_types": [
                {
                    "service_type_key": "vehicle-wash-45200-05",
                    "cnae_code": "45.20-0-05",
                    "description": "Lavagem de veículos",
                    "nbs_code": "149.01.00",
                    "service_list_code": "14.01",
                    "operation_indicator": "140101",
                    "tax_situation_code": "200",
                    "tax_classification_code": "140001",
                }
            ]
        }),
        encoding="utf-8",
    )
    (cfg / "municipalities.csv").write_text(
        "ibge_code,name,uf,tom_code,created_at,extinguished_at\n"
        "4204301,Concórdia,SC,8083,,\n"
        "4205407,Florianópolis,SC,8105,,\n",
        encoding="utf-8",
    )
    return cfg
