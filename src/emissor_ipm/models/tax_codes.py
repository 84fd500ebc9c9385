from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class TaxCodeBundle:
    """Classification codes needed by one NFS-e."""

    nbs_code: str
    service_list_code: str
    operation_indicator: str  # cIndOp, 6 digits
    tax_situation_code: str  # CST, 3 digits
    tax_classification_code: str  # cClassTrib, 6 digits


_TRUE_WORDS = frozenset({"true", "1", "yes", "sim", "s"})
_FALSE_WORDS = frozenset({"false", "0", "no", "nao", "não", "n"})


def _parse_flag(value) -> bool:
    """YAML booleans pass through; quoted words like "false" or "sim" are parsed."""
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_WORDS:
        return True
    if text in _FALSE_WORDS:
        return False
    raise ValueError(f"is_active invalido: {value!r}")


DEFAULT_TAX_CODES = TaxCodeBundle(
    nbs_code="123456789",
    service_list_code="0024",
    operation_indicator="030102",
    tax_situation_code="200",
    tax_classification_code="200028",
)


@dataclass(frozen=True)
class ServiceTypeTaxMapping:
    """Maps a service type key (or CNAE) to its tax codes."""

    service_type_key: str
    cnae_code: str
    description: str
    nbs_code: str
    service_list_code: str
    operation_indicator: str
    tax_situation_code: str
    tax_classification_code: str
    is_active: bool = True

    @classmethod
    def from_dict(cls, d: dict) -> ServiceTypeTaxMapping:
        """Create a mapping from a YAML-loaded dict. Codes are kept as strings."""
        return cls(
            service_type_key=d["service_type_key"],
            cnae_code=str(d.get("cnae_code", "")),
            description=d.get("description", ""),
            nbs_code=str(d["nbs_code"]),
            service_list_code=str(d["service_list_code"]),
            operation_indicator=str(d["operation_indicator"]).zfill(6),
            tax_situation_code=str(d["tax_situation_code"]).zfill(3),
            tax_classification_code=str(d["tax_classification_code"]).zfill(6),
            is_active=_parse_flag(d.get("is_active", True)),
        )

    def to_bundle(self) -> TaxCodeBundle:
        return TaxCodeBundle(
            nbs_code=self.nbs_code,
            service_list_code=self.service_list_code,
            operation_indicator=self.operation_indicator,
            tax_situation_code=self.tax_situation_code,
            tax_classification_code=self.tax_classification_code,
        )
