from __future__ import annotations

from dataclasses import dataclass, fields
from decimal import Decimal, InvalidOperation

from emissor_ipm.services.exceptions import ConfigurationError

ITEM_RATE_SOURCES = ("issuer", "configured")


@dataclass(frozen=True)
class TaxRateConfig:
    """IBS/CBS and PIS/COFINS rates as proportions (0.025 = 2.5%).

    Loaded once at startup and never mutated.
    """

    ibs_uf_rate: Decimal
    ibs_uf_reduction: Decimal
    ibs_mun_rate: Decimal
    ibs_mun_reduction: Decimal
    cbs_rate: Decimal
    cbs_reduction: Decimal
    pis_rate: Decimal
    cofins_rate: Decimal

    @classmethod
    def from_dict(cls, d: dict) -> TaxRateConfig:
        """Validate and convert every rate. Raises ConfigurationError on any problem."""
        missing = [f.name for f in fields(cls) if d.get(f.name) is None]
        if missing:
            raise ConfigurationError(f"Aliquotas ausentes na configuracao: {', '.join(missing)}")

        values: dict[str, Decimal] = {}
        for f in fields(cls):
            raw = d[f.name]
            try:
                # str() first so YAML floats keep their written value
                value = Decimal(str(raw))
                if not value.is_finite():
                    raise InvalidOperation
            except InvalidOperation:
                raise ConfigurationError(f"{f.name}: valor invalido '{raw}'") from None
            if value < 0 or value > 1:
                raise ConfigurationError(f"{f.name}: deve estar entre 0 e 1, recebido {value}")
            values[f.name] = value
        return cls(**values)


def validate_item_rate_source(value: str) -> str:
    source = (value or "").strip().lower()
    if source not in ITEM_RATE_SOURCES:
        raise ConfigurationError(
            f"item_rate_source invalido: '{value}' (use {' ou '.join(ITEM_RATE_SOURCES)})"
        )
    return source
