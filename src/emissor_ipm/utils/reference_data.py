"""Read-only reference data: service type tax mappings and municipalities.

Both tables are loaded once from the config directory (YAML and CSV) and
queried in memory.
"""

from __future__ import annotations

import csv
import logging
from collections.abc import Iterable
from pathlib import Path

import yaml

from emissor_ipm.models.municipality import Municipality
from emissor_ipm.models.tax_codes import ServiceTypeTaxMapping
from emissor_ipm.services.exceptions import ConfigurationError
from emissor_ipm.utils.formatters import only_digits

logger = logging.getLogger(__name__)

MUNICIPALITY_CSV_HEADER = ["ibge_code", "name", "uf", "tom_code", "created_at", "extinguished_at"]


class ServiceTypeMappings:
    def __init__(self, mappings: Iterable[ServiceTypeTaxMapping] = ()) -> None:
        self._mappings = list(mappings)

    @classmethod
    def from_yaml(cls, path: Path) -> ServiceTypeMappings:
        """Load mappings from a YAML file with a top-level ``service_types`` list."""
        if not path.is_file():
            logger.warning("Arquivo de tipos de servico nao encontrado: %s", path)
            return cls()
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        try:
            return cls(ServiceTypeTaxMapping.from_dict(d) for d in data.get("service_types", []))
        except (KeyError, TypeError, AttributeError, ValueError) as exc:
            raise ConfigurationError(f"{path}: mapeamento invalido ({exc!r})") from exc

    def get_by_service_type_key(self, key: str) -> ServiceTypeTaxMapping | None:
        return next(
            (m for m in self._mappings if m.is_active and m.service_type_key == key),
            None,
        )

    def get_by_cnae_code(self, cnae_code: str) -> ServiceTypeTaxMapping | None:
        """Match on digits only, so "45.20-0-05" and "4520-0/05" are the same CNAE."""
        digits = only_digits(cnae_code)
        if not digits:
            return None
        return next(
            (m for m in self._mappings if m.is_active and only_digits(m.cnae_code) == digits),
            None,
        )

    def list_active(self) -> list[ServiceTypeTaxMapping]:
        return sorted((m for m in self._mappings if m.is_active), key=lambda m: m.description)


class MunicipalityTable:
    def __init__(self, municipalities: Iterable[Municipality] = ()) -> None:
        self._items = list(municipalities)
        self._by_name: dict[tuple[str, str], Municipality] = {}
        for m in self._items:
            self._by_name.setdefault((m.name.casefold(), m.uf.upper()), m)

    @classmethod
    def from_csv(cls, path: Path) -> MunicipalityTable:
        """Load the normalized municipality CSV (see MUNICIPALITY_CSV_HEADER)."""
        if not path.is_file():
            logger.warning("Tabela de municipios nao encontrada: %s", path)
            return cls()
        with path.open(encoding="utf-8-sig", newline="") as f:
            reader = csv.DictReader(f)
            try:
                return cls(
                    Municipality.from_row(row)
                    for row in reader
                    if row.get("name") and row.get("tom_code")
                )
            except (KeyError, AttributeError) as exc:
                raise ConfigurationError(f"{path}: linha invalida ({exc!r})") from exc

    def __len__(self) -> int:
        return len(self._items)

    def get_by_city_and_uf(self, city: str, uf: str) -> Municipality | None:
        """Case-insensitive exact match on name and state."""
        return self._by_name.get(((city or "").strip().casefold(), (uf or "").strip().upper()))

    def get_by_ibge_code(self, ibge_code: str) -> Municipality | None:
        return next((m for m in self._items if m.ibge_code == ibge_code), None)

    def get_by_tom_code(self, tom_code: str) -> Municipality | None:
        return next((m for m in self._items if m.tom_code == tom_code), None)

    def list_by_uf(self, uf: str) -> list[Municipality]:
        uf = uf.upper()
        return sorted((m for m in self._items if m.uf == uf), key=lambda m: m.name)
