from __future__ import annotations

import logging
from typing import Protocol

from emissor_ipm.config import MUNICIPALITY_FALLBACK_TOM
from emissor_ipm.models.municipality import Municipality

logger = logging.getLogger(__name__)


class MunicipalitySource(Protocol):
    def get_by_city_and_uf(self, city: str, uf: str) -> Municipality | None: ...


class MunicipalityResolver:
    """Resolve a city/state pair to its 4-digit IPM TOM code."""

    def __init__(
        self,
        municipalities: MunicipalitySource,
        fallback_code: str = MUNICIPALITY_FALLBACK_TOM,
    ) -> None:
        self._municipalities = municipalities
        self.fallback_code = fallback_code

    def resolve(self, city: str, uf: str) -> str:
        municipality = self._municipalities.get_by_city_and_uf(city, uf)
        if municipality is not None:
            return municipality.tom_code
        logger.warning(
            "Municipio '%s'/%s nao encontrado, usando codigo TOM %s",
            city,
            uf,
            self.fallback_code,
        )
        return self.fallback_code
