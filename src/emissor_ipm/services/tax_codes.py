from __future__ import annotations

import logging
from typing import Protocol

from emissor_ipm.models.tax_codes import (
    DEFAULT_TAX_CODES,
    ServiceTypeTaxMapping,
    TaxCodeBundle,
)

logger = logging.getLogger(__name__)


class TaxMappingSource(Protocol):
    def get_by_service_type_key(self, key: str) -> ServiceTypeTaxMapping | None: ...

    def get_by_cnae_code(self, cnae_code: str) -> ServiceTypeTaxMapping | None: ...


class TaxCodeResolver:
    """Resolve the tax codes for a service: by service type key, then CNAE, then default.

    A miss never raises; the default bundle keeps unconfigured services emittable.
    """

    def __init__(self, mappings: TaxMappingSource) -> None:
        self._mappings = mappings

    def resolve(self, service_type_key: str | None, cnae_code: str | None) -> TaxCodeBundle:
        if service_type_key:
            mapping = self._mappings.get_by_service_type_key(service_type_key)
            if mapping is not None:
                return mapping.to_bundle()
            logger.warning("Tipo de servico '%s' sem mapeamento ativo", service_type_key)

        if cnae_code:
            mapping = self._mappings.get_by_cnae_code(cnae_code)
            if mapping is not None:
                return mapping.to_bundle()
            logger.warning("CNAE '%s' sem mapeamento ativo", cnae_code)

        logger.warning(
            "Usando codigos tributarios padrao (tipo=%r, cnae=%r)", service_type_key, cnae_code
        )
        return DEFAULT_TAX_CODES
