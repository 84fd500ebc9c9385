from __future__ import annotations


class InvalidInvoiceData(ValueError):
    """The invoice's issuer/consumer payload cannot be parsed. Not retryable."""

    def __init__(self, message: str, invoice_id: str | None = None) -> None:
        super().__init__(message)
        self.invoice_id = invoice_id


class ConfigurationError(Exception):
    """Required configuration is missing or invalid. Raised at load time."""


class GatewayRejectError(Exception):
    """The IPM gateway answered but did not accept the NFS-e."""

    def __init__(self, message: str, response: dict | None = None) -> None:
        super().__init__(message)
        self.response = response or {}
