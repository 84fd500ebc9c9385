from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal

from emissor_ipm.models.party import Consumer, Issuer
from emissor_ipm.services.exceptions import InvalidInvoiceData
from emissor_ipm.utils.validators import normalize_cnpj, validate_amount, validate_rate


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class Invoice:
    """A persisted invoice as handed to the XML builder.

    Issuer and consumer are kept as the serialized JSON documents they are
    stored as; ``issuer()`` / ``consumer()`` parse them on demand.
    """

    id: uuid.UUID
    issuer_cnpj: str
    issuer_data: str
    consumer_data: str
    service_description: str
    amount: Decimal
    iss_rate: Decimal = Decimal("0")
    service_type_key: str | None = None
    observation: str = ""
    client_id: str = ""
    created_at: datetime = field(default_factory=_utcnow)
    issued_at: datetime | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "issuer_cnpj", normalize_cnpj(self.issuer_cnpj))

    @classmethod
    def create(
        cls,
        issuer: Issuer,
        consumer: Consumer,
        service_description: str,
        amount: Decimal | str,
        *,
        iss_rate: Decimal | str = "0",
        service_type_key: str | None = None,
        observation: str = "",
        client_id: str = "",
        issued_at: datetime | None = None,
        invoice_id: uuid.UUID | None = None,
    ) -> Invoice:
        """Build a new invoice from structured parties, serializing them to JSON."""
        return cls(
            id=invoice_id or uuid.uuid4(),
            issuer_cnpj=issuer.cnpj,
            issuer_data=json.dumps(issuer.to_dict(), ensure_ascii=False),
            consumer_data=json.dumps(consumer.to_dict(), ensure_ascii=False),
            service_description=service_description,
            amount=validate_amount(amount),
            iss_rate=validate_rate(iss_rate),
            service_type_key=service_type_key or None,
            observation=observation,
            client_id=client_id,
            issued_at=issued_at,
        )

    def issuer(self) -> Issuer:
        return _parse(self, self.issuer_data, Issuer.from_dict, "issuer")

    def consumer(self) -> Consumer:
        return _parse(self, self.consumer_data, Consumer.from_dict, "consumer")


def _parse(invoice: Invoice, raw: str, factory, kind: str):
    try:
        return factory(json.loads(raw))
    except (json.JSONDecodeError, KeyError, TypeError, AttributeError) as exc:
        raise InvalidInvoiceData(
            f"Dados de {kind} invalidos na nota {invoice.id}: {exc!r}",
            invoice_id=str(invoice.id),
        ) from exc
