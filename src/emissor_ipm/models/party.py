from __future__ import annotations

from dataclasses import dataclass

_REQUIRED = object()


def _field(d: dict, key: str, default=_REQUIRED, numeric: bool = False) -> str | None:
    """Read a text field from a payload dict.

    Missing required keys raise KeyError; values of the wrong type raise
    TypeError. Digit fields (numbers, CEP, CNPJ, phone) also accept integers
    since YAML loads unquoted digits as int.
    """
    if default is _REQUIRED:
        value = d[key]
    else:
        value = d.get(key)
        if value is None:
            return default
    if numeric and isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    if not isinstance(value, str):
        raise TypeError(f"Campo '{key}' deve ser texto, recebido {type(value).__name__}")
    return value


@dataclass(frozen=True)
class Address:
    street: str
    number: str
    neighborhood: str
    city: str
    uf: str
    zip_code: str
    complement: str | None = None

    @classmethod
    def from_dict(cls, d: dict) -> Address:
        return cls(
            street=_field(d, "street"),
            number=_field(d, "number", numeric=True),
            neighborhood=_field(d, "neighborhood", ""),
            city=_field(d, "city"),
            uf=_field(d, "uf"),
            zip_code=_field(d, "zip_code", numeric=True),
            complement=_field(d, "complement", None),
        )

    def to_dict(self) -> dict:
        return {
            "street": self.street,
            "number": self.number,
            "complement": self.complement,
            "neighborhood": self.neighborhood,
            "city": self.city,
            "uf": self.uf,
            "zip_code": self.zip_code,
        }


@dataclass(frozen=True)
class Issuer:
    """Service provider (prestador): the company issuing the NFS-e."""

    cnpj: str
    name: str
    cnae: str
    address: Address
    municipal_inscription: str = ""

    @classmethod
    def from_dict(cls, d: dict) -> Issuer:
        return cls(
            cnpj=_field(d, "cnpj", numeric=True),
            name=_field(d, "name"),
            cnae=_field(d, "cnae", "", numeric=True),
            address=Address.from_dict(d["address"]),
            municipal_inscription=_field(d, "municipal_inscription", "", numeric=True),
        )

    def to_dict(self) -> dict:
        return {
            "cnpj": self.cnpj,
            "municipal_inscription": self.municipal_inscription,
            "name": self.name,
            "cnae": self.cnae,
            "address": self.address.to_dict(),
        }


@dataclass(frozen=True)
class Consumer:
    """Service taker (tomador): the customer receiving the NFS-e."""

    name: str
    cpf_cnpj: str
    address: Address
    email: str | None = None
    phone: str | None = None

    @classmethod
    def from_dict(cls, d: dict) -> Consumer:
        return cls(
            name=_field(d, "name"),
            cpf_cnpj=_field(d, "cpf_cnpj", "", numeric=True),
            address=Address.from_dict(d["address"]),
            email=_field(d, "email", None),
            phone=_field(d, "phone", None, numeric=True) or None,
        )

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "cpf_cnpj": self.cpf_cnpj,
            "email": self.email,
            "phone": self.phone,
            "address": self.address.to_dict(),
        }
