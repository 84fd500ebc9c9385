from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

_CENTS = Decimal("0.01")

# "&" goes first so the entities produced by later steps are not escaped again.
_XML_REPLACEMENTS = (
    ("&", "&amp;"),
    ("<", "&lt;"),
    (">", "&gt;"),
    ("'", "&apos;"),
    ('"', "&quot;"),
)


def only_digits(value: str | None) -> str:
    """Keep only ASCII digits."""
    if not value:
        return ""
    return "".join(ch for ch in value if "0" <= ch <= "9")


def escape_xml_content(value: str | None) -> str:
    """Escape markup characters and drop forward slashes.

    The IPM schema rejects "/" anywhere in text content, so it is removed
    rather than encoded.
    """
    if not value:
        return ""
    for char, entity in _XML_REPLACEMENTS:
        value = value.replace(char, entity)
    return value.replace("/", "")


def quantize_cents(amount: Decimal) -> Decimal:
    return Decimal(amount).quantize(_CENTS, rounding=ROUND_HALF_UP)


def format_monetary(amount: Decimal) -> str:
    """Format a monetary value as IPM expects: 1500 -> "1500,00"."""
    return f"{quantize_cents(amount):f}".replace(".", ",")


def format_rate(rate: Decimal) -> str:
    """Format a proportion as a percentage with 2 decimals: 0.025 -> "2,50"."""
    return format_monetary(Decimal(rate) * 100)


def strip_dots(code: str | None) -> str:
    """Remove dots and dashes from a classification code ("149.01.00" -> "1490100")."""
    if not code:
        return ""
    return code.replace(".", "").replace("-", "")


def determine_tomador_type(document: str | None) -> str:
    """Classify the service taker: F (CPF), J (CNPJ or other) or E (foreign, no document)."""
    digits = only_digits(document)
    if not digits:
        return "E"
    return "F" if len(digits) == 11 else "J"


def parse_phone_details(phone: str | None) -> tuple[str, str]:
    """Split a phone number into (area code, local number)."""
    digits = only_digits(phone)
    ddd = digits[:2] if len(digits) >= 2 else ""
    number = digits[2:] if len(digits) > 2 else ""
    return ddd, number


def format_brl(value: Decimal | str) -> str:
    """Format a value for display as R$ X.XXX,XX."""
    d = Decimal(value)
    formatted = f"{d:,.2f}".replace(",", "X").replace(".", ",").replace("X", ".")
    return f"R$ {formatted}"
