from __future__ import annotations

from decimal import Decimal, InvalidOperation

from emissor_ipm.utils.formatters import only_digits

VALID_UFS = frozenset({
    "AC", "AL", "AP", "AM", "BA", "CE", "DF", "ES", "GO", "MA",
    "MT", "MS", "MG", "PA", "PB", "PR", "PE", "PI", "RJ", "RN",
    "RS", "RO", "RR", "SC", "SP", "SE", "TO",
})

MAX_AMOUNT = Decimal("1000000")

_CNPJ_WEIGHTS_1 = (5, 4, 3, 2, 9, 8, 7, 6, 5, 4, 3, 2)
_CNPJ_WEIGHTS_2 = (6, 5, 4, 3, 2, 9, 8, 7, 6, 5, 4, 3, 2)


def _check_digit(digits: str, weights: tuple[int, ...]) -> int:
    total = sum(int(d) * w for d, w in zip(digits, weights))
    mod = total % 11
    return 0 if mod < 2 else 11 - mod


def is_valid_cnpj(value: str) -> bool:
    """Check length and both CNPJ check digits."""
    digits = only_digits(value)
    if len(digits) != 14:
        return False
    if _check_digit(digits[:12], _CNPJ_WEIGHTS_1) != int(digits[12]):
        return False
    return _check_digit(digits[:13], _CNPJ_WEIGHTS_2) == int(digits[13])


def is_valid_cpf(value: str) -> bool:
    """Check length and both CPF check digits, rejecting repeated-digit numbers."""
    digits = only_digits(value)
    if len(digits) != 11 or digits == digits[0] * 11:
        return False
    if _check_digit(digits[:9], tuple(range(10, 1, -1))) != int(digits[9]):
        return False
    return _check_digit(digits[:10], tuple(range(11, 1, -1))) == int(digits[10])


def is_valid_cpf_cnpj(value: str) -> bool:
    digits = only_digits(value)
    return is_valid_cpf(digits) if len(digits) == 11 else is_valid_cnpj(digits)


def normalize_cnpj(value: str) -> str:
    """Return the 14 CNPJ digits or raise ValueError."""
    digits = only_digits(value)
    if len(digits) != 14:
        raise ValueError(f"CNPJ deve ter 14 digitos: '{value}'")
    return digits


def validate_uf(value: str) -> str:
    """Validate a Brazilian state abbreviation and return it upper-cased."""
    uf = (value or "").strip().upper()
    if uf not in VALID_UFS:
        raise ValueError(f"UF invalida: '{value}'")
    return uf


def validate_amount(value: Decimal | str | int) -> Decimal:
    """Validate an invoice amount: positive and below R$ 1.000.000."""
    try:
        d = Decimal(str(value))
        if not d.is_finite():
            raise InvalidOperation
    except InvalidOperation:
        raise ValueError(f"Valor numerico invalido: '{value}'") from None
    if d <= 0:
        raise ValueError(f"Valor deve ser positivo: '{value}'")
    if d >= MAX_AMOUNT:
        raise ValueError("Valor excede o maximo permitido (R$ 1.000.000)")
    return d


def validate_rate(value: Decimal | str | int) -> Decimal:
    """Validate a tax rate given as a fraction (0.05 for 5%)."""
    try:
        d = Decimal(str(value))
        if not d.is_finite():
            raise InvalidOperation
    except InvalidOperation:
        raise ValueError(f"Aliquota invalida: '{value}'") from None
    if d < 0 or d > 1:
        raise ValueError(f"Aliquota deve estar entre 0 e 1: '{value}'")
    return d
