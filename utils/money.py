"""
Helpers de montos: todo dinero del núcleo viaja como Decimal a 2 decimales
"""

from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def _safe_decimal(value, fallback: Decimal = ZERO) -> Decimal:
    """Convierte a Decimal de forma segura (columnas ya persistidas)"""
    if value is None:
        return fallback
    try:
        if isinstance(value, Decimal):
            return value
        return Decimal(str(value))
    except (ValueError, TypeError, ArithmeticError):
        return fallback


def to_money(value) -> Decimal:
    """Decimal redondeado a centavos (None -> 0.00)"""
    return _safe_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def parse_money(value) -> Decimal:
    """
    Conversión estricta de un monto recibido del llamador.
    ValueError si no es un número finito; nunca cae a 0.00.
    """
    if value is None or isinstance(value, bool):
        raise ValueError(f"Monto inválido: {value!r}")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
        amount = amount.quantize(CENT, rounding=ROUND_HALF_UP)
    except (ValueError, TypeError, ArithmeticError) as e:
        raise ValueError(f"Monto inválido: {value!r}") from e
    if not amount.is_finite():
        raise ValueError(f"Monto inválido: {value!r}")
    return amount


def money_float(value) -> float:
    """Para respuestas JSON"""
    return float(to_money(value))
