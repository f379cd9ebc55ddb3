from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def money(v) -> Decimal:
    """Normaliza a Decimal con 2 decimales (ROUND_HALF_UP). Acepta str/int/float/Decimal."""
    if not isinstance(v, Decimal):
        v = Decimal(str(v))
    return v.quantize(CENT, rounding=ROUND_HALF_UP)


def money_floor(v) -> Decimal:
    if not isinstance(v, Decimal):
        v = Decimal(str(v))
    return v.quantize(CENT, rounding=ROUND_DOWN)


def fmt(v, symbol: str = "R$") -> str:
    return f"{symbol} {money(v)}"
