"""
Cálculos puros usados por el ciclo de vida de la estancia:
devoluciones al cancelar y diferencias al cambiar de habitación.
"""

import enum
from datetime import datetime
from decimal import Decimal

from models.habitacion import RoomType
from services.billing_engine import expected_checkout
from utils.money import ZERO, to_money


class RefundType(str, enum.Enum):
    FULL = "full"
    PARTIAL = "partial"
    NONE = "none"


def compute_refund(total_paid, refund_type, custom_amount=None) -> Decimal:
    """
    full    -> todo lo pagado
    partial -> monto indicado, limitado a [0, total_paid]
    none    -> 0
    """
    total_paid = to_money(total_paid)
    refund_type = RefundType(refund_type)
    if refund_type == RefundType.FULL:
        return total_paid
    if refund_type == RefundType.PARTIAL:
        return min(max(to_money(custom_amount), ZERO), total_paid)
    return ZERO


def compute_price_difference(current_base, new_base) -> Decimal:
    """Positivo = cobrar diferencia, negativo = devolver diferencia"""
    return to_money(new_base) - to_money(current_base)


def compute_checkout_time(
    keep_time: bool,
    current_expected: datetime,
    now: datetime,
    new_room_type: RoomType,
) -> datetime:
    if keep_time:
        return current_expected
    return expected_checkout(now, new_room_type)
