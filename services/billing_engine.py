"""
Billing Engine - Reglas de cobro por tiempo
SINGLE SOURCE OF TRUTH para precio de entrada, horas incluidas,
personas extra, horas extra y cargos por tolerancia expirada.
"""

import math
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from config import BASE_OCCUPANCY, DEFAULT_STAY_HOURS, TOLERANCE_MINUTES
from models.estancia import ToleranceType
from models.habitacion import RoomType
from models.pago import PaymentConcept, PaymentMethod
from models.venta import ConceptType, SalesOrder, SalesOrderItem
from services.errors import ErrorCode, ValidationError
from services.sales_ledger import SalesOrderLedger
from utils.money import ZERO, parse_money, to_money


TOLERANCE_WINDOW = timedelta(minutes=TOLERANCE_MINUTES)
ONE_HOUR = timedelta(hours=1)


# =====================================================================
# REGLAS PURAS
# =====================================================================

def is_weekend(moment: datetime) -> bool:
    """Sábado o domingo"""
    return moment.weekday() >= 5


def hours_for_day(moment: datetime, room_type: RoomType) -> int:
    """Horas incluidas en el precio base según el día de entrada"""
    hours = room_type.weekend_hours if is_weekend(moment) else room_type.weekday_hours
    return hours or DEFAULT_STAY_HOURS


def expected_checkout(entry_time: datetime, room_type: RoomType) -> datetime:
    return entry_time + timedelta(hours=hours_for_day(entry_time, room_type))


def extra_people_count(people: int) -> int:
    return max(0, people - BASE_OCCUPANCY)


def extra_people_cost(people: int, room_type: RoomType) -> Decimal:
    return to_money(extra_people_count(people) * to_money(room_type.extra_person_price))


class CheckInQuote:
    """Resultado del cálculo de entrada"""

    def __init__(self, room_type: RoomType, people: int, entry_time: datetime):
        self.base_price: Decimal = to_money(room_type.base_price)
        self.extra_people: int = extra_people_count(people)
        self.extra_person_price: Decimal = to_money(room_type.extra_person_price)
        self.extra_people_cost: Decimal = extra_people_cost(people, room_type)
        self.total: Decimal = self.base_price + self.extra_people_cost
        self.hours: int = hours_for_day(entry_time, room_type)
        self.expected_check_out_at: datetime = entry_time + timedelta(hours=self.hours)

    def to_dict(self) -> dict:
        return {
            "base_price": float(self.base_price),
            "extra_people": self.extra_people,
            "extra_people_cost": float(self.extra_people_cost),
            "total": float(self.total),
            "hours": self.hours,
            "expected_check_out_at": self.expected_check_out_at.isoformat(),
        }


def quote_check_in(room_type: RoomType, people: int, entry_time: datetime) -> CheckInQuote:
    return CheckInQuote(room_type, people, entry_time)


def overdue_hours(expected_check_out_at: datetime, now: datetime) -> int:
    """Horas iniciadas después de la salida esperada (redondeo hacia arriba)"""
    if expected_check_out_at is None or now <= expected_check_out_at:
        return 0
    return math.ceil((now - expected_check_out_at) / ONE_HOUR)


def is_tolerance_expired(tolerance_started_at: Optional[datetime], now: datetime) -> bool:
    if tolerance_started_at is None:
        return False
    return now - tolerance_started_at >= TOLERANCE_WINDOW


def tolerance_remaining_minutes(tolerance_started_at: Optional[datetime], now: datetime) -> int:
    if tolerance_started_at is None:
        return TOLERANCE_MINUTES
    remaining = TOLERANCE_WINDOW - (now - tolerance_started_at)
    if remaining <= timedelta(0):
        return 0
    return math.ceil(remaining.total_seconds() / 60)


def tolerance_charge(tolerance_type: ToleranceType, room_type: RoomType) -> Tuple[ConceptType, Decimal]:
    """
    Cargo al expirar la tolerancia:
    - ROOM_EMPTY: se cobra la habitación completa (precio base)
    - PERSON_LEFT: se cobra una persona extra
    """
    if tolerance_type == ToleranceType.ROOM_EMPTY:
        return ConceptType.BASE_STAY, to_money(room_type.base_price)
    return ConceptType.EXTRA_PERSON, to_money(room_type.extra_person_price)


# Concepto de pago que liquida cada tipo de partida
CONCEPT_FOR_TYPE = {
    ConceptType.BASE_STAY: PaymentConcept.SERVICIO,
    ConceptType.EXTRA_PERSON: PaymentConcept.PERSONA_EXTRA,
    ConceptType.EXTRA_HOUR: PaymentConcept.HORA_EXTRA,
    ConceptType.CONSUMPTION: PaymentConcept.CONSUMO,
}


class ConsumptionEntry:
    """Línea de consumo (producto o servicio agregado a la cuenta)"""

    def __init__(self, description: str, qty: int, unit_price):
        self.description = (description or "").strip()
        self.qty = qty
        self.unit_price = unit_price

    def validate(self) -> None:
        if not self.description:
            raise ValidationError(ErrorCode.INVALID_AMOUNT, "El consumo requiere descripción")
        try:
            self.unit_price = parse_money(self.unit_price)
        except ValueError:
            raise ValidationError(ErrorCode.INVALID_AMOUNT, f"Precio inválido para '{self.description}'")
        if not isinstance(self.qty, int) or isinstance(self.qty, bool) or self.qty < 1:
            raise ValidationError(ErrorCode.INVALID_AMOUNT, f"Cantidad inválida para '{self.description}'")
        if self.unit_price < ZERO:
            raise ValidationError(ErrorCode.INVALID_AMOUNT, f"Precio inválido para '{self.description}'")

    @property
    def line_total(self) -> Decimal:
        return to_money(self.unit_price * self.qty)


# =====================================================================
# PARTIDAS
# =====================================================================

class BillingEngine:
    """Agrega partidas a la orden y las carga al ledger"""

    @staticmethod
    def add_item(
        db: Session,
        order: SalesOrder,
        concept_type: ConceptType,
        unit_price,
        now: datetime,
        qty: int = 1,
        description: Optional[str] = None,
        concept: Optional[PaymentConcept] = None,
        tolerance_window_start: Optional[datetime] = None,
    ) -> SalesOrderItem:
        unit_price = to_money(unit_price)
        item = SalesOrderItem(
            sales_order=order,
            concept_type=concept_type,
            concept=concept,
            description=description,
            qty=qty,
            unit_price=unit_price,
            is_paid=False,
            tolerance_window_start=tolerance_window_start,
            created_at=now,
        )
        db.add(item)
        SalesOrderLedger.add_charge(order, unit_price * qty)
        return item

    @staticmethod
    def unpaid_items(order: SalesOrder, concept_type: Optional[ConceptType] = None) -> List[SalesOrderItem]:
        return [
            item for item in order.items
            if not item.is_paid and (concept_type is None or item.concept_type == concept_type)
        ]

    @staticmethod
    def mark_items_paid(
        order: SalesOrder,
        now: datetime,
        method: Optional[PaymentMethod],
        concept_type: Optional[ConceptType] = None,
    ) -> int:
        """Marca como pagadas TODAS las partidas pendientes del tipo (o de la orden)"""
        items = BillingEngine.unpaid_items(order, concept_type)
        for item in items:
            item.is_paid = True
            item.paid_at = now
            item.payment_method = method
        return len(items)
