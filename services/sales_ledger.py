"""
Sales Order Ledger - contabilidad aditiva de la orden ligada a una estancia
"""

from decimal import Decimal

from sqlalchemy.orm import Session

from models.venta import OrderStatus, SalesOrder
from services.errors import ErrorCode, PersistenceError
from utils.money import ZERO, to_money


class SalesOrderLedger:

    @staticmethod
    def open_order(db: Session) -> SalesOrder:
        order = SalesOrder(
            subtotal=ZERO,
            tax=ZERO,
            total=ZERO,
            paid_amount=ZERO,
            remaining_amount=ZERO,
            status=OrderStatus.OPEN,
        )
        db.add(order)
        return order

    @staticmethod
    def add_charge(order: SalesOrder, amount) -> None:
        """Cargo (o abono si es negativo) a la cuenta"""
        amount = to_money(amount)
        order.subtotal = to_money(order.subtotal) + amount
        order.total = order.subtotal + to_money(order.tax)
        order.remaining_amount = to_money(order.remaining_amount) + amount

    @staticmethod
    def record_payment(order: SalesOrder, amount) -> None:
        """Pago aplicado (negativo para devoluciones)"""
        amount = to_money(amount)
        order.paid_amount = to_money(order.paid_amount) + amount
        order.remaining_amount = to_money(order.remaining_amount) - amount

    @staticmethod
    def set_status(order: SalesOrder, status: OrderStatus) -> None:
        order.status = status

    @staticmethod
    def get_remaining(order: SalesOrder) -> Decimal:
        return to_money(order.remaining_amount)

    @staticmethod
    def check(order: SalesOrder) -> None:
        """remaining_amount == total - paid_amount"""
        expected = to_money(order.total) - to_money(order.paid_amount)
        if to_money(order.remaining_amount) != expected:
            raise PersistenceError(
                ErrorCode.LEDGER_INCONSISTENT,
                f"Orden {order.id}: saldo {order.remaining_amount} no coincide con total-pagado ({expected})",
            )

    @staticmethod
    def to_dict(order: SalesOrder) -> dict:
        return {
            "id": order.id,
            "subtotal": float(to_money(order.subtotal)),
            "tax": float(to_money(order.tax)),
            "total": float(to_money(order.total)),
            "paid_amount": float(to_money(order.paid_amount)),
            "remaining_amount": float(to_money(order.remaining_amount)),
            "status": order.status.value if order.status else None,
        }
