"""
Payment Allocator - reparte un total entre instrumentos de pago (multipago)

Un multipago se guarda como un pago principal (método PENDIENTE, monto = suma
aplicada) y un subpago por instrumento con parent_payment_id al principal.
Principal y subpagos se escriben dentro de un mismo SAVEPOINT: si falla el
lote de subpagos se deshace también el principal.
"""

import time
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models.pago import (
    Payment, PaymentConcept, PaymentMethod, PaymentStatus, PaymentType,
    REFERENCE_PREFIX, SUBPAYMENT_PREFIX,
)
from models.venta import SalesOrder
from services.errors import ErrorCode, PersistenceError, ValidationError
from utils.money import ZERO, parse_money, to_money

_BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def _base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_reference(prefix: str = "CHK", now: Optional[datetime] = None) -> str:
    """Referencia única: PREFIJO-<timestamp base36>-<aleatorio>"""
    moment = now.timestamp() if now is not None else time.time()
    timestamp = _base36(int(moment * 1000))
    random_part = uuid.uuid4().hex[:6].upper()
    return f"{prefix}-{timestamp}-{random_part}"


class PaymentEntry:
    """Entrada de pago para multipagos"""

    def __init__(self, amount, method, terminal: Optional[str] = None, reference: Optional[str] = None):
        self.amount = amount
        self.method = method
        self.terminal = (terminal or "").strip() or None
        self.reference = reference

    def __repr__(self):
        return f"PaymentEntry({self.amount}, {self.method}, terminal={self.terminal})"


def validate_entries(entries: Optional[Iterable[PaymentEntry]]) -> List[PaymentEntry]:
    """
    Valida cada entrada y descarta las de monto 0.
    - amount >= 0
    - método real (no PENDIENTE)
    - terminal obligatoria si y solo si el método es TARJETA
    """
    valid = []
    for index, entry in enumerate(entries or []):
        try:
            method = PaymentMethod(entry.method)
        except ValueError:
            raise ValidationError(ErrorCode.INVALID_PAYMENT_ENTRY, f"Pago {index + 1}: método '{entry.method}' no existe")
        try:
            entry.amount = parse_money(entry.amount)
        except ValueError:
            raise ValidationError(ErrorCode.INVALID_PAYMENT_ENTRY, f"Pago {index + 1}: monto '{entry.amount}' no es válido")
        if method == PaymentMethod.PENDIENTE:
            raise ValidationError(ErrorCode.INVALID_PAYMENT_ENTRY, f"Pago {index + 1}: PENDIENTE no es un instrumento de pago")
        if entry.amount < ZERO:
            raise ValidationError(ErrorCode.INVALID_PAYMENT_ENTRY, f"Pago {index + 1}: el monto no puede ser negativo")
        if method == PaymentMethod.TARJETA and not entry.terminal:
            raise ValidationError(ErrorCode.INVALID_PAYMENT_ENTRY, f"Pago {index + 1}: pago con tarjeta requiere terminal")
        if method != PaymentMethod.TARJETA and entry.terminal:
            raise ValidationError(ErrorCode.INVALID_PAYMENT_ENTRY, f"Pago {index + 1}: terminal solo aplica a pagos con tarjeta")
        entry.method = method
        if entry.amount > ZERO:
            valid.append(entry)
    return valid


class AllocationPlan:
    """
    Reparto calculado antes de escribir.
    remaining = total - total_paid (negativo = cambio a devolver).
    El cambio solo se entrega en efectivo: se descuenta de las entradas en
    efectivo y nunca se guarda como pago de la orden.
    """

    def __init__(self, total, entries: List[PaymentEntry]):
        self.total: Decimal = to_money(total)
        self.entries = entries
        self.total_paid: Decimal = to_money(sum((e.amount for e in entries), ZERO))
        self.remaining: Decimal = self.total - self.total_paid
        self.change: Decimal = max(ZERO, -self.remaining)
        self.applied_amounts: List[Decimal] = self._apply_change()
        self.applied: Decimal = to_money(sum(self.applied_amounts, ZERO))

    def _apply_change(self) -> List[Decimal]:
        amounts = [e.amount for e in self.entries]
        pending_change = self.change
        if pending_change <= ZERO:
            return amounts
        cash_total = sum((e.amount for e in self.entries if e.method == PaymentMethod.EFECTIVO), ZERO)
        if cash_total < pending_change:
            raise ValidationError(
                ErrorCode.INVALID_PAYMENT_ENTRY,
                "El excedente solo puede devolverse en efectivo; tarjeta/transferencia no pueden superar el total",
            )
        # Cambio se descuenta de las entradas en efectivo, de la última a la primera
        for index in reversed(range(len(amounts))):
            if pending_change <= ZERO:
                break
            if self.entries[index].method != PaymentMethod.EFECTIVO:
                continue
            taken = min(amounts[index], pending_change)
            amounts[index] = amounts[index] - taken
            pending_change -= taken
        return amounts

    def to_dict(self) -> dict:
        return {
            "total": float(self.total),
            "total_paid": float(self.total_paid),
            "applied": float(self.applied),
            "remaining": float(self.remaining),
            "change": float(self.change),
        }


def plan_allocation(total, entries: Optional[Iterable[PaymentEntry]]) -> AllocationPlan:
    return AllocationPlan(total, validate_entries(entries))


class AllocationResult:
    def __init__(self, plan: AllocationPlan, main_payment: Optional[Payment] = None, sub_payments: Optional[List[Payment]] = None):
        self.plan = plan
        self.main_payment = main_payment
        self.sub_payments = sub_payments or []

    @property
    def applied(self) -> Decimal:
        return self.plan.applied

    def to_dict(self) -> dict:
        data = self.plan.to_dict()
        data["main_payment_id"] = self.main_payment.id if self.main_payment else None
        data["sub_payments"] = [p.to_dict() for p in self.sub_payments]
        return data


class PaymentAllocator:

    @staticmethod
    def allocate(
        db: Session,
        order: SalesOrder,
        plan: AllocationPlan,
        concept: PaymentConcept,
        now: datetime,
        usuario: Optional[str] = None,
    ) -> AllocationResult:
        """Escribe principal + subpagos de un plan ya validado (no toca el ledger)"""
        if plan.applied <= ZERO:
            return AllocationResult(plan)

        savepoint = db.begin_nested()
        try:
            main = Payment(
                sales_order=order,
                amount=plan.applied,
                method=PaymentMethod.PENDIENTE,
                concept=concept,
                status=PaymentStatus.PAGADO,
                payment_type=PaymentType.COMPLETO,
                reference=generate_reference(REFERENCE_PREFIX.get(concept, "CHK"), now),
                usuario=usuario,
                created_at=now,
            )
            db.add(main)
            db.flush()

            subs = []
            for entry, amount in zip(plan.entries, plan.applied_amounts):
                if amount <= ZERO:
                    continue
                subs.append(Payment(
                    sales_order=order,
                    amount=amount,
                    method=entry.method,
                    terminal=entry.terminal if entry.method == PaymentMethod.TARJETA else None,
                    concept=concept,
                    status=PaymentStatus.PAGADO,
                    payment_type=PaymentType.PARCIAL,
                    parent_payment_id=main.id,
                    reference=entry.reference or generate_reference(SUBPAYMENT_PREFIX, now),
                    usuario=usuario,
                    created_at=now,
                ))
            db.add_all(subs)
            db.flush()
            savepoint.commit()
        except SQLAlchemyError as e:
            savepoint.rollback()
            raise PersistenceError(ErrorCode.PERSISTENCE_ERROR, f"No se pudo registrar el multipago: {e}")

        return AllocationResult(plan, main, subs)

    @staticmethod
    def record_single(
        db: Session,
        order: SalesOrder,
        amount,
        method: PaymentMethod,
        concept: PaymentConcept,
        now: datetime,
        payment_type: PaymentType = PaymentType.COMPLETO,
        terminal: Optional[str] = None,
        usuario: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Payment:
        """Pago con un solo instrumento (checkout, extras, devoluciones)"""
        payment = Payment(
            sales_order=order,
            amount=to_money(amount),
            method=method,
            terminal=terminal if method == PaymentMethod.TARJETA else None,
            concept=concept,
            status=PaymentStatus.PAGADO,
            payment_type=payment_type,
            reference=generate_reference(REFERENCE_PREFIX.get(concept, "CHK"), now),
            usuario=usuario,
            notes=notes,
            created_at=now,
        )
        db.add(payment)
        return payment
