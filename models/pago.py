"""
Pagos de órdenes de venta.
Un multipago es un pago principal (método PENDIENTE) con subpagos por instrumento.
"""

from datetime import datetime
import enum

from sqlalchemy import (
    Column, Integer, String, DateTime, Numeric, ForeignKey, Index, Enum as SQLEnum
)
from sqlalchemy.orm import relationship

from database.conexion import Base


class PaymentMethod(str, enum.Enum):
    """Métodos de pago permitidos"""
    EFECTIVO = "EFECTIVO"
    TARJETA = "TARJETA"
    TRANSFERENCIA = "TRANSFERENCIA"
    PENDIENTE = "PENDIENTE"  # Solo para el pago principal de un multipago


class PaymentStatus(str, enum.Enum):
    PAGADO = "PAGADO"
    PENDIENTE = "PENDIENTE"
    CANCELADO = "CANCELADO"


class PaymentType(str, enum.Enum):
    COMPLETO = "COMPLETO"
    PARCIAL = "PARCIAL"


class PaymentConcept(str, enum.Enum):
    CHECKOUT = "CHECKOUT"
    PERSONA_EXTRA = "PERSONA_EXTRA"
    HORA_EXTRA = "HORA_EXTRA"
    TOLERANCIA_EXPIRADA = "TOLERANCIA_EXPIRADA"
    CONSUMO = "CONSUMO"
    SERVICIO = "SERVICIO"
    REEMBOLSO = "REEMBOLSO"


# Prefijos para referencias de pago
REFERENCE_PREFIX = {
    PaymentConcept.CHECKOUT: "CHK",
    PaymentConcept.PERSONA_EXTRA: "PEX",
    PaymentConcept.HORA_EXTRA: "HEX",
    PaymentConcept.TOLERANCIA_EXPIRADA: "TOL",
    PaymentConcept.CONSUMO: "CON",
    PaymentConcept.SERVICIO: "CHK",
    PaymentConcept.REEMBOLSO: "REF",
}
SUBPAYMENT_PREFIX = "SUB"


class Payment(Base):
    """
    Transacciones de dinero por orden.
    Montos negativos representan devoluciones (ajustes).
    """
    __tablename__ = "payments"
    __table_args__ = (
        Index("idx_payment_order", "sales_order_id"),
        Index("idx_payment_parent", "parent_payment_id"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    sales_order_id = Column(Integer, ForeignKey("sales_orders.id", ondelete="CASCADE"), nullable=False)

    amount = Column(Numeric(12, 2), nullable=False)
    method = Column(SQLEnum(PaymentMethod, name="payment_method", native_enum=False, create_constraint=True, length=20), nullable=False)
    terminal = Column(String(40), nullable=True)  # Obligatoria si method == TARJETA
    concept = Column(SQLEnum(PaymentConcept, name="payment_concept", native_enum=False, length=30), nullable=False)
    status = Column(SQLEnum(PaymentStatus, name="payment_status", native_enum=False, length=20), nullable=False, default=PaymentStatus.PAGADO)
    payment_type = Column(SQLEnum(PaymentType, name="payment_type", native_enum=False, length=20), nullable=False, default=PaymentType.COMPLETO)

    parent_payment_id = Column(Integer, ForeignKey("payments.id", ondelete="CASCADE"), nullable=True)
    reference = Column(String(60), nullable=False, unique=True)

    usuario = Column(String(50), nullable=True)
    notes = Column(String(200), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    sales_order = relationship("SalesOrder", back_populates="payments")
    parent = relationship("Payment", remote_side=[id], back_populates="sub_payments")
    sub_payments = relationship("Payment", back_populates="parent")

    def to_dict(self):
        return {
            "id": self.id,
            "amount": float(self.amount) if self.amount is not None else 0.0,
            "method": self.method.value if self.method else None,
            "terminal": self.terminal,
            "concept": self.concept.value if self.concept else None,
            "status": self.status.value if self.status else None,
            "payment_type": self.payment_type.value if self.payment_type else None,
            "parent_payment_id": self.parent_payment_id,
            "reference": self.reference,
        }
