"""
Orden de venta ligada a una estancia y sus partidas
"""

from datetime import datetime
import enum

from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, Numeric, ForeignKey,
    UniqueConstraint, Index, Enum as SQLEnum
)
from sqlalchemy.orm import relationship

from database.conexion import Base
from models.pago import PaymentConcept, PaymentMethod


class OrderStatus(str, enum.Enum):
    OPEN = "OPEN"
    ENDED = "ENDED"
    CANCELLED = "CANCELLED"


class ConceptType(str, enum.Enum):
    """Tipos de concepto para partidas de venta"""
    BASE_STAY = "BASE_STAY"
    EXTRA_PERSON = "EXTRA_PERSON"
    EXTRA_HOUR = "EXTRA_HOUR"
    CONSUMPTION = "CONSUMPTION"


class SalesOrder(Base):
    """
    Cuenta de la estancia.
    Invariante: remaining_amount == total - paid_amount tras cada operación compuesta
    """
    __tablename__ = "sales_orders"
    __table_args__ = (
        Index("idx_sales_order_status", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    subtotal = Column(Numeric(12, 2), nullable=False, default=0)
    tax = Column(Numeric(12, 2), nullable=False, default=0)
    total = Column(Numeric(12, 2), nullable=False, default=0)
    paid_amount = Column(Numeric(12, 2), nullable=False, default=0)
    remaining_amount = Column(Numeric(12, 2), nullable=False, default=0)
    status = Column(
        SQLEnum(OrderStatus, name="order_status", native_enum=False, create_constraint=True, length=20),
        nullable=False,
        default=OrderStatus.OPEN,
    )

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    stay = relationship("RoomStay", back_populates="sales_order", uselist=False)
    items = relationship("SalesOrderItem", back_populates="sales_order", order_by="SalesOrderItem.id")
    payments = relationship("Payment", back_populates="sales_order", order_by="Payment.id")


class SalesOrderItem(Base):
    """
    Partidas: estancia base, personas extra, horas extra, consumos.
    Solo se agregan, nunca se borran.
    """
    __tablename__ = "sales_order_items"
    __table_args__ = (
        # Un solo cargo por ventana de tolerancia
        UniqueConstraint("sales_order_id", "tolerance_window_start", name="uq_item_tolerance_window"),
        Index("idx_item_order", "sales_order_id"),
        Index("idx_item_concept_type", "concept_type"),
    )

    id = Column(Integer, primary_key=True, index=True)
    sales_order_id = Column(Integer, ForeignKey("sales_orders.id", ondelete="CASCADE"), nullable=False)

    concept_type = Column(SQLEnum(ConceptType, name="concept_type", native_enum=False, length=20), nullable=False)
    concept = Column(SQLEnum(PaymentConcept, name="item_concept", native_enum=False, length=30), nullable=True)
    description = Column(String(200), nullable=True)

    qty = Column(Integer, nullable=False, default=1)
    unit_price = Column(Numeric(12, 2), nullable=False)

    is_paid = Column(Boolean, nullable=False, default=False)
    paid_at = Column(DateTime, nullable=True)
    payment_method = Column(SQLEnum(PaymentMethod, name="item_payment_method", native_enum=False, length=20), nullable=True)

    tolerance_window_start = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False)

    sales_order = relationship("SalesOrder", back_populates="items")

    @property
    def line_total(self):
        return (self.unit_price or 0) * (self.qty or 0)
