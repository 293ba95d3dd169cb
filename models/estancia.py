"""
Modelos de Estancia (RoomStay) y su auditoría
Incluye: RoomStay, RoomChange (cambios de habitación), StayEvent (eventos inmutables)
"""

from datetime import datetime
import enum

from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, Text, Numeric, Boolean,
    Index, JSON, text, Enum as SQLEnum
)
from sqlalchemy.orm import relationship

from database.conexion import Base


class StayStatus(str, enum.Enum):
    """Estados de una estancia. FINALIZADA y CANCELADA son terminales"""
    ACTIVA = "ACTIVA"
    FINALIZADA = "FINALIZADA"
    CANCELADA = "CANCELADA"


class ToleranceType(str, enum.Enum):
    PERSON_LEFT = "PERSON_LEFT"  # Una persona salió
    ROOM_EMPTY = "ROOM_EMPTY"    # Todos salieron


class StayEventType(str, enum.Enum):
    """Tipos de eventos para auditoría"""
    CHECKIN = "CHECKIN"
    EXTRA_PERSON = "EXTRA_PERSON"
    REMOVE_PERSON = "REMOVE_PERSON"
    EXTRA_HOUR = "EXTRA_HOUR"
    TOLERANCE_START = "TOLERANCE_START"
    TOLERANCE_RETURN = "TOLERANCE_RETURN"
    TOLERANCE_CHARGE = "TOLERANCE_CHARGE"
    CONSUMPTION = "CONSUMPTION"
    PAYMENT = "PAYMENT"
    CHECKOUT = "CHECKOUT"
    CANCEL = "CANCEL"
    ROOM_CHANGE = "ROOM_CHANGE"
    VEHICLE_UPDATE = "VEHICLE_UPDATE"
    VALET_UPDATE = "VALET_UPDATE"


class RoomStay(Base):
    """
    Una ocupación de habitación ligada 1:1 a una orden de venta.
    Nunca se borra: termina como FINALIZADA o CANCELADA.
    """
    __tablename__ = "room_stays"
    __table_args__ = (
        Index("idx_stay_status", "status"),
        Index("idx_stay_room", "room_id"),
        # Una sola estancia ACTIVA por habitación
        Index(
            "uq_stay_room_activa",
            "room_id",
            unique=True,
            sqlite_where=text("status = 'ACTIVA'"),
            postgresql_where=text("status = 'ACTIVA'"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    room_id = Column(Integer, ForeignKey("rooms.id", ondelete="RESTRICT"), nullable=False)
    sales_order_id = Column(Integer, ForeignKey("sales_orders.id", ondelete="RESTRICT"), nullable=False, unique=True)
    status = Column(
        SQLEnum(StayStatus, name="stay_status", native_enum=False, create_constraint=True, length=20),
        nullable=False,
        default=StayStatus.ACTIVA,
    )

    check_in_at = Column(DateTime, nullable=False)
    expected_check_out_at = Column(DateTime, nullable=False)
    actual_check_out_at = Column(DateTime, nullable=True)

    current_people = Column(Integer, nullable=False, default=1)
    total_people = Column(Integer, nullable=False, default=1)  # Máximo histórico de personas

    # Tolerancia de salida (solo motel, no hotel/torre)
    tolerance_started_at = Column(DateTime, nullable=True)
    tolerance_type = Column(
        SQLEnum(ToleranceType, name="tolerance_type", native_enum=False, create_constraint=True, length=20),
        nullable=True,
    )

    # Vehículo y cochero
    vehicle_plate = Column(String(20), nullable=True)
    vehicle_brand = Column(String(60), nullable=True)
    vehicle_model = Column(String(60), nullable=True)
    valet_employee_id = Column(Integer, nullable=True)

    cancel_reason = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    room = relationship("Room", back_populates="stays")
    sales_order = relationship("SalesOrder", back_populates="stay")
    room_changes = relationship("RoomChange", back_populates="stay", order_by="RoomChange.id")
    events = relationship("StayEvent", back_populates="stay", order_by="StayEvent.id")

    def is_active(self) -> bool:
        return self.status == StayStatus.ACTIVA

    def has_tolerance(self) -> bool:
        return self.tolerance_started_at is not None

    def vehicle_dict(self) -> dict:
        return {
            "plate": self.vehicle_plate,
            "brand": self.vehicle_brand,
            "model": self.vehicle_model,
        }


class RoomChange(Base):
    """Historial de cambios de habitación de una estancia"""
    __tablename__ = "room_changes"
    __table_args__ = (
        Index("idx_room_change_stay", "stay_id"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    stay_id = Column(Integer, ForeignKey("room_stays.id", ondelete="CASCADE"), nullable=False)
    from_room_id = Column(Integer, ForeignKey("rooms.id", ondelete="RESTRICT"), nullable=False)
    to_room_id = Column(Integer, ForeignKey("rooms.id", ondelete="RESTRICT"), nullable=False)
    reason = Column(String(200), nullable=False)
    price_difference = Column(Numeric(12, 2), nullable=False, default=0)
    keep_time = Column(Boolean, nullable=False, default=True)
    usuario = Column(String(50), nullable=True)
    created_at = Column(DateTime, nullable=False)

    stay = relationship("RoomStay", back_populates="room_changes")


class StayEvent(Base):
    """
    Auditoría inmutable de todos los eventos de una estancia.
    Permite reconstruir el histórico de cargos, pagos y movimientos.
    """
    __tablename__ = "stay_events"
    __table_args__ = (
        Index("idx_stay_event_stay", "stay_id"),
        Index("idx_stay_event_tipo", "event_type"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    stay_id = Column(Integer, ForeignKey("room_stays.id", ondelete="CASCADE"), nullable=False)
    event_type = Column(SQLEnum(StayEventType, name="stay_event_type", native_enum=False, length=30), nullable=False)
    usuario = Column(String(50), nullable=False)
    timestamp = Column(DateTime, nullable=False)
    payload = Column(JSON, nullable=True)
    description = Column(Text, nullable=True)

    stay = relationship("RoomStay", back_populates="events")

    def to_dict(self):
        """Convertir evento a diccionario para respuesta"""
        return {
            "id": self.id,
            "tipo": self.event_type.value,
            "usuario": self.usuario,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "descripcion": self.description,
            "payload": self.payload,
        }
