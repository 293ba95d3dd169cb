"""
Modelo de Habitación y Tipo de Habitación
Incluye: estado operativo (LIBRE/OCUPADA/SUCIA/BLOQUEADA) y reglas de cobro por tipo
"""

from datetime import datetime
import enum

from sqlalchemy import (
    Column, Integer, String, ForeignKey, DateTime, Boolean,
    Numeric, Text, Index, Enum as SQLEnum
)
from sqlalchemy.orm import relationship

from database.conexion import Base


class RoomStatus(str, enum.Enum):
    """Estados operativos de una habitación"""
    LIBRE = "LIBRE"
    OCUPADA = "OCUPADA"
    SUCIA = "SUCIA"
    BLOQUEADA = "BLOQUEADA"


class RoomType(Base):
    """
    Tipo de habitación con sus reglas de cobro por tiempo.
    Ejemplo: Sencilla, Doble, Jacuzzi, Torre
    """
    __tablename__ = "room_types"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(60), nullable=False, unique=True)
    base_price = Column(Numeric(12, 2), nullable=False, default=0)

    # Horas incluidas en el precio base (default 4 si no se configuran)
    weekday_hours = Column(Integer, nullable=True)
    weekend_hours = Column(Integer, nullable=True)

    max_people = Column(Integer, nullable=False, default=2)
    extra_person_price = Column(Numeric(12, 2), nullable=False, default=0)
    extra_hour_price = Column(Numeric(12, 2), nullable=False, default=0)

    # Hotel/torre: sin tolerancia de salida
    is_hotel = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=datetime.utcnow)

    rooms = relationship("Room", back_populates="room_type")


class Room(Base):
    __tablename__ = "rooms"
    __table_args__ = (
        Index("idx_room_status", "status"),
        Index("idx_room_type", "room_type_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    number = Column(String(10), nullable=False, unique=True)
    room_type_id = Column(Integer, ForeignKey("room_types.id"), nullable=False)
    status = Column(
        SQLEnum(RoomStatus, name="room_status", native_enum=False, create_constraint=True, length=20),
        nullable=False,
        default=RoomStatus.LIBRE,
    )
    notes = Column(Text, nullable=True)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    room_type = relationship("RoomType", back_populates="rooms")
    stays = relationship("RoomStay", back_populates="room")

    def __repr__(self):
        return f"<Room {self.number} {self.status}>"
