"""
Archivo de inicialización del paquete models.
Expone todas las clases para que SQLAlchemy (Base.metadata) las detecte
al importar 'models'.
"""

# 1. Pagos (sin dependencias)
from .pago import (
    Payment,
    PaymentMethod,
    PaymentStatus,
    PaymentType,
    PaymentConcept,
)

# 2. Habitaciones
from .habitacion import RoomStatus, RoomType, Room

# 3. Órdenes de venta
from .venta import OrderStatus, ConceptType, SalesOrder, SalesOrderItem

# 4. Estancias y auditoría
from .estancia import (
    StayStatus,
    ToleranceType,
    StayEventType,
    RoomStay,
    RoomChange,
    StayEvent,
)

__all__ = [
    "Payment", "PaymentMethod", "PaymentStatus", "PaymentType", "PaymentConcept",
    "RoomStatus", "RoomType", "Room",
    "OrderStatus", "ConceptType", "SalesOrder", "SalesOrderItem",
    "StayStatus", "ToleranceType", "StayEventType", "RoomStay", "RoomChange", "StayEvent",
]
