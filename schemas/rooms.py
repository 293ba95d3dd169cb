"""
Schemas Pydantic para habitaciones (cambio manual de estado)
"""

from pydantic import BaseModel

from models.habitacion import RoomStatus


class RoomStatusUpdate(BaseModel):
    status: RoomStatus
