"""
Endpoints de habitaciones: estancia activa y cambio manual de estado
"""

from fastapi import APIRouter, Depends, Path
from sqlalchemy.orm import Session

from database.conexion import get_db
from endpoints.stays import get_stay_service
from schemas.rooms import RoomStatusUpdate
from services.room_status import RoomStatusRegistry
from services.stay_lifecycle import StayLifecycleService
from utils.api_response import result_response


router = APIRouter(prefix="/rooms", tags=["Habitaciones"])


@router.get("/{room_id}/active-stay")
def get_active_stay(room_id: int = Path(..., gt=0), service: StayLifecycleService = Depends(get_stay_service)):
    return result_response(service.get_active_stay(room_id))


@router.put("/{room_id}/status")
def set_room_status(data: RoomStatusUpdate, room_id: int = Path(..., gt=0), db: Session = Depends(get_db)):
    """Limpieza terminada, bloqueo por mantenimiento o desbloqueo"""
    return result_response(RoomStatusRegistry.set_status(db, room_id, data.status))
