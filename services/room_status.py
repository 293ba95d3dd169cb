"""
Room Status Registry - transiciones válidas del estado operativo de una habitación

    LIBRE -> OCUPADA      (solo check-in / cambio de habitación)
    OCUPADA -> SUCIA      (solo checkout / cancelación / cambio de habitación)
    SUCIA -> LIBRE        (limpieza terminada)
    LIBRE -> BLOQUEADA    (mantenimiento)
    BLOQUEADA -> LIBRE
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models.habitacion import Room, RoomStatus
from services.errors import ConcurrencyConflict, ErrorCode, NotFound, StateConflict, StayError
from utils.logging_utils import log_event
from utils.result import Result


ALLOWED_TRANSITIONS = {
    RoomStatus.LIBRE: {RoomStatus.OCUPADA, RoomStatus.BLOQUEADA},
    RoomStatus.OCUPADA: {RoomStatus.SUCIA},
    RoomStatus.SUCIA: {RoomStatus.LIBRE},
    RoomStatus.BLOQUEADA: {RoomStatus.LIBRE},
}

# Aristas que solo el ciclo de vida de la estancia puede recorrer
LIFECYCLE_ONLY = {
    (RoomStatus.LIBRE, RoomStatus.OCUPADA),
    (RoomStatus.OCUPADA, RoomStatus.SUCIA),
}


class RoomStatusRegistry:

    @staticmethod
    def can_transition(current: RoomStatus, target: RoomStatus) -> bool:
        return target in ALLOWED_TRANSITIONS.get(current, set())

    @staticmethod
    def _check_edge(current: RoomStatus, target: RoomStatus, room_number: str) -> None:
        if not RoomStatusRegistry.can_transition(current, target):
            raise StateConflict(
                ErrorCode.INVALID_TRANSITION,
                f"Habitación {room_number}: transición {current.value} -> {target.value} no permitida",
            )

    @staticmethod
    def transition(room: Room, target: RoomStatus) -> Room:
        """Escritura de estado validada; no toca estancias ni órdenes"""
        target = RoomStatus(target)
        RoomStatusRegistry._check_edge(room.status, target, room.number)
        room.status = target
        return room

    @staticmethod
    def claim(
        db: Session, room: Room, target: RoomStatus = RoomStatus.OCUPADA, now: Optional[datetime] = None,
    ) -> Room:
        """
        Escritura condicional (compare-and-swap):
        UPDATE rooms SET status=target WHERE id=? AND status=LIBRE.
        Si otra transacción ganó la habitación, no se afecta ninguna fila.
        Sin `now` la columna updated_at usa su onupdate.
        """
        expected = RoomStatus.LIBRE
        RoomStatusRegistry._check_edge(expected, target, room.number)
        values = {Room.status: target}
        if now is not None:
            values[Room.updated_at] = now
        affected = (
            db.query(Room)
            .filter(Room.id == room.id, Room.status == expected)
            .update(values, synchronize_session=False)
        )
        if affected != 1:
            raise ConcurrencyConflict(f"Habitación {room.number} fue tomada por otra operación")
        db.refresh(room)
        return room

    @staticmethod
    def set_status(db: Session, room_id: int, target: RoomStatus, usuario: str = "sistema") -> Result:
        """
        Cambio manual de estado (limpieza, bloqueo, desbloqueo).
        LIBRE->OCUPADA y OCUPADA->SUCIA quedan reservadas al ciclo de vida.
        """
        try:
            room = db.query(Room).filter(Room.id == room_id).first()
            if not room:
                raise NotFound(f"Habitación {room_id} no encontrada")
            try:
                target = RoomStatus(target)
            except ValueError:
                raise StateConflict(ErrorCode.INVALID_TRANSITION, f"Estado '{target}' no existe")
            previous = room.status
            if (previous, target) in LIFECYCLE_ONLY:
                raise StateConflict(
                    ErrorCode.INVALID_TRANSITION,
                    f"{previous.value} -> {target.value} solo ocurre por check-in o checkout",
                )
            RoomStatusRegistry.transition(room, target)
            db.commit()

            log_event("room_status", usuario, "Cambiar estado", f"room_id={room_id}, {previous.value} -> {target.value}")
            return Result.ok({"room_id": room.id, "number": room.number, "previous": previous.value, "status": target.value})

        except StayError as e:
            db.rollback()
            log_event("room_status", usuario, "Error", f"{e.code.value}: {e.message}", nivel=logging.WARNING)
            return Result.fail(e.message, e.code.value, e.category)
        except SQLAlchemyError as e:
            db.rollback()
            error_msg = f"Error cambiando estado de habitación: {str(e)}"
            log_event("room_status", usuario, "Error", error_msg, nivel=logging.ERROR)
            return Result.fail(error_msg, ErrorCode.PERSISTENCE_ERROR.value, "persistence")
