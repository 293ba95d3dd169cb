"""
Endpoints de estancias por tiempo (motel)
Check-in, extras, tolerancia, checkout, cancelación y cambio de habitación.
Cada endpoint traduce el request a una llamada del StayLifecycleService y
el Result a una respuesta JSON.
"""

from fastapi import APIRouter, Depends, Path, status
from sqlalchemy.orm import Session

from database.conexion import get_db
from schemas.stays import (
    CancelStayRequest, ChangeRoomRequest, CheckoutRequest, ConsumptionRequest,
    PayExtrasRequest, QuickCheckInRequest, StartStayRequest, StartToleranceRequest,
    UpdateValetRequest, VehicleRequest,
)
from services.billing_engine import ConsumptionEntry
from services.payment_allocator import PaymentEntry
from services.stay_lifecycle import StayLifecycleService
from utils.api_response import result_response
from utils.notifications import LogNotificationSink, NotificationSink
from utils.timezone import Clock, SystemClock


router = APIRouter(prefix="/stays", tags=["Estancias"])


# ========================================================================
# DEPENDENCIAS
# ========================================================================

def get_clock() -> Clock:
    return SystemClock()


def get_notifier() -> NotificationSink:
    return LogNotificationSink()


def get_stay_service(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    notifier: NotificationSink = Depends(get_notifier),
) -> StayLifecycleService:
    return StayLifecycleService(db, clock=clock, notifier=notifier)


# ========================================================================
# ENTRADA
# ========================================================================

@router.post("")
def start_stay(data: StartStayRequest, service: StayLifecycleService = Depends(get_stay_service)):
    """Check-in con pago (uno o varios instrumentos)"""
    payments = [PaymentEntry(p.amount, p.method, p.terminal, p.reference) for p in data.payments]
    result = service.start_stay(
        room_id=data.room_id,
        initial_people=data.initial_people,
        payments=payments,
        entry_time=data.entry_time,
        vehicle=data.vehicle.model_dump() if data.vehicle else None,
        valet_employee_id=data.valet_employee_id,
    )
    return result_response(result, status.HTTP_201_CREATED)


@router.post("/quick")
def quick_check_in(data: QuickCheckInRequest, service: StayLifecycleService = Depends(get_stay_service)):
    """Check-in sin cobro; el total queda pendiente"""
    result = service.quick_check_in(
        room_id=data.room_id,
        initial_people=data.initial_people,
        entry_time=data.entry_time,
        vehicle=data.vehicle.model_dump() if data.vehicle else None,
        valet_employee_id=data.valet_employee_id,
    )
    return result_response(result, status.HTTP_201_CREATED)


# ========================================================================
# PERSONAS Y HORAS
# ========================================================================

@router.post("/{stay_id}/people")
def add_extra_person(stay_id: int = Path(..., gt=0), service: StayLifecycleService = Depends(get_stay_service)):
    return result_response(service.add_extra_person(stay_id))


@router.delete("/{stay_id}/people")
def remove_person(stay_id: int = Path(..., gt=0), service: StayLifecycleService = Depends(get_stay_service)):
    return result_response(service.remove_person(stay_id))


@router.post("/{stay_id}/extra-hours")
def add_extra_hour(stay_id: int = Path(..., gt=0), service: StayLifecycleService = Depends(get_stay_service)):
    return result_response(service.add_extra_hour(stay_id))


# ========================================================================
# TOLERANCIA
# ========================================================================

@router.post("/{stay_id}/tolerance")
def start_tolerance(
    data: StartToleranceRequest,
    stay_id: int = Path(..., gt=0),
    service: StayLifecycleService = Depends(get_stay_service),
):
    return result_response(service.start_tolerance(stay_id, data.tolerance_type))


@router.get("/{stay_id}/tolerance")
def get_tolerance(stay_id: int = Path(..., gt=0), service: StayLifecycleService = Depends(get_stay_service)):
    return result_response(service.is_tolerance_expired(stay_id))


@router.post("/{stay_id}/tolerance/return")
def register_return(stay_id: int = Path(..., gt=0), service: StayLifecycleService = Depends(get_stay_service)):
    return result_response(service.register_return(stay_id))


@router.post("/{stay_id}/tolerance/charge")
def charge_tolerance(stay_id: int = Path(..., gt=0), service: StayLifecycleService = Depends(get_stay_service)):
    """Idempotente: repetir la llamada no genera un segundo cargo"""
    return result_response(service.charge_tolerance_expired(stay_id))


# ========================================================================
# CONSUMOS Y PAGOS
# ========================================================================

@router.post("/{stay_id}/consumptions")
def add_consumption(
    data: ConsumptionRequest,
    stay_id: int = Path(..., gt=0),
    service: StayLifecycleService = Depends(get_stay_service),
):
    entries = [ConsumptionEntry(line.description, line.qty, line.unit_price) for line in data.items]
    return result_response(service.add_consumption(stay_id, entries))


@router.post("/{stay_id}/extras/pay")
def pay_extras(
    data: PayExtrasRequest,
    stay_id: int = Path(..., gt=0),
    service: StayLifecycleService = Depends(get_stay_service),
):
    result = service.pay_extras(stay_id, data.amount, data.method, data.concept_type, data.terminal)
    return result_response(result)


# ========================================================================
# SALIDA
# ========================================================================

@router.post("/{stay_id}/checkout/prepare")
def prepare_checkout(stay_id: int = Path(..., gt=0), service: StayLifecycleService = Depends(get_stay_service)):
    """Cobra horas de salida tardía y devuelve el saldo a pagar"""
    return result_response(service.prepare_checkout(stay_id))


@router.post("/{stay_id}/checkout")
def checkout(
    data: CheckoutRequest,
    stay_id: int = Path(..., gt=0),
    service: StayLifecycleService = Depends(get_stay_service),
):
    result = service.checkout(stay_id, data.amount_to_pay, data.method, data.terminal, data.tendered)
    return result_response(result)


@router.post("/{stay_id}/cancel")
def cancel_stay(
    data: CancelStayRequest,
    stay_id: int = Path(..., gt=0),
    service: StayLifecycleService = Depends(get_stay_service),
):
    result = service.cancel_stay(stay_id, data.refund_type, data.refund_amount, data.reason, data.refund_method)
    return result_response(result)


@router.post("/{stay_id}/change-room")
def change_room(
    data: ChangeRoomRequest,
    stay_id: int = Path(..., gt=0),
    service: StayLifecycleService = Depends(get_stay_service),
):
    result = service.change_room(stay_id, data.new_room_id, data.keep_time, data.reason)
    return result_response(result)


# ========================================================================
# DATOS DE LA ESTANCIA
# ========================================================================

@router.put("/{stay_id}/vehicle")
def update_vehicle(
    data: VehicleRequest,
    stay_id: int = Path(..., gt=0),
    service: StayLifecycleService = Depends(get_stay_service),
):
    return result_response(service.update_vehicle(stay_id, data.plate, data.brand, data.model))


@router.put("/{stay_id}/valet")
def update_valet(
    data: UpdateValetRequest,
    stay_id: int = Path(..., gt=0),
    service: StayLifecycleService = Depends(get_stay_service),
):
    return result_response(service.update_valet(stay_id, data.valet_employee_id))


@router.get("/{stay_id}")
def get_stay(stay_id: int = Path(..., gt=0), service: StayLifecycleService = Depends(get_stay_service)):
    """Estancia con partidas, pagos y eventos"""
    return result_response(service.get_stay(stay_id))
