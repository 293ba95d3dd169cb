"""
Stay Lifecycle Manager
Máquina de estados de la estancia (ACTIVA -> FINALIZADA | CANCELADA) que orquesta:
- Entrada con o sin pago (check-in / check-in rápido)
- Personas extra, horas extra, consumos
- Tolerancia de salida (solo motel)
- Pago de extras, checkout parcial o total
- Cancelación con devolución
- Cambio de habitación

Cada operación pública es una sola transacción y devuelve un Result;
ninguna lanza excepciones hacia el llamador.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from models.estancia import RoomChange, RoomStay, StayEvent, StayEventType, StayStatus, ToleranceType
from models.habitacion import Room, RoomStatus
from models.pago import PaymentConcept, PaymentMethod, PaymentType
from models.venta import ConceptType, OrderStatus, SalesOrderItem
from services import billing_engine
from services.billing_engine import CONCEPT_FOR_TYPE, BillingEngine, ConsumptionEntry
from services.errors import (
    ErrorCode, NotFound, StateConflict, StayError, ValidationError,
)
from services.payment_allocator import PaymentAllocator, PaymentEntry, plan_allocation, validate_entries
from services.room_status import RoomStatusRegistry
from services.sales_ledger import SalesOrderLedger
from services.stay_calculators import (
    RefundType, compute_checkout_time, compute_price_difference, compute_refund,
)
from utils import notifications
from utils.logging_utils import log_event
from utils.money import ZERO, money_float, parse_money, to_money
from utils.notifications import LogNotificationSink, NotificationSink, safe_notify
from utils.result import Result
from utils.timezone import Clock, SystemClock, to_hotel_time


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class StayLifecycleService:
    """Servicio de ciclo de vida de estancias por tiempo"""

    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        notifier: Optional[NotificationSink] = None,
        usuario: str = "sistema",
    ):
        self.db = db
        self.clock = clock or SystemClock()
        self.notifier = notifier if notifier is not None else LogNotificationSink()
        self.usuario = usuario

    # =====================================================================
    # INFRAESTRUCTURA
    # =====================================================================

    def _run(self, area: str, accion: str, operation: Callable, *args, **kwargs) -> Result:
        """Ejecuta una operación como unidad de trabajo: commit al final o rollback completo"""
        try:
            data = operation(*args, **kwargs)
            self.db.commit()
            log_event(area, self.usuario, accion, self._detalle(data))
            return Result.ok(data)

        except StayError as e:
            self.db.rollback()
            log_event(area, self.usuario, "Error", f"{e.code.value}: {e.message}", nivel=logging.WARNING)
            return Result.fail(e.message, e.code.value, e.category)
        except SQLAlchemyError as e:
            self.db.rollback()
            error_msg = f"Error de base de datos en {accion.lower()}: {str(e)}"
            log_event(area, self.usuario, "Error", error_msg, nivel=logging.ERROR)
            return Result.fail(error_msg, ErrorCode.PERSISTENCE_ERROR.value, "persistence")
        except Exception as e:
            self.db.rollback()
            error_msg = f"Error en {accion.lower()}: {str(e)}"
            log_event(area, self.usuario, "Error", error_msg, nivel=logging.ERROR)
            return Result.fail(error_msg, ErrorCode.PERSISTENCE_ERROR.value, "persistence")

    @staticmethod
    def _detalle(data) -> str:
        if isinstance(data, dict):
            keys = ("stay_id", "room_id", "charged", "finalized")
            return ", ".join(f"{k}={data[k]}" for k in keys if k in data)
        return ""

    def _notify(self, level: str, title: str, message: str) -> None:
        safe_notify(self.notifier, level, title, message)

    @staticmethod
    def _amount(value, label: str, code: ErrorCode = ErrorCode.INVALID_AMOUNT):
        """Monto recibido del llamador; un valor no numérico es error de validación"""
        try:
            return parse_money(value)
        except ValueError:
            raise ValidationError(code, f"{label}: '{value}' no es un monto válido")

    @staticmethod
    def _coerce(enum_cls, value, code: ErrorCode, label: str):
        try:
            return enum_cls(value)
        except ValueError:
            raise ValidationError(code, f"{label} '{value}' no existe")

    def _load_room(self, room_id: int) -> Room:
        room = self.db.query(Room).filter(Room.id == room_id).first()
        if not room:
            raise NotFound(f"Habitación {room_id} no encontrada")
        return room

    def _load_stay(self, stay_id: int) -> RoomStay:
        stay = self.db.query(RoomStay).filter(RoomStay.id == stay_id).first()
        if not stay:
            raise NotFound(f"Estancia {stay_id} no encontrada")
        if stay.sales_order is None:
            raise NotFound(f"Estancia {stay_id} sin orden de venta")
        return stay

    def _load_active_stay(self, stay_id: int) -> RoomStay:
        stay = self._load_stay(stay_id)
        if not stay.is_active():
            raise StateConflict(
                ErrorCode.STAY_NOT_ACTIVE,
                f"Estancia {stay_id} no está activa (está: {stay.status.value})",
            )
        return stay

    def _event(self, stay: RoomStay, event_type: StayEventType, description: str, payload: Optional[dict] = None) -> StayEvent:
        evento = StayEvent(
            stay=stay,
            event_type=event_type,
            usuario=self.usuario,
            timestamp=self.clock.now(),
            payload=payload,
            description=description,
        )
        self.db.add(evento)
        return evento

    def _serialize(self, stay: RoomStay) -> dict:
        now = self.clock.now()
        order = stay.sales_order
        remaining = SalesOrderLedger.get_remaining(order)
        return {
            "stay_id": stay.id,
            "room_id": stay.room_id,
            "room_number": stay.room.number if stay.room else None,
            "status": stay.status.value,
            "check_in_at": _iso(stay.check_in_at),
            "expected_check_out_at": _iso(stay.expected_check_out_at),
            "actual_check_out_at": _iso(stay.actual_check_out_at),
            "current_people": stay.current_people,
            "total_people": stay.total_people,
            "tolerance": {
                "started_at": _iso(stay.tolerance_started_at),
                "type": stay.tolerance_type.value if stay.tolerance_type else None,
                "expired": billing_engine.is_tolerance_expired(stay.tolerance_started_at, now),
                "remaining_minutes": (
                    billing_engine.tolerance_remaining_minutes(stay.tolerance_started_at, now)
                    if stay.tolerance_started_at else None
                ),
            },
            "vehicle": stay.vehicle_dict(),
            "valet_employee_id": stay.valet_employee_id,
            "order": SalesOrderLedger.to_dict(order),
            "pending_payment": stay.is_active() and remaining > ZERO,
        }

    # =====================================================================
    # ENTRADA
    # =====================================================================

    def start_stay(
        self,
        room_id: int,
        initial_people: int,
        payments: Optional[Iterable[PaymentEntry]] = None,
        entry_time: Optional[datetime] = None,
        vehicle: Optional[dict] = None,
        valet_employee_id: Optional[int] = None,
    ) -> Result:
        """Check-in con cobro (multipago opcional)"""
        return self._run(
            "checkin", "Iniciar estancia", self._start_stay,
            room_id, initial_people, list(payments or []), entry_time, vehicle, valet_employee_id,
        )

    def quick_check_in(
        self,
        room_id: int,
        initial_people: int,
        entry_time: Optional[datetime] = None,
        vehicle: Optional[dict] = None,
        valet_employee_id: Optional[int] = None,
    ) -> Result:
        """Check-in sin cobro: la cuenta queda con saldo pendiente = total"""
        return self._run(
            "checkin", "Check-in rápido", self._start_stay,
            room_id, initial_people, [], entry_time, vehicle, valet_employee_id,
        )

    def _start_stay(self, room_id, initial_people, payments, entry_time, vehicle, valet_employee_id) -> dict:
        now = self.clock.now()
        room = self._load_room(room_id)
        if room.status != RoomStatus.LIBRE:
            raise StateConflict(
                ErrorCode.ROOM_NOT_AVAILABLE,
                f"Habitación {room.number} no está libre (está: {room.status.value})",
            )

        room_type = room.room_type
        if initial_people is None or not 1 <= initial_people <= room_type.max_people:
            raise ValidationError(
                ErrorCode.INVALID_PEOPLE_COUNT,
                f"Personas debe estar entre 1 y {room_type.max_people} para {room_type.name}",
            )

        entry = entry_time or now
        if entry.tzinfo is not None:
            entry = to_hotel_time(entry).replace(tzinfo=None)
        quote = billing_engine.quote_check_in(room_type, initial_people, entry)
        plan = plan_allocation(quote.total, payments)

        # Reserva atómica de la habitación antes de crear filas
        RoomStatusRegistry.claim(self.db, room, RoomStatus.OCUPADA, now)

        order = SalesOrderLedger.open_order(self.db)
        BillingEngine.add_item(
            self.db, order, ConceptType.BASE_STAY, quote.base_price, now,
            description=f"Estancia {room_type.name} ({quote.hours} h)",
        )
        if quote.extra_people and quote.extra_people_cost > ZERO:
            BillingEngine.add_item(
                self.db, order, ConceptType.EXTRA_PERSON, quote.extra_person_price, now,
                qty=quote.extra_people, description="Personas extra al ingresar",
                concept=PaymentConcept.PERSONA_EXTRA,
            )

        vehicle = vehicle or {}
        stay = RoomStay(
            room=room,
            sales_order=order,
            status=StayStatus.ACTIVA,
            check_in_at=entry,
            expected_check_out_at=quote.expected_check_out_at,
            current_people=initial_people,
            total_people=initial_people,
            vehicle_plate=vehicle.get("plate"),
            vehicle_brand=vehicle.get("brand"),
            vehicle_model=vehicle.get("model"),
            valet_employee_id=valet_employee_id,
        )
        self.db.add(stay)
        self.db.flush()

        allocation = PaymentAllocator.allocate(self.db, order, plan, PaymentConcept.SERVICIO, now, self.usuario)
        if allocation.applied > ZERO:
            SalesOrderLedger.record_payment(order, allocation.applied)
        if SalesOrderLedger.get_remaining(order) <= ZERO:
            methods = {entry.method for entry in plan.entries}
            method = methods.pop() if len(methods) == 1 else PaymentMethod.PENDIENTE
            BillingEngine.mark_items_paid(order, now, method)
        SalesOrderLedger.check(order)

        self._event(stay, StayEventType.CHECKIN, f"Entrada a habitación {room.number}", {
            "people": initial_people,
            "quote": quote.to_dict(),
            "payments": allocation.to_dict(),
        })

        pending = SalesOrderLedger.get_remaining(order)
        if pending > ZERO:
            self._notify(notifications.WARNING, "Pago pendiente", f"Hab. {room.number}: saldo {pending} pendiente")
        else:
            self._notify(notifications.SUCCESS, "Estancia iniciada", f"Hab. {room.number} -> OCUPADA")

        data = self._serialize(stay)
        data["quote"] = quote.to_dict()
        data["payments"] = allocation.to_dict()
        data["change"] = money_float(plan.change)
        return data

    # =====================================================================
    # PERSONAS
    # =====================================================================

    def add_extra_person(self, stay_id: int) -> Result:
        return self._run("extra_person", "Agregar persona", self._add_extra_person, stay_id)

    def _add_extra_person(self, stay_id: int) -> dict:
        now = self.clock.now()
        stay = self._load_active_stay(stay_id)
        room_type = stay.room.room_type
        if stay.current_people >= room_type.max_people:
            raise StateConflict(
                ErrorCode.MAX_PEOPLE_EXCEEDED,
                f"Máximo {room_type.max_people} personas para {room_type.name}",
            )

        stay.current_people += 1
        stay.total_people = max(stay.total_people or 0, stay.current_people)
        BillingEngine.add_item(
            self.db, stay.sales_order, ConceptType.EXTRA_PERSON, room_type.extra_person_price, now,
            description="Persona extra", concept=PaymentConcept.PERSONA_EXTRA,
        )
        SalesOrderLedger.check(stay.sales_order)

        self._event(stay, StayEventType.EXTRA_PERSON, "Persona extra registrada", {
            "current_people": stay.current_people,
            "total_people": stay.total_people,
            "price": money_float(room_type.extra_person_price),
        })
        self._notify(
            notifications.SUCCESS, "Persona extra registrada",
            f"Hab. {stay.room.number}: {stay.current_people} personas. +${to_money(room_type.extra_person_price)}",
        )
        return self._serialize(stay)

    def remove_person(self, stay_id: int) -> Result:
        """Una persona se fue definitivamente (sin tolerancia, sin cargo)"""
        return self._run("remove_person", "Quitar persona", self._remove_person, stay_id)

    def _remove_person(self, stay_id: int) -> dict:
        stay = self._load_active_stay(stay_id)
        if stay.current_people <= 1:
            raise ValidationError(
                ErrorCode.INVALID_PEOPLE_COUNT,
                "Debe haber al menos 1 persona en la habitación; usa checkout si no queda nadie",
            )
        stay.current_people -= 1
        self._event(stay, StayEventType.REMOVE_PERSON, "Persona removida", {"current_people": stay.current_people})
        return self._serialize(stay)

    # =====================================================================
    # HORAS EXTRA
    # =====================================================================

    def add_extra_hour(self, stay_id: int) -> Result:
        return self._run("extra_hour", "Agregar hora extra", self._add_extra_hour, stay_id)

    def _add_extra_hour(self, stay_id: int) -> dict:
        now = self.clock.now()
        stay = self._load_active_stay(stay_id)
        room_type = stay.room.room_type
        price = to_money(room_type.extra_hour_price)
        if price <= ZERO:
            raise ValidationError(
                ErrorCode.EXTRA_HOUR_PRICE_MISSING,
                f"No se configuró el precio de hora extra para {room_type.name}",
            )

        stay.expected_check_out_at = stay.expected_check_out_at + billing_engine.ONE_HOUR
        BillingEngine.add_item(
            self.db, stay.sales_order, ConceptType.EXTRA_HOUR, price, now,
            description="Hora extra", concept=PaymentConcept.HORA_EXTRA,
        )
        SalesOrderLedger.check(stay.sales_order)

        self._event(stay, StayEventType.EXTRA_HOUR, "Hora extra agregada", {
            "expected_check_out_at": _iso(stay.expected_check_out_at),
            "price": float(price),
        })
        self._notify(notifications.SUCCESS, "Hora extra agregada", f"Hab. {stay.room.number}: +${price}")
        return self._serialize(stay)

    # =====================================================================
    # TOLERANCIA
    # =====================================================================

    def start_tolerance(self, stay_id: int, tolerance_type: Optional[ToleranceType] = None) -> Result:
        """
        Una persona sale y va a regresar: inicia la ventana de 1 hora.
        Sin tipo explícito: ROOM_EMPTY si no queda nadie, PERSON_LEFT si no.
        """
        return self._run("tolerance", "Iniciar tolerancia", self._start_tolerance, stay_id, tolerance_type)

    def _start_tolerance(self, stay_id: int, tolerance_type: Optional[ToleranceType]) -> dict:
        now = self.clock.now()
        stay = self._load_active_stay(stay_id)
        room_type = stay.room.room_type
        if room_type.is_hotel:
            raise StateConflict(
                ErrorCode.TOLERANCE_NOT_ALLOWED,
                f"La tolerancia no aplica para habitaciones de hotel ({room_type.name})",
            )
        if stay.current_people <= 0:
            raise ValidationError(ErrorCode.INVALID_PEOPLE_COUNT, "No hay personas en la habitación")

        # El tipo depende de quién queda: nadie -> ROOM_EMPTY, alguien -> PERSON_LEFT
        derived = ToleranceType.ROOM_EMPTY if stay.current_people == 1 else ToleranceType.PERSON_LEFT
        if tolerance_type is not None:
            tolerance_type = self._coerce(ToleranceType, tolerance_type, ErrorCode.TOLERANCE_NOT_ALLOWED, "Tipo de tolerancia")
            if tolerance_type != derived:
                raise StateConflict(
                    ErrorCode.TOLERANCE_NOT_ALLOWED,
                    f"{tolerance_type.value} no corresponde: quedarían {stay.current_people - 1} persona(s)",
                )
        tolerance_type = derived

        # Una ventana vencida se cobra antes de abrir otra
        if stay.has_tolerance() and billing_engine.is_tolerance_expired(stay.tolerance_started_at, now):
            self._charge_tolerance(stay, now)
            stay.tolerance_started_at = None
            stay.tolerance_type = None

        # ROOM_EMPTY deja current_people en 0 mientras dure la ventana
        stay.current_people -= 1

        # Si ya hay ventana abierta se conserva su inicio
        if not stay.has_tolerance():
            stay.tolerance_started_at = now
        stay.tolerance_type = tolerance_type

        self._event(stay, StayEventType.TOLERANCE_START, "Tolerancia iniciada", {
            "type": tolerance_type.value,
            "started_at": _iso(stay.tolerance_started_at),
            "current_people": stay.current_people,
        })
        if tolerance_type == ToleranceType.ROOM_EMPTY:
            self._notify(
                notifications.WARNING, "Tolerancia iniciada - Habitación vacía",
                f"Hab. {stay.room.number}: 1 hora para regresar. Después se cobra habitación completa.",
            )
        else:
            self._notify(
                notifications.WARNING, "Tolerancia iniciada - Persona salió",
                f"Hab. {stay.room.number}: 1 hora para regresar. Después se cobra persona extra.",
            )
        return self._serialize(stay)

    def is_tolerance_expired(self, stay_id: int, now: Optional[datetime] = None) -> Result:
        return self._run("tolerance", "Consultar tolerancia", self._is_tolerance_expired, stay_id, now)

    def _is_tolerance_expired(self, stay_id: int, now: Optional[datetime]) -> dict:
        stay = self._load_stay(stay_id)
        now = now or self.clock.now()
        return {
            "stay_id": stay.id,
            "expired": billing_engine.is_tolerance_expired(stay.tolerance_started_at, now),
            "started_at": _iso(stay.tolerance_started_at),
            "remaining_minutes": billing_engine.tolerance_remaining_minutes(stay.tolerance_started_at, now),
        }

    def charge_tolerance_expired(self, stay_id: int) -> Result:
        """Idempotente: a lo sumo un cargo por valor de tolerance_started_at"""
        return self._run("tolerance", "Cobrar tolerancia expirada", self._charge_tolerance_expired, stay_id)

    def _charge_tolerance_expired(self, stay_id: int) -> dict:
        now = self.clock.now()
        stay = self._load_active_stay(stay_id)
        if not stay.has_tolerance():
            raise StateConflict(ErrorCode.NO_TOLERANCE_WINDOW, "La estancia no tiene tolerancia activa")
        if not billing_engine.is_tolerance_expired(stay.tolerance_started_at, now):
            minutes = billing_engine.tolerance_remaining_minutes(stay.tolerance_started_at, now)
            raise StateConflict(ErrorCode.TOLERANCE_NOT_EXPIRED, f"La tolerancia sigue vigente ({minutes} min restantes)")

        item = self._charge_tolerance(stay, now)
        data = self._serialize(stay)
        data["charged"] = item is not None
        data["item_id"] = item.id if item is not None else None
        return data

    def _find_tolerance_item(self, stay: RoomStay, window_start: datetime) -> Optional[SalesOrderItem]:
        return (
            self.db.query(SalesOrderItem)
            .filter(
                SalesOrderItem.sales_order_id == stay.sales_order_id,
                SalesOrderItem.tolerance_window_start == window_start,
            )
            .first()
        )

    def _charge_tolerance(self, stay: RoomStay, now: datetime) -> Optional[SalesOrderItem]:
        """
        Cobra la ventana actual si no se cobró antes.
        Devuelve la partida creada o None si no hubo cargo nuevo.
        """
        window_start = stay.tolerance_started_at
        if self._find_tolerance_item(stay, window_start) is not None:
            return None

        room_type = stay.room.room_type
        concept_type, amount = billing_engine.tolerance_charge(stay.tolerance_type, room_type)
        if amount <= ZERO:
            return None

        order = stay.sales_order
        savepoint = self.db.begin_nested()
        try:
            item = BillingEngine.add_item(
                self.db, order, concept_type, amount, now,
                description=f"Tolerancia expirada ({stay.tolerance_type.value})",
                concept=PaymentConcept.TOLERANCIA_EXPIRADA,
                tolerance_window_start=window_start,
            )
            self.db.flush()
            savepoint.commit()
        except IntegrityError:
            # Otra transacción cobró la misma ventana
            savepoint.rollback()
            self.db.refresh(order)
            return None

        SalesOrderLedger.check(order)
        self._event(stay, StayEventType.TOLERANCE_CHARGE, "Tolerancia expirada cobrada", {
            "type": stay.tolerance_type.value,
            "window_start": _iso(window_start),
            "amount": float(amount),
        })
        title = (
            "Tolerancia expirada - Habitación cobrada"
            if stay.tolerance_type == ToleranceType.ROOM_EMPTY
            else "Tolerancia expirada - Persona extra cobrada"
        )
        self._notify(notifications.WARNING, title, f"Hab. {stay.room.number}: +${amount}")
        return item

    def register_return(self, stay_id: int) -> Result:
        """Regresa la persona que salió: cobra si la ventana venció y cierra la tolerancia"""
        return self._run("tolerance", "Registrar regreso", self._register_return, stay_id)

    def _register_return(self, stay_id: int) -> dict:
        now = self.clock.now()
        stay = self._load_active_stay(stay_id)
        if not stay.has_tolerance():
            raise StateConflict(ErrorCode.NO_TOLERANCE_WINDOW, "La estancia no tiene tolerancia activa")
        room_type = stay.room.room_type
        if stay.current_people >= room_type.max_people:
            raise StateConflict(ErrorCode.MAX_PEOPLE_EXCEEDED, f"Máximo {room_type.max_people} personas para {room_type.name}")

        expired = billing_engine.is_tolerance_expired(stay.tolerance_started_at, now)
        item = self._charge_tolerance(stay, now) if expired else None
        remaining_minutes = billing_engine.tolerance_remaining_minutes(stay.tolerance_started_at, now)

        stay.current_people += 1
        stay.total_people = max(stay.total_people or 0, stay.current_people)
        stay.tolerance_started_at = None
        stay.tolerance_type = None

        self._event(stay, StayEventType.TOLERANCE_RETURN, "Regreso de tolerancia", {
            "expired": expired,
            "charged": item is not None,
            "current_people": stay.current_people,
        })
        if not expired:
            self._notify(
                notifications.SUCCESS, "Regreso dentro de tolerancia",
                f"Hab. {stay.room.number}: regresó a tiempo (quedaban {remaining_minutes} min)",
            )
        data = self._serialize(stay)
        data["charged"] = item is not None
        return data

    # =====================================================================
    # CONSUMOS
    # =====================================================================

    def add_consumption(self, stay_id: int, entries: Iterable[ConsumptionEntry]) -> Result:
        return self._run("consumption", "Agregar consumo", self._add_consumption, stay_id, list(entries or []))

    def _add_consumption(self, stay_id: int, entries: List[ConsumptionEntry]) -> dict:
        now = self.clock.now()
        stay = self._load_active_stay(stay_id)
        if not entries:
            raise ValidationError(ErrorCode.INVALID_AMOUNT, "No hay consumos para agregar")
        for entry in entries:
            entry.validate()

        order = stay.sales_order
        total = ZERO
        for entry in entries:
            BillingEngine.add_item(
                self.db, order, ConceptType.CONSUMPTION, entry.unit_price, now,
                qty=entry.qty, description=entry.description, concept=PaymentConcept.CONSUMO,
            )
            total += entry.line_total
        SalesOrderLedger.check(order)

        self._event(stay, StayEventType.CONSUMPTION, f"{len(entries)} consumo(s) agregados", {
            "items": [{"description": e.description, "qty": e.qty, "unit_price": float(e.unit_price)} for e in entries],
            "total": float(total),
        })
        data = self._serialize(stay)
        data["consumption_total"] = float(total)
        return data

    # =====================================================================
    # PAGOS
    # =====================================================================

    def pay_extras(
        self,
        stay_id: int,
        amount,
        method: PaymentMethod,
        concept_type: ConceptType,
        terminal: Optional[str] = None,
    ) -> Result:
        """
        Paga extras de un tipo de concepto.
        Cualquier monto distinto de cero marca como pagadas TODAS las partidas
        pendientes de ese tipo (no hay liquidación parcial por partida).
        """
        return self._run("payment", "Pagar extras", self._pay_extras, stay_id, amount, method, concept_type, terminal)

    def _pay_extras(self, stay_id, amount, method, concept_type, terminal) -> dict:
        now = self.clock.now()
        stay = self._load_active_stay(stay_id)
        order = stay.sales_order
        concept_type = self._coerce(ConceptType, concept_type, ErrorCode.INVALID_AMOUNT, "Tipo de concepto")
        amount = self._amount(amount, "Monto")

        if amount <= ZERO:
            raise ValidationError(ErrorCode.INVALID_AMOUNT, "El monto debe ser mayor a 0")
        remaining = SalesOrderLedger.get_remaining(order)
        if amount > remaining:
            raise StateConflict(ErrorCode.OVERPAYMENT_NOT_ALLOWED, f"Monto excede saldo pendiente (${remaining})")
        entry = validate_entries([PaymentEntry(amount, method, terminal)])[0]

        unpaid = BillingEngine.unpaid_items(order, concept_type)
        if not unpaid:
            raise ValidationError(ErrorCode.INVALID_AMOUNT, f"No hay partidas pendientes de {concept_type.value}")

        payment = PaymentAllocator.record_single(
            self.db, order, amount, entry.method, CONCEPT_FOR_TYPE[concept_type], now,
            payment_type=PaymentType.PARCIAL if amount < remaining else PaymentType.COMPLETO,
            terminal=entry.terminal, usuario=self.usuario,
        )
        SalesOrderLedger.record_payment(order, amount)
        marked = BillingEngine.mark_items_paid(order, now, entry.method, concept_type)
        self.db.flush()
        SalesOrderLedger.check(order)

        self._event(stay, StayEventType.PAYMENT, f"Pago de extras {concept_type.value}", {
            "amount": float(amount),
            "method": entry.method.value,
            "items_marked": marked,
            "payment_id": payment.id,
        })
        data = self._serialize(stay)
        data["payment"] = payment.to_dict()
        data["items_marked"] = marked
        return data

    # =====================================================================
    # SALIDA
    # =====================================================================

    def prepare_checkout(self, stay_id: int) -> Result:
        """Cobra las horas iniciadas después de la salida esperada y devuelve el saldo"""
        return self._run("checkout", "Preparar checkout", self._prepare_checkout, stay_id)

    def _prepare_checkout(self, stay_id: int) -> dict:
        now = self.clock.now()
        stay = self._load_active_stay(stay_id)
        room_type = stay.room.room_type
        hours = billing_engine.overdue_hours(stay.expected_check_out_at, now)
        price = to_money(room_type.extra_hour_price)

        charged_hours = 0
        if hours > 0 and price > ZERO:
            BillingEngine.add_item(
                self.db, stay.sales_order, ConceptType.EXTRA_HOUR, price, now,
                qty=hours, description="Horas extra por salida tardía", concept=PaymentConcept.HORA_EXTRA,
            )
            # La salida esperada avanza para no volver a cobrar las mismas horas
            stay.expected_check_out_at = stay.expected_check_out_at + timedelta(hours=hours)
            charged_hours = hours
            SalesOrderLedger.check(stay.sales_order)
            self._event(stay, StayEventType.EXTRA_HOUR, f"{hours} hora(s) extra por salida tardía", {
                "hours": hours,
                "price": float(price),
            })
            self._notify(notifications.SUCCESS, "Horas extra registradas", f"{hours} hora(s) extra en Hab. {stay.room.number}")

        data = self._serialize(stay)
        data["overdue_hours_charged"] = charged_hours
        data["remaining_amount"] = money_float(SalesOrderLedger.get_remaining(stay.sales_order))
        return data

    def checkout(
        self,
        stay_id: int,
        amount_to_pay,
        method: PaymentMethod = PaymentMethod.EFECTIVO,
        terminal: Optional[str] = None,
        tendered=None,
    ) -> Result:
        """
        Pago final. Si queda saldo, se registra como pago parcial y la estancia sigue ACTIVA.
        El efectivo entregado por encima del monto es cambio y no se guarda.
        """
        return self._run("checkout", "Checkout", self._checkout, stay_id, amount_to_pay, method, terminal, tendered)

    def _checkout(self, stay_id, amount_to_pay, method, terminal, tendered) -> dict:
        now = self.clock.now()
        stay = self._load_active_stay(stay_id)
        order = stay.sales_order
        amount = self._amount(amount_to_pay, "Monto a pagar")
        method = self._coerce(PaymentMethod, method, ErrorCode.INVALID_PAYMENT_ENTRY, "Método de pago")
        remaining = SalesOrderLedger.get_remaining(order)

        if amount < ZERO:
            raise ValidationError(ErrorCode.INVALID_AMOUNT, "El monto no puede ser negativo")
        if amount > max(remaining, ZERO):
            raise StateConflict(ErrorCode.OVERPAYMENT_NOT_ALLOWED, f"Monto excede saldo pendiente (${remaining})")

        change = ZERO
        if tendered is not None:
            tendered = self._amount(tendered, "Efectivo recibido")
            if tendered < amount:
                raise ValidationError(ErrorCode.INVALID_AMOUNT, "El efectivo recibido es menor al monto a pagar")
            change = tendered - amount

        payment = None
        if amount > ZERO:
            entry = validate_entries([PaymentEntry(amount, method, terminal)])[0]
            is_partial = remaining - amount > ZERO
            payment = PaymentAllocator.record_single(
                self.db, order, amount, entry.method, PaymentConcept.CHECKOUT, now,
                payment_type=PaymentType.PARCIAL if is_partial else PaymentType.COMPLETO,
                terminal=entry.terminal, usuario=self.usuario,
            )
            SalesOrderLedger.record_payment(order, amount)
            method = entry.method

        finalized = SalesOrderLedger.get_remaining(order) <= ZERO
        if finalized:
            BillingEngine.mark_items_paid(order, now, method)
            stay.status = StayStatus.FINALIZADA
            stay.actual_check_out_at = now
            RoomStatusRegistry.transition(stay.room, RoomStatus.SUCIA)
            SalesOrderLedger.set_status(order, OrderStatus.ENDED)

        self.db.flush()
        SalesOrderLedger.check(order)

        if finalized:
            self._event(stay, StayEventType.CHECKOUT, "Checkout realizado", {
                "amount": float(amount),
                "method": method.value,
                "payment_id": payment.id if payment else None,
            })
            self._notify(notifications.SUCCESS, "Check-out completado", f"Hab. {stay.room.number} -> SUCIA")
        else:
            self._event(stay, StayEventType.PAYMENT, "Pago parcial en checkout", {
                "amount": float(amount),
                "remaining": money_float(order.remaining_amount),
                "payment_id": payment.id if payment else None,
            })
            self._notify(notifications.SUCCESS, "Pago registrado", f"Saldo restante: {to_money(order.remaining_amount)}")

        data = self._serialize(stay)
        data["finalized"] = finalized
        data["payment"] = payment.to_dict() if payment else None
        data["change"] = float(change)
        return data

    # =====================================================================
    # CANCELACIÓN
    # =====================================================================

    def cancel_stay(
        self,
        stay_id: int,
        refund_type: RefundType,
        refund_amount=0,
        reason: str = "",
        refund_method: PaymentMethod = PaymentMethod.EFECTIVO,
    ) -> Result:
        return self._run(
            "cancel", "Cancelar estancia", self._cancel_stay,
            stay_id, refund_type, refund_amount, reason, refund_method,
        )

    def _cancel_stay(self, stay_id, refund_type, refund_amount, reason, refund_method) -> dict:
        now = self.clock.now()
        if not reason or not reason.strip():
            raise ValidationError(ErrorCode.MISSING_REASON, "Se requiere motivo de cancelación")
        try:
            refund_type = RefundType(refund_type)
        except ValueError:
            raise ValidationError(ErrorCode.INVALID_REFUND_AMOUNT, f"Tipo de devolución '{refund_type}' no existe")

        stay = self._load_active_stay(stay_id)
        order = stay.sales_order
        total_paid = to_money(order.paid_amount)
        requested = self._amount(refund_amount, "Devolución", ErrorCode.INVALID_REFUND_AMOUNT)
        refund_method = self._coerce(PaymentMethod, refund_method, ErrorCode.INVALID_PAYMENT_ENTRY, "Método de devolución")
        if requested < ZERO or requested > total_paid:
            raise ValidationError(
                ErrorCode.INVALID_REFUND_AMOUNT,
                f"La devolución debe estar entre 0 y lo pagado (${total_paid})",
            )

        refund = compute_refund(total_paid, refund_type, requested)
        payment = None
        if refund > ZERO:
            payment = PaymentAllocator.record_single(
                self.db, order, -refund, refund_method, PaymentConcept.REEMBOLSO, now,
                usuario=self.usuario, notes=reason.strip()[:200],
            )
            SalesOrderLedger.record_payment(order, -refund)

        stay.status = StayStatus.CANCELADA
        stay.cancel_reason = reason.strip()
        stay.actual_check_out_at = now
        RoomStatusRegistry.transition(stay.room, RoomStatus.SUCIA)
        SalesOrderLedger.set_status(order, OrderStatus.CANCELLED)
        self.db.flush()
        SalesOrderLedger.check(order)

        self._event(stay, StayEventType.CANCEL, "Estancia cancelada", {
            "refund_type": refund_type.value,
            "refund": float(refund),
            "reason": reason.strip(),
        })
        self._notify(notifications.WARNING, "Estancia cancelada", f"Hab. {stay.room.number} -> SUCIA")

        data = self._serialize(stay)
        data["refund"] = float(refund)
        data["refund_payment"] = payment.to_dict() if payment else None
        return data

    # =====================================================================
    # CAMBIO DE HABITACIÓN
    # =====================================================================

    def change_room(self, stay_id: int, new_room_id: int, keep_time: bool, reason: str) -> Result:
        """La habitación desocupada queda SUCIA, igual que en un checkout"""
        return self._run("room_change", "Cambiar habitación", self._change_room, stay_id, new_room_id, keep_time, reason)

    def _change_room(self, stay_id, new_room_id, keep_time, reason) -> dict:
        now = self.clock.now()
        stay = self._load_active_stay(stay_id)
        new_room = self._load_room(new_room_id)
        if new_room.id == stay.room_id or new_room.status != RoomStatus.LIBRE:
            raise StateConflict(
                ErrorCode.ROOM_NOT_AVAILABLE,
                f"Habitación {new_room.number} no está libre (está: {new_room.status.value})",
            )
        if not reason or not reason.strip():
            raise ValidationError(ErrorCode.MISSING_REASON, "Se requiere motivo del cambio")

        old_room = stay.room
        current_type = old_room.room_type
        new_type = new_room.room_type
        if stay.current_people > new_type.max_people:
            raise StateConflict(
                ErrorCode.MAX_PEOPLE_EXCEEDED,
                f"{new_type.name} admite máximo {new_type.max_people} personas (hay {stay.current_people})",
            )
        difference = compute_price_difference(current_type.base_price, new_type.base_price)

        RoomStatusRegistry.claim(self.db, new_room, RoomStatus.OCUPADA, now)
        RoomStatusRegistry.transition(old_room, RoomStatus.SUCIA)

        order = stay.sales_order
        if difference != ZERO:
            BillingEngine.add_item(
                self.db, order, ConceptType.BASE_STAY, difference, now,
                description=f"Cambio de habitación {old_room.number} -> {new_room.number}",
            )

        previous_expected = stay.expected_check_out_at
        stay.expected_check_out_at = compute_checkout_time(keep_time, previous_expected, now, new_type)
        stay.room = new_room

        change = RoomChange(
            stay=stay,
            from_room_id=old_room.id,
            to_room_id=new_room.id,
            reason=reason.strip()[:200],
            price_difference=difference,
            keep_time=keep_time,
            usuario=self.usuario,
            created_at=now,
        )
        self.db.add(change)
        self.db.flush()
        SalesOrderLedger.check(order)

        self._event(stay, StayEventType.ROOM_CHANGE, f"Cambio de habitación {old_room.number} -> {new_room.number}", {
            "from_room_id": old_room.id,
            "to_room_id": new_room.id,
            "price_difference": float(difference),
            "keep_time": keep_time,
            "previous_expected": _iso(previous_expected),
            "reason": reason.strip(),
        })
        if difference > ZERO:
            message = f"Cobrar diferencia: +${difference}"
        elif difference < ZERO:
            message = f"Devolver diferencia: ${-difference}"
        else:
            message = "Sin diferencia de precio"
        self._notify(notifications.INFO, f"Hab. {old_room.number} -> {new_room.number}", message)

        data = self._serialize(stay)
        data["price_difference"] = float(difference)
        data["previous_room_id"] = old_room.id
        data["room_change_id"] = change.id
        return data

    # =====================================================================
    # DATOS DE LA ESTANCIA
    # =====================================================================

    def update_vehicle(self, stay_id: int, plate: Optional[str], brand: Optional[str], model: Optional[str]) -> Result:
        return self._run("vehicle", "Actualizar vehículo", self._update_vehicle, stay_id, plate, brand, model)

    def _update_vehicle(self, stay_id, plate, brand, model) -> dict:
        stay = self._load_active_stay(stay_id)
        previous = stay.vehicle_dict()
        stay.vehicle_plate = (plate or "").strip().upper() or None
        stay.vehicle_brand = (brand or "").strip() or None
        stay.vehicle_model = (model or "").strip() or None
        self._event(stay, StayEventType.VEHICLE_UPDATE, "Vehículo actualizado", {
            "previous": previous,
            "current": stay.vehicle_dict(),
        })
        return self._serialize(stay)

    def update_valet(self, stay_id: int, valet_employee_id: Optional[int]) -> Result:
        return self._run("valet", "Actualizar cochero", self._update_valet, stay_id, valet_employee_id)

    def _update_valet(self, stay_id, valet_employee_id) -> dict:
        stay = self._load_active_stay(stay_id)
        previous = stay.valet_employee_id
        stay.valet_employee_id = valet_employee_id
        self._event(stay, StayEventType.VALET_UPDATE, "Cochero actualizado", {
            "previous": previous,
            "current": valet_employee_id,
        })
        return self._serialize(stay)

    def get_stay(self, stay_id: int) -> Result:
        return self._run("query", "Consultar estancia", self._get_stay, stay_id)

    def _get_stay(self, stay_id: int) -> dict:
        stay = self._load_stay(stay_id)
        data = self._serialize(stay)
        data["items"] = [
            {
                "id": item.id,
                "concept_type": item.concept_type.value,
                "concept": item.concept.value if item.concept else None,
                "description": item.description,
                "qty": item.qty,
                "unit_price": money_float(item.unit_price),
                "line_total": money_float(item.line_total),
                "is_paid": item.is_paid,
                "paid_at": _iso(item.paid_at),
                "payment_method": item.payment_method.value if item.payment_method else None,
            }
            for item in stay.sales_order.items
        ]
        data["payments"] = [p.to_dict() for p in stay.sales_order.payments]
        data["events"] = [e.to_dict() for e in stay.events]
        return data

    def get_active_stay(self, room_id: int) -> Result:
        return self._run("query", "Consultar estancia activa", self._get_active_stay, room_id)

    def _get_active_stay(self, room_id: int) -> dict:
        room = self._load_room(room_id)
        stay = (
            self.db.query(RoomStay)
            .filter(RoomStay.room_id == room.id, RoomStay.status == StayStatus.ACTIVA)
            .first()
        )
        if not stay:
            raise NotFound(f"Habitación {room.number} no tiene estancia activa")
        return self._serialize(stay)
