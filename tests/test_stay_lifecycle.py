"""
Tests del Stay Lifecycle Manager
Check-in, extras, tolerancia, checkout, cancelación y cambio de habitación
contra SQLite en memoria con reloj fijo.
"""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import update

from models.estancia import RoomChange, RoomStay, StayEvent, StayEventType, StayStatus, ToleranceType
from models.habitacion import Room, RoomStatus
from models.pago import Payment, PaymentConcept, PaymentMethod, PaymentType
from models.venta import ConceptType, OrderStatus, SalesOrder, SalesOrderItem
from services.billing_engine import ConsumptionEntry
from services.payment_allocator import PaymentEntry
from services.stay_calculators import RefundType


def _efectivo(amount):
    return PaymentEntry(amount, PaymentMethod.EFECTIVO)


def _stay(db, stay_id) -> RoomStay:
    return db.query(RoomStay).filter(RoomStay.id == stay_id).one()


class TestStartStay:

    def test_escenario_a_tres_personas_martes(self, db, service, rooms):
        result = service.start_stay(rooms["101"].id, 3)

        assert result.success, result.error
        assert result.data["order"]["subtotal"] == 300.0
        assert result.data["expected_check_out_at"] == "2025-01-14T14:00:00"
        assert rooms["101"].status == RoomStatus.OCUPADA

        stay = _stay(db, result.data["stay_id"])
        assert stay.status == StayStatus.ACTIVA
        assert stay.sales_order.status == OrderStatus.OPEN
        assert [i.concept_type for i in stay.sales_order.items] == [ConceptType.BASE_STAY, ConceptType.EXTRA_PERSON]
        assert stay.sales_order.items[1].qty == 1

    @pytest.mark.parametrize("people", [1, 2, 3, 4])
    def test_conteo_de_personas(self, db, service, rooms, people):
        result = service.start_stay(rooms["101"].id, people)

        assert result.success
        stay = _stay(db, result.data["stay_id"])
        assert stay.current_people == people
        assert stay.total_people == people
        extra_cost = Decimal(max(0, people - 2)) * Decimal("50.00")
        assert stay.sales_order.subtotal == Decimal("250.00") + extra_cost

    def test_fin_de_semana_usa_horas_de_fin_de_semana(self, service, clock, rooms):
        clock.set(datetime(2025, 1, 18, 22, 0))
        result = service.start_stay(rooms["101"].id, 2)
        assert result.data["expected_check_out_at"] == "2025-01-19T04:00:00"

    def test_pago_completo_con_cambio(self, db, service, rooms):
        result = service.start_stay(rooms["101"].id, 2, payments=[_efectivo(300)])

        assert result.success
        assert result.data["change"] == 50.0
        order = _stay(db, result.data["stay_id"]).sales_order
        assert order.paid_amount == Decimal("250.00")
        assert order.remaining_amount == Decimal("0.00")
        assert all(item.is_paid for item in order.items)
        assert all(item.payment_method == PaymentMethod.EFECTIVO for item in order.items)
        assert result.data["pending_payment"] is False

    def test_multipago(self, db, service, rooms):
        result = service.start_stay(rooms["101"].id, 3, payments=[
            _efectivo(100),
            PaymentEntry(200, PaymentMethod.TARJETA, terminal="T-01"),
        ])

        assert result.success
        order = _stay(db, result.data["stay_id"]).sales_order
        main = [p for p in order.payments if p.parent_payment_id is None]
        subs = [p for p in order.payments if p.parent_payment_id is not None]
        assert len(main) == 1 and main[0].method == PaymentMethod.PENDIENTE
        assert sum(p.amount for p in subs) == Decimal("300.00")
        assert order.remaining_amount == Decimal("0.00")
        assert all(item.payment_method == PaymentMethod.PENDIENTE for item in order.items)

    def test_pago_parcial_deja_pendiente(self, db, service, rooms):
        result = service.start_stay(rooms["101"].id, 2, payments=[_efectivo(200)])

        assert result.data["pending_payment"] is True
        order = _stay(db, result.data["stay_id"]).sales_order
        assert order.remaining_amount == Decimal("50.00")
        assert not any(item.is_paid for item in order.items)

    def test_quick_check_in(self, db, service, rooms):
        result = service.quick_check_in(rooms["201"].id, 2)

        assert result.success
        assert result.data["order"]["remaining_amount"] == 400.0
        assert result.data["pending_payment"] is True
        assert db.query(Payment).count() == 0

    def test_vehiculo_y_cochero(self, service, rooms):
        result = service.start_stay(
            rooms["101"].id, 2, vehicle={"plate": "ABC-123", "brand": "Nissan", "model": "Versa"},
            valet_employee_id=7,
        )
        assert result.data["vehicle"]["plate"] == "ABC-123"
        assert result.data["valet_employee_id"] == 7

    @pytest.mark.parametrize("people", [0, 5])
    def test_personas_fuera_de_rango(self, db, service, rooms, people):
        result = service.start_stay(rooms["101"].id, people)

        assert result.code == "INVALID_PEOPLE_COUNT"
        assert result.category == "validation"
        assert rooms["101"].status == RoomStatus.LIBRE
        assert db.query(SalesOrder).count() == 0

    def test_habitacion_sucia(self, service, rooms, notifier):
        result = service.start_stay(rooms["103"].id, 2)
        assert result.code == "ROOM_NOT_AVAILABLE"
        notifier.notify.assert_not_called()

    def test_habitacion_ya_ocupada(self, service, rooms):
        assert service.start_stay(rooms["101"].id, 2).success
        result = service.start_stay(rooms["101"].id, 2)
        assert result.code == "ROOM_NOT_AVAILABLE"
        assert result.category == "state_conflict"

    def test_habitacion_inexistente(self, service, rooms):
        result = service.start_stay(9999, 2)
        assert result.code == "NOT_FOUND"

    def test_pago_invalido_no_deja_rastros(self, db, service, rooms):
        result = service.start_stay(rooms["101"].id, 2, payments=[
            PaymentEntry(300, PaymentMethod.TARJETA, terminal="T-01"),
        ])

        assert result.code == "INVALID_PAYMENT_ENTRY"
        assert rooms["101"].status == RoomStatus.LIBRE
        assert db.query(SalesOrder).count() == 0
        assert db.query(RoomStay).count() == 0

    def test_carrera_por_la_habitacion(self, db, service, rooms):
        room = rooms["102"]
        assert room.status == RoomStatus.LIBRE
        # Otra transacción ganó la habitación después de la lectura
        db.execute(
            update(Room)
            .where(Room.id == room.id)
            .values(status=RoomStatus.OCUPADA)
            .execution_options(synchronize_session=False)
        )

        result = service.start_stay(room.id, 2)

        assert result.code == "CONCURRENCY_CONFLICT"
        assert result.category == "concurrency_conflict"
        assert db.query(RoomStay).count() == 0
        assert db.query(SalesOrder).count() == 0

    def test_evento_y_notificacion(self, db, service, rooms, notifier):
        result = service.start_stay(rooms["101"].id, 2, payments=[_efectivo(250)])

        events = db.query(StayEvent).filter(StayEvent.stay_id == result.data["stay_id"]).all()
        assert [e.event_type for e in events] == [StayEventType.CHECKIN]
        assert events[0].usuario == "recepcion"
        notifier.notify.assert_called_once()

    def test_sink_roto_no_afecta_la_operacion(self, service, rooms, notifier):
        notifier.notify.side_effect = RuntimeError("sin conexión")
        result = service.start_stay(rooms["101"].id, 2)
        assert result.success


class TestPersonasYHoras:

    def _checkin(self, service, rooms, people=2, room="101"):
        return service.start_stay(rooms[room].id, people).data["stay_id"]

    def test_escenario_b_hora_extra(self, db, service, rooms):
        stay_id = self._checkin(service, rooms, people=3)

        result = service.add_extra_hour(stay_id)

        assert result.success
        assert result.data["expected_check_out_at"] == "2025-01-14T15:00:00"
        assert result.data["order"]["subtotal"] == 380.0

    def test_hora_extra_sin_precio(self, service, rooms):
        stay_id = self._checkin(service, rooms, people=1, room="301")
        result = service.add_extra_hour(stay_id)
        assert result.code == "EXTRA_HOUR_PRICE_MISSING"

    def test_persona_extra(self, db, service, rooms):
        stay_id = self._checkin(service, rooms, people=2)

        result = service.add_extra_person(stay_id)

        assert result.success
        assert result.data["current_people"] == 3
        assert result.data["total_people"] == 3
        assert result.data["order"]["subtotal"] == 300.0
        items = _stay(db, stay_id).sales_order.items
        assert items[-1].concept_type == ConceptType.EXTRA_PERSON
        assert items[-1].concept == PaymentConcept.PERSONA_EXTRA

    def test_maximo_de_personas(self, service, rooms):
        stay_id = self._checkin(service, rooms, people=4)
        result = service.add_extra_person(stay_id)
        assert result.code == "MAX_PEOPLE_EXCEEDED"

    def test_quitar_persona(self, service, rooms):
        stay_id = self._checkin(service, rooms, people=3)

        result = service.remove_person(stay_id)

        assert result.data["current_people"] == 2
        assert result.data["total_people"] == 3
        assert result.data["order"]["subtotal"] == 300.0

    def test_no_quitar_ultima_persona(self, service, rooms):
        stay_id = self._checkin(service, rooms, people=1)
        result = service.remove_person(stay_id)
        assert result.code == "INVALID_PEOPLE_COUNT"

    def test_consumos(self, db, service, rooms):
        stay_id = self._checkin(service, rooms)

        result = service.add_consumption(stay_id, [
            ConsumptionEntry("Refresco", 2, 25),
            ConsumptionEntry("Botana", 1, 40),
        ])

        assert result.success
        assert result.data["consumption_total"] == 90.0
        assert result.data["order"]["subtotal"] == 340.0
        consumos = [i for i in _stay(db, stay_id).sales_order.items if i.concept_type == ConceptType.CONSUMPTION]
        assert len(consumos) == 2

    def test_consumo_invalido(self, service, rooms):
        stay_id = self._checkin(service, rooms)
        result = service.add_consumption(stay_id, [ConsumptionEntry("Refresco", 0, 25)])
        assert result.code == "INVALID_AMOUNT"

    def test_estancia_inexistente(self, service, rooms):
        result = service.add_extra_person(12345)
        assert result.code == "NOT_FOUND"
        assert result.category == "not_found"


class TestTolerancia:

    def _checkin(self, service, rooms, people=2, room="101"):
        return service.start_stay(rooms[room].id, people).data["stay_id"]

    def _tolerance_items(self, db, stay_id):
        return (
            db.query(SalesOrderItem)
            .filter(
                SalesOrderItem.sales_order_id == _stay(db, stay_id).sales_order_id,
                SalesOrderItem.concept == PaymentConcept.TOLERANCIA_EXPIRADA,
            )
            .all()
        )

    def test_persona_sale(self, service, rooms, clock):
        stay_id = self._checkin(service, rooms, people=2)

        result = service.start_tolerance(stay_id)

        assert result.success
        assert result.data["current_people"] == 1
        assert result.data["tolerance"]["type"] == "PERSON_LEFT"
        assert result.data["tolerance"]["started_at"] == clock.now().isoformat()
        assert result.data["tolerance"]["remaining_minutes"] == 60

    def test_habitacion_vacia(self, service, rooms):
        stay_id = self._checkin(service, rooms, people=1)
        result = service.start_tolerance(stay_id)
        assert result.data["current_people"] == 0
        assert result.data["tolerance"]["type"] == "ROOM_EMPTY"

    def test_no_aplica_en_hotel(self, service, rooms):
        stay_id = self._checkin(service, rooms, people=1, room="301")
        result = service.start_tolerance(stay_id, ToleranceType.PERSON_LEFT)
        assert result.code == "TOLERANCE_NOT_ALLOWED"

    def test_consulta_de_expiracion(self, service, rooms, clock):
        stay_id = self._checkin(service, rooms)
        service.start_tolerance(stay_id)

        clock.advance(timedelta(minutes=45))
        assert service.is_tolerance_expired(stay_id).data["expired"] is False
        clock.advance(timedelta(minutes=15))
        assert service.is_tolerance_expired(stay_id).data["expired"] is True

    def test_cobro_antes_de_expirar(self, service, rooms, clock):
        stay_id = self._checkin(service, rooms)
        service.start_tolerance(stay_id)
        clock.advance(timedelta(minutes=30))

        result = service.charge_tolerance_expired(stay_id)

        assert result.code == "TOLERANCE_NOT_EXPIRED"

    def test_cobro_sin_ventana(self, service, rooms):
        stay_id = self._checkin(service, rooms)
        result = service.charge_tolerance_expired(stay_id)
        assert result.code == "NO_TOLERANCE_WINDOW"

    def test_cobro_idempotente(self, db, service, rooms, clock):
        stay_id = self._checkin(service, rooms, people=2)
        service.start_tolerance(stay_id)
        clock.advance(timedelta(minutes=61))

        first = service.charge_tolerance_expired(stay_id)
        second = service.charge_tolerance_expired(stay_id)

        assert first.success and first.data["charged"] is True
        assert second.success and second.data["charged"] is False
        items = self._tolerance_items(db, stay_id)
        assert len(items) == 1
        assert items[0].concept_type == ConceptType.EXTRA_PERSON
        assert items[0].unit_price == Decimal("50.00")
        assert second.data["order"]["subtotal"] == 300.0

    def test_habitacion_vacia_cobra_habitacion(self, db, service, rooms, clock):
        stay_id = self._checkin(service, rooms, people=1)
        service.start_tolerance(stay_id)
        clock.advance(timedelta(hours=1))

        result = service.charge_tolerance_expired(stay_id)

        assert result.data["charged"] is True
        assert result.data["order"]["subtotal"] == 500.0
        assert self._tolerance_items(db, stay_id)[0].concept_type == ConceptType.BASE_STAY

    def test_regreso_a_tiempo(self, db, service, rooms, clock):
        stay_id = self._checkin(service, rooms, people=2)
        service.start_tolerance(stay_id)
        clock.advance(timedelta(minutes=20))

        result = service.register_return(stay_id)

        assert result.success
        assert result.data["charged"] is False
        assert result.data["current_people"] == 2
        assert result.data["tolerance"]["started_at"] is None
        assert result.data["order"]["subtotal"] == 250.0

    def test_regreso_tarde_cobra(self, db, service, rooms, clock):
        stay_id = self._checkin(service, rooms, people=2)
        service.start_tolerance(stay_id)
        clock.advance(timedelta(minutes=75))

        result = service.register_return(stay_id)

        assert result.data["charged"] is True
        assert result.data["current_people"] == 2
        assert result.data["order"]["subtotal"] == 300.0
        assert len(self._tolerance_items(db, stay_id)) == 1

    def test_regreso_sin_ventana(self, service, rooms):
        stay_id = self._checkin(service, rooms)
        result = service.register_return(stay_id)
        assert result.code == "NO_TOLERANCE_WINDOW"

    def test_ventana_vencida_se_cobra_antes_de_abrir_otra(self, db, service, rooms, clock):
        stay_id = self._checkin(service, rooms, people=3)
        service.start_tolerance(stay_id)
        clock.advance(timedelta(minutes=90))

        result = service.start_tolerance(stay_id)

        assert result.success
        assert result.data["current_people"] == 1
        assert result.data["tolerance"]["started_at"] == clock.now().isoformat()
        assert len(self._tolerance_items(db, stay_id)) == 1

    def test_segunda_salida_conserva_ventana(self, service, rooms, clock):
        stay_id = self._checkin(service, rooms, people=3)
        started = clock.now()
        service.start_tolerance(stay_id)
        clock.advance(timedelta(minutes=10))

        result = service.start_tolerance(stay_id)

        assert result.data["tolerance"]["started_at"] == started.isoformat()
        assert result.data["current_people"] == 1

    @pytest.mark.parametrize("people,tolerance_type", [
        (1, ToleranceType.PERSON_LEFT),
        (2, ToleranceType.ROOM_EMPTY),
    ])
    def test_tipo_que_no_corresponde(self, db, service, rooms, people, tolerance_type):
        stay_id = self._checkin(service, rooms, people=people)

        result = service.start_tolerance(stay_id, tolerance_type)

        assert result.code == "TOLERANCE_NOT_ALLOWED"
        stay = _stay(db, stay_id)
        assert stay.current_people == people
        assert stay.tolerance_started_at is None

    def test_tipo_explicito_que_corresponde(self, service, rooms):
        stay_id = self._checkin(service, rooms, people=1)
        result = service.start_tolerance(stay_id, "ROOM_EMPTY")
        assert result.success
        assert result.data["tolerance"]["type"] == "ROOM_EMPTY"

    def test_tipo_inexistente(self, db, service, rooms):
        stay_id = self._checkin(service, rooms, people=2)

        result = service.start_tolerance(stay_id, "BOGUS")

        assert result.category == "validation"
        assert result.code == "TOLERANCE_NOT_ALLOWED"
        assert _stay(db, stay_id).current_people == 2

    def test_cobro_concurrente_de_la_misma_ventana(self, db, service, rooms, clock, monkeypatch):
        stay_id = self._checkin(service, rooms, people=2)
        service.start_tolerance(stay_id)
        clock.advance(timedelta(minutes=61))
        assert service.charge_tolerance_expired(stay_id).data["charged"] is True

        # La búsqueda previa no ve la partida: solo queda la restricción única
        monkeypatch.setattr(service, "_find_tolerance_item", lambda stay, window_start: None)
        result = service.charge_tolerance_expired(stay_id)

        assert result.success, result.error
        assert result.data["charged"] is False
        assert len(self._tolerance_items(db, stay_id)) == 1
        order = _stay(db, stay_id).sales_order
        assert order.subtotal == Decimal("300.00")
        assert order.remaining_amount == order.total - order.paid_amount


class TestPagos:

    def _checkin_pagado(self, service, rooms, people=2):
        return service.start_stay(rooms["101"].id, people, payments=[_efectivo(250 + 50 * max(0, people - 2))]).data["stay_id"]

    def test_pagar_persona_extra(self, db, service, rooms):
        stay_id = self._checkin_pagado(service, rooms)
        service.add_extra_person(stay_id)

        result = service.pay_extras(stay_id, 50, PaymentMethod.EFECTIVO, ConceptType.EXTRA_PERSON)

        assert result.success
        assert result.data["items_marked"] == 1
        assert result.data["payment"]["concept"] == "PERSONA_EXTRA"
        assert result.data["payment"]["reference"].startswith("PEX-")
        assert result.data["order"]["remaining_amount"] == 0.0

    def test_pago_parcial_marca_todas_las_partidas_del_tipo(self, db, service, rooms):
        stay_id = self._checkin_pagado(service, rooms)
        service.add_extra_hour(stay_id)
        service.add_extra_hour(stay_id)

        result = service.pay_extras(stay_id, 10, PaymentMethod.EFECTIVO, ConceptType.EXTRA_HOUR)

        assert result.data["items_marked"] == 2
        assert result.data["payment"]["payment_type"] == "PARCIAL"
        assert result.data["order"]["remaining_amount"] == 150.0

    def test_monto_cero(self, service, rooms):
        stay_id = self._checkin_pagado(service, rooms)
        service.add_extra_person(stay_id)
        result = service.pay_extras(stay_id, 0, PaymentMethod.EFECTIVO, ConceptType.EXTRA_PERSON)
        assert result.code == "INVALID_AMOUNT"

    def test_sobrepago(self, service, rooms):
        stay_id = self._checkin_pagado(service, rooms)
        service.add_extra_person(stay_id)
        result = service.pay_extras(stay_id, 100, PaymentMethod.EFECTIVO, ConceptType.EXTRA_PERSON)
        assert result.code == "OVERPAYMENT_NOT_ALLOWED"

    def test_sin_partidas_del_tipo(self, service, rooms):
        stay_id = self._checkin_pagado(service, rooms)
        service.add_extra_person(stay_id)
        result = service.pay_extras(stay_id, 10, PaymentMethod.EFECTIVO, ConceptType.CONSUMPTION)
        assert result.code == "INVALID_AMOUNT"

    def test_monto_no_numerico(self, db, service, rooms):
        stay_id = self._checkin_pagado(service, rooms)
        service.add_extra_person(stay_id)

        result = service.pay_extras(stay_id, "abc", PaymentMethod.EFECTIVO, ConceptType.EXTRA_PERSON)

        assert result.code == "INVALID_AMOUNT"
        assert result.category == "validation"
        assert _stay(db, stay_id).sales_order.remaining_amount == Decimal("50.00")

    def test_tipo_de_concepto_inexistente(self, service, rooms):
        stay_id = self._checkin_pagado(service, rooms)
        service.add_extra_person(stay_id)

        result = service.pay_extras(stay_id, "10", "EFECTIVO", "NOPE")

        assert result.code == "INVALID_AMOUNT"
        assert result.category == "validation"


class TestCheckout:

    def test_escenario_c_pago_final(self, db, service, rooms, clock):
        stay_id = service.start_stay(rooms["101"].id, 2, payments=[_efectivo(200)]).data["stay_id"]
        clock.advance(timedelta(hours=3))

        result = service.checkout(stay_id, 50)

        assert result.success
        assert result.data["finalized"] is True
        stay = _stay(db, stay_id)
        assert stay.status == StayStatus.FINALIZADA
        assert stay.actual_check_out_at == datetime(2025, 1, 14, 13, 0)
        assert stay.room.status == RoomStatus.SUCIA
        assert stay.sales_order.status == OrderStatus.ENDED
        assert all(item.is_paid for item in stay.sales_order.items)

    def test_escenario_c_pago_parcial(self, db, service, rooms):
        stay_id = service.start_stay(rooms["101"].id, 2, payments=[_efectivo(200)]).data["stay_id"]

        result = service.checkout(stay_id, 30)

        assert result.success
        assert result.data["finalized"] is False
        assert result.data["payment"]["payment_type"] == "PARCIAL"
        stay = _stay(db, stay_id)
        assert stay.status == StayStatus.ACTIVA
        assert stay.sales_order.remaining_amount == Decimal("20.00")
        assert stay.room.status == RoomStatus.OCUPADA

    def test_sobrepago(self, service, rooms):
        stay_id = service.start_stay(rooms["101"].id, 2, payments=[_efectivo(200)]).data["stay_id"]
        result = service.checkout(stay_id, 60)
        assert result.code == "OVERPAYMENT_NOT_ALLOWED"

    def test_cambio_no_se_guarda(self, db, service, rooms):
        stay_id = service.quick_check_in(rooms["101"].id, 2).data["stay_id"]

        result = service.checkout(stay_id, 250, PaymentMethod.EFECTIVO, tendered=300)

        assert result.data["change"] == 50.0
        order = _stay(db, stay_id).sales_order
        assert order.paid_amount == Decimal("250.00")
        assert sum(p.amount for p in order.payments) == Decimal("250.00")

    def test_cuenta_saldada_sin_pago(self, db, service, rooms):
        stay_id = service.start_stay(rooms["101"].id, 2, payments=[_efectivo(250)]).data["stay_id"]

        result = service.checkout(stay_id, 0)

        assert result.data["finalized"] is True
        assert result.data["payment"] is None
        assert len(_stay(db, stay_id).sales_order.payments) == 2  # principal + subpago del check-in

    def test_tarjeta_requiere_terminal(self, service, rooms):
        stay_id = service.quick_check_in(rooms["101"].id, 2).data["stay_id"]
        result = service.checkout(stay_id, 250, PaymentMethod.TARJETA)
        assert result.code == "INVALID_PAYMENT_ENTRY"

    @pytest.mark.parametrize("amount", ["abc", None, "NaN", "Infinity"])
    def test_monto_no_numerico(self, db, service, rooms, amount):
        stay_id = service.quick_check_in(rooms["101"].id, 2).data["stay_id"]

        result = service.checkout(stay_id, amount)

        assert result.code == "INVALID_AMOUNT"
        assert result.category == "validation"
        stay = _stay(db, stay_id)
        assert stay.status == StayStatus.ACTIVA
        assert len(stay.sales_order.payments) == 0

    def test_efectivo_recibido_no_numerico(self, service, rooms):
        stay_id = service.quick_check_in(rooms["101"].id, 2).data["stay_id"]
        result = service.checkout(stay_id, 250, PaymentMethod.EFECTIVO, tendered="mucho")
        assert result.code == "INVALID_AMOUNT"

    def test_metodo_inexistente_sin_monto(self, service, rooms):
        stay_id = service.start_stay(rooms["101"].id, 2, payments=[_efectivo(250)]).data["stay_id"]

        result = service.checkout(stay_id, 0, "CHEQUE")

        assert result.code == "INVALID_PAYMENT_ENTRY"
        assert result.category == "validation"

    def test_estancia_terminada_no_reabre(self, service, rooms):
        stay_id = service.quick_check_in(rooms["101"].id, 2).data["stay_id"]
        assert service.checkout(stay_id, 250).success

        for result in (
            service.checkout(stay_id, 0),
            service.add_extra_person(stay_id),
            service.add_extra_hour(stay_id),
            service.start_tolerance(stay_id),
        ):
            assert result.code == "STAY_NOT_ACTIVE"

    def test_preparar_checkout_cobra_horas_vencidas(self, db, service, rooms, clock):
        stay_id = service.quick_check_in(rooms["101"].id, 2).data["stay_id"]
        clock.set(datetime(2025, 1, 14, 15, 30))

        first = service.prepare_checkout(stay_id)
        second = service.prepare_checkout(stay_id)

        assert first.data["overdue_hours_charged"] == 2
        assert first.data["expected_check_out_at"] == "2025-01-14T16:00:00"
        assert first.data["remaining_amount"] == 410.0
        assert second.data["overdue_hours_charged"] == 0
        assert second.data["remaining_amount"] == 410.0

    def test_preparar_checkout_a_tiempo(self, service, rooms):
        stay_id = service.quick_check_in(rooms["101"].id, 2).data["stay_id"]
        result = service.prepare_checkout(stay_id)
        assert result.data["overdue_hours_charged"] == 0
        assert result.data["remaining_amount"] == 250.0


class TestCancelacion:

    def _checkin_pagado(self, service, rooms):
        return service.start_stay(rooms["101"].id, 2, payments=[_efectivo(250)]).data["stay_id"]

    def test_devolucion_total(self, db, service, rooms):
        stay_id = self._checkin_pagado(service, rooms)

        result = service.cancel_stay(stay_id, RefundType.FULL, 0, "Cliente se retiró")

        assert result.success
        assert result.data["refund"] == 250.0
        assert result.data["refund_payment"]["amount"] == -250.0
        assert result.data["refund_payment"]["concept"] == "REEMBOLSO"
        assert result.data["refund_payment"]["reference"].startswith("REF-")
        stay = _stay(db, stay_id)
        assert stay.status == StayStatus.CANCELADA
        assert stay.cancel_reason == "Cliente se retiró"
        assert stay.room.status == RoomStatus.SUCIA
        assert stay.sales_order.status == OrderStatus.CANCELLED
        assert stay.sales_order.paid_amount == Decimal("0.00")

    def test_devolucion_parcial(self, db, service, rooms):
        stay_id = self._checkin_pagado(service, rooms)

        result = service.cancel_stay(stay_id, "partial", 100, "Queja por ruido")

        assert result.data["refund"] == 100.0
        order = _stay(db, stay_id).sales_order
        assert order.paid_amount == Decimal("150.00")
        assert order.remaining_amount == order.total - order.paid_amount

    def test_sin_devolucion(self, db, service, rooms):
        stay_id = self._checkin_pagado(service, rooms)
        result = service.cancel_stay(stay_id, RefundType.NONE, 0, "No show")
        assert result.data["refund"] == 0.0
        assert result.data["refund_payment"] is None

    def test_motivo_obligatorio(self, db, service, rooms):
        stay_id = self._checkin_pagado(service, rooms)
        result = service.cancel_stay(stay_id, RefundType.FULL, 0, "   ")
        assert result.code == "MISSING_REASON"
        assert _stay(db, stay_id).status == StayStatus.ACTIVA

    def test_devolucion_mayor_a_lo_pagado(self, service, rooms):
        stay_id = self._checkin_pagado(service, rooms)
        result = service.cancel_stay(stay_id, RefundType.PARTIAL, 300, "Error de cobro")
        assert result.code == "INVALID_REFUND_AMOUNT"

    def test_devolucion_no_numerica(self, db, service, rooms):
        stay_id = self._checkin_pagado(service, rooms)

        result = service.cancel_stay(stay_id, RefundType.PARTIAL, "cien", "Error de cobro")

        assert result.code == "INVALID_REFUND_AMOUNT"
        assert result.category == "validation"
        assert _stay(db, stay_id).status == StayStatus.ACTIVA

    def test_metodo_de_devolucion_inexistente(self, service, rooms):
        stay_id = self._checkin_pagado(service, rooms)
        result = service.cancel_stay(stay_id, RefundType.FULL, 0, "Cliente se retiró", "CHEQUE")
        assert result.code == "INVALID_PAYMENT_ENTRY"


class TestCambioHabitacion:

    def test_escenario_d_mantener_hora(self, db, service, rooms, clock):
        stay_id = service.start_stay(rooms["101"].id, 2).data["stay_id"]
        clock.advance(timedelta(minutes=30))

        result = service.change_room(stay_id, rooms["201"].id, True, "Quiere jacuzzi")

        assert result.success
        assert result.data["price_difference"] == 150.0
        assert result.data["expected_check_out_at"] == "2025-01-14T14:00:00"
        assert result.data["room_id"] == rooms["201"].id
        assert result.data["order"]["subtotal"] == 400.0
        assert rooms["201"].status == RoomStatus.OCUPADA
        assert rooms["101"].status == RoomStatus.SUCIA
        change = db.query(RoomChange).one()
        assert change.from_room_id == rooms["101"].id
        assert change.keep_time is True

    def test_recalcular_hora(self, service, rooms, clock):
        stay_id = service.start_stay(rooms["101"].id, 2).data["stay_id"]
        clock.advance(timedelta(hours=1))

        result = service.change_room(stay_id, rooms["201"].id, False, "Aire acondicionado")

        assert result.data["expected_check_out_at"] == "2025-01-14T15:00:00"

    def test_cambio_a_menor_precio_acredita(self, service, rooms):
        stay_id = service.start_stay(rooms["201"].id, 2).data["stay_id"]
        result = service.change_room(stay_id, rooms["101"].id, True, "Prefiere sencilla")
        assert result.data["price_difference"] == -150.0
        assert result.data["order"]["subtotal"] == 250.0

    def test_habitacion_destino_no_libre(self, service, rooms):
        stay_id = service.start_stay(rooms["101"].id, 2).data["stay_id"]
        assert service.change_room(stay_id, rooms["103"].id, True, "x").code == "ROOM_NOT_AVAILABLE"
        assert service.change_room(stay_id, rooms["101"].id, True, "x").code == "ROOM_NOT_AVAILABLE"

    def test_motivo_obligatorio(self, service, rooms):
        stay_id = service.start_stay(rooms["101"].id, 2).data["stay_id"]
        result = service.change_room(stay_id, rooms["102"].id, True, "")
        assert result.code == "MISSING_REASON"
        assert rooms["102"].status == RoomStatus.LIBRE

    def test_destino_con_menos_capacidad(self, db, service, rooms):
        stay_id = service.start_stay(rooms["101"].id, 3).data["stay_id"]

        result = service.change_room(stay_id, rooms["301"].id, True, "Quiere torre")

        assert result.code == "MAX_PEOPLE_EXCEEDED"
        assert result.category == "state_conflict"
        assert rooms["301"].status == RoomStatus.LIBRE
        assert rooms["101"].status == RoomStatus.OCUPADA
        assert _stay(db, stay_id).room_id == rooms["101"].id

    def test_destino_con_capacidad_justa(self, service, rooms):
        stay_id = service.start_stay(rooms["101"].id, 2).data["stay_id"]
        result = service.change_room(stay_id, rooms["301"].id, True, "Quiere torre")
        assert result.success, result.error
        assert result.data["current_people"] == 2

    def test_estancia_activa_sigue_a_la_habitacion(self, service, rooms):
        stay_id = service.start_stay(rooms["101"].id, 2).data["stay_id"]
        service.change_room(stay_id, rooms["102"].id, True, "Goteras")

        assert service.get_active_stay(rooms["102"].id).data["stay_id"] == stay_id
        assert service.get_active_stay(rooms["101"].id).code == "NOT_FOUND"


class TestDatosEstancia:

    def test_vehiculo(self, service, rooms):
        stay_id = service.start_stay(rooms["101"].id, 2).data["stay_id"]
        result = service.update_vehicle(stay_id, " abc-123 ", "Nissan", "")
        assert result.data["vehicle"] == {"plate": "ABC-123", "brand": "Nissan", "model": None}

    def test_cochero(self, service, rooms):
        stay_id = service.start_stay(rooms["101"].id, 2).data["stay_id"]
        assert service.update_valet(stay_id, 12).data["valet_employee_id"] == 12

    def test_get_stay_con_detalle(self, service, rooms):
        stay_id = service.start_stay(rooms["101"].id, 3, payments=[_efectivo(300)]).data["stay_id"]
        service.add_extra_hour(stay_id)

        data = service.get_stay(stay_id).data

        assert len(data["items"]) == 3
        assert [i["line_total"] for i in data["items"]] == [250.0, 50.0, 80.0]
        assert len(data["payments"]) == 2
        assert [e["tipo"] for e in data["events"]] == ["CHECKIN", "EXTRA_HOUR"]

    def test_get_stay_inexistente(self, service, rooms):
        result = service.get_stay(999)
        assert not result
        assert result.code == "NOT_FOUND"


class TestInvariantes:

    def test_estado_de_habitacion_siempre_valido(self, db, service, rooms, clock):
        stay_id = service.start_stay(rooms["101"].id, 2, payments=[_efectivo(250)]).data["stay_id"]
        service.add_extra_person(stay_id)
        service.start_tolerance(stay_id)
        clock.advance(timedelta(hours=2))
        service.charge_tolerance_expired(stay_id)
        service.register_return(stay_id)
        service.change_room(stay_id, rooms["102"].id, True, "Cambio")
        remaining = service.prepare_checkout(stay_id).data["remaining_amount"]
        service.checkout(stay_id, remaining)

        validos = set(RoomStatus)
        for room in db.query(Room).all():
            assert room.status in validos
        for order in db.query(SalesOrder).all():
            assert order.remaining_amount == order.total - order.paid_amount
        assert _stay(db, stay_id).status == StayStatus.FINALIZADA
