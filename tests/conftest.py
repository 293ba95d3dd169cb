"""
Fixtures compartidas: base SQLite en memoria, reloj fijo y catálogo de habitaciones
"""

from datetime import datetime
from decimal import Decimal
from unittest.mock import Mock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import models  # registra todas las tablas en Base.metadata
from database.conexion import Base
from models.habitacion import Room, RoomStatus, RoomType
from services.stay_lifecycle import StayLifecycleService
from utils.notifications import NotificationSink
from utils.timezone import FixedClock

# Martes 14/01/2025 10:00 (día entre semana)
MARTES_10 = datetime(2025, 1, 14, 10, 0)
# Sábado 18/01/2025 10:00
SABADO_10 = datetime(2025, 1, 18, 10, 0)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    TestingSession = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = TestingSession()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FixedClock(MARTES_10)


@pytest.fixture
def notifier():
    return Mock(spec=NotificationSink)


@pytest.fixture
def room_types(db):
    doble = RoomType(
        name="Doble", base_price=Decimal("250.00"), weekday_hours=4, weekend_hours=6,
        max_people=4, extra_person_price=Decimal("50.00"), extra_hour_price=Decimal("80.00"),
        is_hotel=False,
    )
    jacuzzi = RoomType(
        name="Jacuzzi", base_price=Decimal("400.00"), weekday_hours=4, weekend_hours=6,
        max_people=4, extra_person_price=Decimal("80.00"), extra_hour_price=Decimal("120.00"),
        is_hotel=False,
    )
    torre = RoomType(
        name="Torre", base_price=Decimal("600.00"), weekday_hours=12, weekend_hours=12,
        max_people=2, extra_person_price=Decimal("100.00"), extra_hour_price=Decimal("0.00"),
        is_hotel=True,
    )
    db.add_all([doble, jacuzzi, torre])
    db.commit()
    return {"doble": doble, "jacuzzi": jacuzzi, "torre": torre}


@pytest.fixture
def rooms(db, room_types):
    catalogo = {
        "101": Room(number="101", room_type=room_types["doble"], status=RoomStatus.LIBRE),
        "102": Room(number="102", room_type=room_types["doble"], status=RoomStatus.LIBRE),
        "103": Room(number="103", room_type=room_types["doble"], status=RoomStatus.SUCIA),
        "201": Room(number="201", room_type=room_types["jacuzzi"], status=RoomStatus.LIBRE),
        "301": Room(number="301", room_type=room_types["torre"], status=RoomStatus.LIBRE),
    }
    db.add_all(catalogo.values())
    db.commit()
    return catalogo


@pytest.fixture
def service(db, clock, notifier, rooms):
    return StayLifecycleService(db, clock=clock, notifier=notifier, usuario="recepcion")
