from datetime import datetime
import pytz

from config import HOTEL_TIMEZONE

# Zona horaria centralizada del establecimiento
HOTEL_TZ = pytz.timezone(HOTEL_TIMEZONE)


def get_hotel_now() -> datetime:
    """Returns current time in Hotel Timezone"""
    return datetime.now(HOTEL_TZ)


def to_hotel_time(dt: datetime) -> datetime:
    """Converts a datetime to Hotel Timezone"""
    if dt.tzinfo is None:
        return pytz.utc.localize(dt).astimezone(HOTEL_TZ)
    return dt.astimezone(HOTEL_TZ)


class Clock:
    """Fuente de hora inyectada en toda operación dependiente del tiempo"""

    def now(self) -> datetime:
        raise NotImplementedError


class SystemClock(Clock):
    """
    Hora de pared del establecimiento, sin tzinfo.
    Las columnas DateTime se guardan en hora local para que las reglas
    de fin de semana y de salida esperada coincidan con el reloj del mostrador.
    """

    def now(self) -> datetime:
        return get_hotel_now().replace(tzinfo=None, microsecond=0)


class FixedClock(Clock):
    """Reloj controlable para pruebas"""

    def __init__(self, current: datetime):
        self.current = current

    def now(self) -> datetime:
        return self.current

    def set(self, current: datetime) -> None:
        self.current = current

    def advance(self, delta) -> None:
        self.current = self.current + delta
