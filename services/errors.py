"""
Taxonomía de errores del núcleo de estancias.
Las excepciones se usan dentro de los servicios y se convierten en Result
en el borde público de cada operación.
"""

from enum import Enum


class ErrorCode(str, Enum):
    # Validación
    INVALID_PEOPLE_COUNT = "INVALID_PEOPLE_COUNT"
    INVALID_REFUND_AMOUNT = "INVALID_REFUND_AMOUNT"
    MISSING_REASON = "MISSING_REASON"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    INVALID_PAYMENT_ENTRY = "INVALID_PAYMENT_ENTRY"
    EXTRA_HOUR_PRICE_MISSING = "EXTRA_HOUR_PRICE_MISSING"
    # Conflictos de estado
    INVALID_TRANSITION = "INVALID_TRANSITION"
    ROOM_NOT_AVAILABLE = "ROOM_NOT_AVAILABLE"
    OVERPAYMENT_NOT_ALLOWED = "OVERPAYMENT_NOT_ALLOWED"
    MAX_PEOPLE_EXCEEDED = "MAX_PEOPLE_EXCEEDED"
    STAY_NOT_ACTIVE = "STAY_NOT_ACTIVE"
    TOLERANCE_NOT_ALLOWED = "TOLERANCE_NOT_ALLOWED"
    TOLERANCE_NOT_EXPIRED = "TOLERANCE_NOT_EXPIRED"
    NO_TOLERANCE_WINDOW = "NO_TOLERANCE_WINDOW"
    # Otros
    NOT_FOUND = "NOT_FOUND"
    PERSISTENCE_ERROR = "PERSISTENCE_ERROR"
    LEDGER_INCONSISTENT = "LEDGER_INCONSISTENT"
    CONCURRENCY_CONFLICT = "CONCURRENCY_CONFLICT"


class StayError(Exception):
    category = "error"

    def __init__(self, code: ErrorCode, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class ValidationError(StayError):
    """Datos con forma o rango inválido"""
    category = "validation"


class StateConflict(StayError):
    """La operación no es válida en el estado actual"""
    category = "state_conflict"


class NotFound(StayError):
    category = "not_found"

    def __init__(self, message: str):
        super().__init__(ErrorCode.NOT_FOUND, message)


class PersistenceError(StayError):
    category = "persistence"


class ConcurrencyConflict(StayError):
    """Se perdió la carrera de una escritura condicional"""
    category = "concurrency_conflict"

    def __init__(self, message: str):
        super().__init__(ErrorCode.CONCURRENCY_CONFLICT, message)
