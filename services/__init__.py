"""
Servicios de negocio para estancias por tiempo
"""

from .room_status import RoomStatusRegistry
from .sales_ledger import SalesOrderLedger
from .billing_engine import BillingEngine, ConsumptionEntry
from .payment_allocator import PaymentAllocator, PaymentEntry
from .stay_calculators import RefundType
from .stay_lifecycle import StayLifecycleService

__all__ = [
    "RoomStatusRegistry",
    "SalesOrderLedger",
    "BillingEngine",
    "ConsumptionEntry",
    "PaymentAllocator",
    "PaymentEntry",
    "RefundType",
    "StayLifecycleService",
]
