"""
Schemas Pydantic para estancias por tiempo
Define los request models de los endpoints de /stays.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from models.estancia import ToleranceType
from models.pago import PaymentMethod
from models.venta import ConceptType
from services.stay_calculators import RefundType


# ========================================================================
# PAGOS
# ========================================================================

class PaymentEntryRequest(BaseModel):
    """Un instrumento dentro de un multipago"""
    amount: Decimal = Field(..., ge=0)
    method: PaymentMethod
    terminal: Optional[str] = Field(None, max_length=40)
    reference: Optional[str] = Field(None, max_length=60)

    @field_validator("terminal", "reference")
    @classmethod
    def empty_str_to_none(cls, v):
        """Convertir string vacío a None"""
        if isinstance(v, str) and v.strip() == "":
            return None
        return v


# ========================================================================
# ENTRADA
# ========================================================================

class VehicleRequest(BaseModel):
    plate: Optional[str] = Field(None, max_length=20)
    brand: Optional[str] = Field(None, max_length=60)
    model: Optional[str] = Field(None, max_length=60)


class StartStayRequest(BaseModel):
    room_id: int
    initial_people: int = Field(..., ge=1)
    payments: List[PaymentEntryRequest] = Field(default_factory=list)
    entry_time: Optional[datetime] = None
    vehicle: Optional[VehicleRequest] = None
    valet_employee_id: Optional[int] = None


class QuickCheckInRequest(BaseModel):
    """Check-in sin cobro"""
    room_id: int
    initial_people: int = Field(..., ge=1)
    entry_time: Optional[datetime] = None
    vehicle: Optional[VehicleRequest] = None
    valet_employee_id: Optional[int] = None


# ========================================================================
# EXTRAS
# ========================================================================

class StartToleranceRequest(BaseModel):
    tolerance_type: Optional[ToleranceType] = None


class ConsumptionLine(BaseModel):
    description: str = Field(..., min_length=1, max_length=200)
    qty: int = Field(1, ge=1)
    unit_price: Decimal = Field(..., ge=0)


class ConsumptionRequest(BaseModel):
    items: List[ConsumptionLine] = Field(..., min_length=1)


class PayExtrasRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)
    method: PaymentMethod
    concept_type: ConceptType
    terminal: Optional[str] = Field(None, max_length=40)


# ========================================================================
# SALIDA / CANCELACIÓN / CAMBIO
# ========================================================================

class CheckoutRequest(BaseModel):
    amount_to_pay: Decimal = Field(..., ge=0)
    method: PaymentMethod = PaymentMethod.EFECTIVO
    terminal: Optional[str] = Field(None, max_length=40)
    tendered: Optional[Decimal] = Field(None, ge=0, description="Efectivo recibido (para calcular cambio)")


class CancelStayRequest(BaseModel):
    refund_type: RefundType = RefundType.NONE
    refund_amount: Decimal = Field(Decimal("0"), ge=0)
    reason: str = Field(..., min_length=1, max_length=500)
    refund_method: PaymentMethod = PaymentMethod.EFECTIVO


class ChangeRoomRequest(BaseModel):
    new_room_id: int
    keep_time: bool = True
    reason: str = Field(..., min_length=1, max_length=200)


class UpdateValetRequest(BaseModel):
    valet_employee_id: Optional[int] = None
