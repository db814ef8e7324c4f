# domain/models/pricing.py
from dataclasses import dataclass
from typing import Dict, Optional, List

from pydantic import BaseModel, Field

DEFAULT_PLC_RATE = 200
DEFAULT_PARKING_RATE = 150_000

class PricingInput(BaseModel):
    """Validated unit attributes and statutory rates for a price quote"""
    model_config = {"frozen": True, "populate_by_name": True}

    base_price: float = Field(..., gt=0, alias="basePrice")
    carpet_area: float = Field(..., gt=0, alias="carpetArea")
    plc_map: Optional[Dict[str, float]] = Field(None, alias="plcMap")
    floor_rise: Optional[float] = Field(None, ge=0, alias="floorRise")
    parking: Optional[float] = Field(None, ge=0)
    discount_percent: Optional[float] = Field(None, ge=0, le=100, alias="discountPercent")
    gst_rate: float = Field(5, ge=0, le=30, alias="gstRate")
    stamp_duty_rate: float = Field(5, ge=0, le=10, alias="stampDutyRate")
    registration_fee: float = Field(30_000, ge=0, alias="registrationFee")

@dataclass(frozen=True)
class PriceBreakdown:
    base_price: float
    plc_charges: float
    floor_rise_charges: float
    parking_charges: float
    subtotal: float
    discount: float
    net_amount: float
    gst: float
    stamp_duty: float
    registration_fee: float
    total_amount: float

@dataclass(frozen=True)
class ScheduleStage:
    milestone: str
    percentage: float

@dataclass(frozen=True)
class PaymentMilestone:
    milestone: str
    percentage: float
    amount: int

@dataclass(frozen=True)
class EmiOption:
    interest_rate: float
    tenure_years: int
    monthly_emi: int
    total_interest: int

@dataclass(frozen=True)
class PricingResult:
    breakdown: PriceBreakdown
    schedule: List[PaymentMilestone]
    emi_options: List[EmiOption]
    loan_amount: int
