# application/services/pricing_calculator.py
"""Deterministic unit pricing: price breakdown, milestone schedule and EMI options.

Breakdown figures are exact (no intermediate rounding). Schedule amounts,
loan amount, EMI and total interest are rounded half-up to whole rupees.
"""
import math
from typing import Dict, Any, Optional, List, Sequence, Union

from pydantic import ValidationError

from domain.exceptions import InvalidInput
from domain.models.pricing import (
    DEFAULT_PARKING_RATE,
    DEFAULT_PLC_RATE,
    EmiOption,
    PaymentMilestone,
    PriceBreakdown,
    PricingInput,
    PricingResult,
    ScheduleStage,
)

DEFAULT_SCHEDULE = (
    ScheduleStage("Token Amount", 10),
    ScheduleStage("Agreement", 10),
    ScheduleStage("Foundation", 15),
    ScheduleStage("Plinth", 15),
    ScheduleStage("Slab", 20),
    ScheduleStage("Finishing", 20),
    ScheduleStage("Possession", 10),
)
DEFAULT_INTEREST_RATES = (8.5, 9.0, 9.5)
DEFAULT_TENURES = (15, 20, 25)
DEFAULT_LOAN_PERCENTAGE = 80

def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))

def calculate_plc_charges(carpet_area: float, plc_map: Optional[Dict[str, float]] = None) -> float:
    rate = (plc_map or {}).get("default") or DEFAULT_PLC_RATE
    return carpet_area * rate

def calculate_floor_rise_charges(carpet_area: float, floor_rise: float = 0) -> float:
    return carpet_area * floor_rise

def calculate_parking_charges(parking_spaces: float = 0,
                              rate_per_space: float = DEFAULT_PARKING_RATE) -> float:
    return parking_spaces * rate_per_space

def calculate_discount(subtotal: float, discount_percent: float = 0) -> float:
    return subtotal * discount_percent / 100

def calculate_gst(net_amount: float, gst_rate: float = 5) -> float:
    return net_amount * gst_rate / 100

def calculate_stamp_duty(net_amount: float, stamp_duty_rate: float = 5) -> float:
    return net_amount * stamp_duty_rate / 100

def validate_pricing_input(data: Union[PricingInput, Dict[str, Any]]) -> PricingInput:
    """Coerce raw input into a PricingInput, raising InvalidInput on failure"""
    if isinstance(data, PricingInput):
        return data
    try:
        return PricingInput.model_validate(data)
    except ValidationError as e:
        errors = [
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
            for err in e.errors()
        ]
        raise InvalidInput(f"Invalid pricing input: {', '.join(errors)}", errors) from e

def calculate_price_breakdown(data: Union[PricingInput, Dict[str, Any]]) -> PriceBreakdown:
    pricing = validate_pricing_input(data)

    plc_charges = calculate_plc_charges(pricing.carpet_area, pricing.plc_map)
    floor_rise_charges = calculate_floor_rise_charges(pricing.carpet_area, pricing.floor_rise or 0)
    parking_charges = calculate_parking_charges(pricing.parking or 0)

    subtotal = pricing.base_price + plc_charges + floor_rise_charges + parking_charges
    discount = calculate_discount(subtotal, pricing.discount_percent or 0)
    net_amount = subtotal - discount

    gst = calculate_gst(net_amount, pricing.gst_rate)
    stamp_duty = calculate_stamp_duty(net_amount, pricing.stamp_duty_rate)
    total_amount = net_amount + gst + stamp_duty + pricing.registration_fee

    return PriceBreakdown(
        base_price=pricing.base_price,
        plc_charges=plc_charges,
        floor_rise_charges=floor_rise_charges,
        parking_charges=parking_charges,
        subtotal=subtotal,
        discount=discount,
        net_amount=net_amount,
        gst=gst,
        stamp_duty=stamp_duty,
        registration_fee=pricing.registration_fee,
        total_amount=total_amount,
    )

def generate_payment_schedule(total_amount: float,
                              schedule: Optional[Sequence[ScheduleStage]] = None) -> List[PaymentMilestone]:
    """Split the total across milestones; custom schedules are not checked to sum to 100"""
    stages = DEFAULT_SCHEDULE if schedule is None else schedule
    return [
        PaymentMilestone(
            milestone=stage.milestone,
            percentage=stage.percentage,
            amount=round_half_up(total_amount * stage.percentage / 100),
        )
        for stage in stages
    ]

def calculate_monthly_emi(loan_amount: float, annual_rate: float, tenure_years: int) -> int:
    months = tenure_years * 12
    monthly_rate = annual_rate / 100 / 12
    if monthly_rate == 0:
        return round_half_up(loan_amount / months)
    growth = (1 + monthly_rate) ** months
    return round_half_up(loan_amount * monthly_rate * growth / (growth - 1))

def calculate_emi_options(loan_amount: float,
                          interest_rates: Sequence[float] = DEFAULT_INTEREST_RATES,
                          tenures: Sequence[int] = DEFAULT_TENURES) -> List[EmiOption]:
    options = []
    for rate in interest_rates:
        for tenure in tenures:
            emi = calculate_monthly_emi(loan_amount, rate, tenure)
            options.append(EmiOption(
                interest_rate=rate,
                tenure_years=tenure,
                monthly_emi=emi,
                total_interest=round_half_up(emi * tenure * 12 - loan_amount),
            ))
    return options

def calculate_complete_pricing(data: Union[PricingInput, Dict[str, Any]],
                               loan_percentage: float = DEFAULT_LOAN_PERCENTAGE) -> PricingResult:
    breakdown = calculate_price_breakdown(data)
    schedule = generate_payment_schedule(breakdown.total_amount)

    loan_amount = round_half_up(breakdown.net_amount * loan_percentage / 100)
    emi_options = calculate_emi_options(loan_amount)

    return PricingResult(
        breakdown=breakdown,
        schedule=schedule,
        emi_options=emi_options,
        loan_amount=loan_amount,
    )
