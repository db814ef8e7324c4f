# domain/models/sales_state.py
from dataclasses import dataclass
from typing import Optional
from datetime import datetime
from enum import Enum

class LeadStatus(str, Enum):
    NEW = "NEW"
    QUALIFIED = "QUALIFIED"
    INTERESTED = "INTERESTED"
    NEGOTIATING = "NEGOTIATING"
    BOOKED = "BOOKED"
    LOST = "LOST"

ACTIVE_LEAD_STATUSES = (LeadStatus.NEW, LeadStatus.QUALIFIED, LeadStatus.INTERESTED)

class UnitStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    HELD = "HELD"
    BOOKED = "BOOKED"
    SOLD = "SOLD"
    BLOCKED = "BLOCKED"

class TokenStatus(str, Enum):
    CREATED = "CREATED"
    PAID = "PAID"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"

@dataclass(frozen=True)
class Project:
    project_id: str
    name: str

@dataclass(frozen=True)
class Unit:
    unit_id: str
    project_id: str
    unit_number: str
    status: UnitStatus
    created_at: datetime

@dataclass(frozen=True)
class Lead:
    lead_id: str
    project_id: str
    status: LeadStatus
    created_at: datetime
    updated_at: datetime
    contact_name: Optional[str] = None
    contact_phone: Optional[str] = None

@dataclass(frozen=True)
class PaymentToken:
    """Booking token raised from a deal page, awaiting payment"""
    token_id: str
    lead_id: str
    amount: float
    status: TokenStatus
    created_at: datetime
    contact_name: Optional[str] = None

@dataclass(frozen=True)
class CashTarget:
    project_id: str
    target_amount: float
    target_date: datetime
    status: str = "ACTIVE"
