# domain/models/task_state.py
from dataclasses import dataclass, field
from typing import Dict, Any, Optional, Tuple
from datetime import datetime
from enum import Enum

class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"

    @property
    def rank(self) -> int:
        return _RISK_RANKS[self]

    def requires_approval(self) -> bool:
        return self in (RiskLevel.MEDIUM, RiskLevel.HIGH)

    @classmethod
    def highest(cls, *levels: "RiskLevel") -> "RiskLevel":
        return max(levels, key=lambda level: level.rank)

_RISK_RANKS = {RiskLevel.LOW: 0, RiskLevel.MEDIUM: 1, RiskLevel.HIGH: 2}

class TaskStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.CANCELLED)

class ApprovalState(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"

class ActionType(str, Enum):
    RELEASE_UNITS = "releaseUnits"
    GENERATE_DEAL_PAGE = "generateDealPage"
    SEND_WHATSAPP_TEMPLATE = "sendWhatsAppTemplate"
    CREATE_OFFER = "createOffer"
    FOLLOW_UP_DEAL_PAGE = "followUpDealPage"

APPROVER_ROLES = ("OWNER", "PROJECT_ADMIN")

@dataclass(frozen=True)
class Task:
    """Persisted unit of work produced by the planner"""
    task_id: str
    agent_type: str
    action_type: str
    payload: Dict[str, Any]
    risk_level: RiskLevel
    status: TaskStatus
    created_at: datetime
    updated_at: datetime
    cash_impact_delta: Optional[float] = None
    reason_short: Optional[str] = None
    approval_unassigned: bool = False
    policy_violations: Tuple[str, ...] = ()

    @property
    def needs_approval(self) -> bool:
        # Flagged tasks wait for a human whatever their risk level
        return self.risk_level.requires_approval() or bool(self.policy_violations)

@dataclass(frozen=True)
class Approval:
    """Decision request attached to a task"""
    approval_id: str
    task_id: str
    approver_id: str
    state: ApprovalState
    created_at: datetime
    updated_at: datetime
    note: Optional[str] = None

@dataclass(frozen=True)
class PendingApproval:
    """Approval joined with the task it gates, as shown in the approvals inbox"""
    approval: Approval
    task: Task

@dataclass(frozen=True)
class AuditLogEntry:
    user_id: str
    action: str
    entity_type: str
    entity_id: str
    payload: Dict[str, Any] = field(default_factory=dict)

def cash_impact_order(cash_impact_delta: Optional[float]) -> Tuple[int, float]:
    """Sort key for largest cash impact first, with a missing impact ahead of all
    values as in a Postgres ``DESC`` ordering"""
    if cash_impact_delta is None:
        return (0, 0.0)
    return (1, -cash_impact_delta)
