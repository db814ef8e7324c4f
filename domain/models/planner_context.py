# domain/models/planner_context.py
import math
from dataclasses import dataclass, field
from typing import Dict, Any, Optional, List, Tuple
from datetime import datetime

from domain.models.task_state import RiskLevel

SECONDS_PER_DAY = 24 * 60 * 60

@dataclass(frozen=True)
class PlannerContext:
    """Immutable snapshot of project cash position handed to the planner"""
    project_id: str
    current_cash_flow: float
    target_amount: float
    target_date: datetime
    active_tasks: int
    pending_approvals: int

    @property
    def cash_gap(self) -> float:
        return self.target_amount - self.current_cash_flow

    def days_to_target(self, now: datetime) -> int:
        """Whole days left until the target date, rounded up"""
        return math.ceil((self.target_date - now).total_seconds() / SECONDS_PER_DAY)

@dataclass(frozen=True)
class TaskInput:
    """Immutable candidate task emitted by the planner or the AI proposer"""
    agent_type: str
    action_type: str
    payload: Dict[str, Any]
    risk_level: RiskLevel
    cash_impact_delta: Optional[float] = None
    reason_short: Optional[str] = None
    requires_approval: bool = False
    policy_violations: Tuple[str, ...] = ()

    @property
    def needs_approval(self) -> bool:
        return self.requires_approval or self.risk_level.requires_approval()

@dataclass(frozen=True)
class PlanningRunResult:
    """Outcome of one planner run"""
    project_id: str
    current_cash_flow: float
    target_amount: float
    cash_gap: float
    days_to_target: int
    task_ids: List[str]
    unassigned_task_ids: List[str] = field(default_factory=list)
    deterministic_count: int = 0
    proposed_count: int = 0
    merged_count: int = 0
    rejected_count: int = 0

    @property
    def tasks_generated(self) -> int:
        return len(self.task_ids)
