# domain/models/approval_workflow.py
from dataclasses import dataclass
from typing import Dict, Any, Optional, List
from datetime import datetime
from enum import Enum
from pydantic import BaseModel, Field

from domain.models.pricing import PricingInput

class ApprovalDecisionType(str, Enum):
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"

@dataclass(frozen=True)
class ApprovalDecision:
    """Immutable decision submitted by a human approver"""
    task_id: str
    approver_id: str
    decision: ApprovalDecisionType
    note: Optional[str] = None

@dataclass(frozen=True)
class ImpactSimulation:
    """Advisory summary shown to an approver before deciding"""
    task_id: str
    cash_impact: float
    risk_assessment: str
    recommendations: List[str]

# Pydantic models for API request/response
class ApprovalDecisionModel(BaseModel):
    task_id: str = Field(..., min_length=1, description="Task the approval gates")
    approver_id: str = Field(..., min_length=1, description="Identity of the deciding approver")
    decision: ApprovalDecisionType = Field(..., description="APPROVED or REJECTED")
    note: Optional[str] = Field(None, max_length=2000, description="Optional reviewer note")

class ApprovalStatusModel(BaseModel):
    approval_id: str
    task_id: str
    approver_id: str
    state: str
    note: Optional[str] = None
    created_at: datetime
    updated_at: datetime

class TaskSummaryModel(BaseModel):
    task_id: str
    agent_type: str
    action_type: str
    payload: Dict[str, Any]
    risk_level: str
    status: str
    cash_impact_delta: Optional[float] = None
    reason_short: Optional[str] = None
    approval_unassigned: bool = False
    policy_violations: List[str] = []
    created_at: datetime

class PendingApprovalModel(BaseModel):
    approval: ApprovalStatusModel
    task: TaskSummaryModel

class ImpactSimulationModel(BaseModel):
    task_id: str
    cash_impact: float
    risk_assessment: str
    recommendations: List[str]

class PlanRequestModel(BaseModel):
    project_id: str = Field(..., min_length=1, description="Project to plan for")

class PlanResponseModel(BaseModel):
    success: bool = True
    tasks_generated: int
    task_ids: List[str]
    unassigned_task_ids: List[str] = []
    context: Dict[str, Any]

class PricingRequestModel(PricingInput):
    """Unit attributes for a quote plus the share of the net amount to finance"""
    loan_percentage: float = Field(80, gt=0, le=100, alias="loanPercentage")
