# domain/models/policy.py
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

from pydantic import BaseModel, Field

from domain.models.task_state import ActionType, RiskLevel

class PolicyRule(BaseModel):
    """Per-action rule; immutable once loaded"""
    model_config = {"frozen": True, "populate_by_name": True}

    action_type: str = Field(..., alias="actionType")
    default_risk: Optional[RiskLevel] = Field(None, alias="defaultRisk")
    max_discount_percent: Optional[float] = Field(None, ge=0, le=100, alias="maxDiscountPercent")
    require_approval_above_cash_impact: Optional[float] = Field(
        None, ge=0, alias="requireApprovalAboveCashImpact",
        description="Absolute cash impact above which approval is required; 0 means any impact"
    )
    blocked: bool = False

class PolicyConfig(BaseModel):
    """Allow-list plus per-action rules, injected into the evaluator and planner"""
    model_config = {"frozen": True, "populate_by_name": True}

    allowed_actions: List[str] = Field(default_factory=list, alias="allowedActions")
    rules: List[PolicyRule] = Field(default_factory=list)

    def rule_for(self, action_type: str) -> Optional[PolicyRule]:
        for rule in self.rules:
            if rule.action_type == action_type:
                return rule
        return None

    def is_allowed(self, action_type: str) -> bool:
        return action_type in self.allowed_actions

    @classmethod
    def from_json_file(cls, path: Union[str, Path]) -> "PolicyConfig":
        with open(path, "r", encoding="utf-8") as fh:
            return cls.model_validate(json.load(fh))

def default_policy() -> PolicyConfig:
    """Development policy; production loads one per tenant"""
    return PolicyConfig(
        allowed_actions=[action.value for action in ActionType],
        rules=[
            PolicyRule(
                action_type=ActionType.RELEASE_UNITS.value,
                default_risk=RiskLevel.MEDIUM,
                require_approval_above_cash_impact=0,
            ),
            PolicyRule(action_type=ActionType.GENERATE_DEAL_PAGE.value, default_risk=RiskLevel.LOW),
            PolicyRule(action_type=ActionType.SEND_WHATSAPP_TEMPLATE.value, default_risk=RiskLevel.LOW),
            PolicyRule(
                action_type=ActionType.CREATE_OFFER.value,
                default_risk=RiskLevel.HIGH,
                max_discount_percent=10,
                require_approval_above_cash_impact=0,
            ),
            PolicyRule(action_type=ActionType.FOLLOW_UP_DEAL_PAGE.value, default_risk=RiskLevel.LOW),
        ],
    )

@dataclass(frozen=True)
class PolicyEvaluation:
    risk_level: RiskLevel
    requires_approval: bool
    violations: List[str] = field(default_factory=list)
    blocked: bool = False
