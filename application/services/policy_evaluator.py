# application/services/policy_evaluator.py
from typing import Any, Dict, Optional

from domain.exceptions import PolicyViolation
from domain.models.planner_context import TaskInput
from domain.models.policy import PolicyConfig, PolicyEvaluation
from domain.models.task_state import ActionType, RiskLevel
from shared.logging import log_policy_evaluation

class PolicyEvaluator:
    """Maps a candidate task to a risk level and approval requirement.

    Pure: no I/O, no state beyond the injected policy.
    """

    def __init__(self, policy: PolicyConfig):
        self.policy = policy

    def evaluate(self, task: TaskInput) -> PolicyEvaluation:
        return self.evaluate_action(task.action_type, task.payload, task.cash_impact_delta)

    def evaluate_action(self, action_type: str, payload: Optional[Dict[str, Any]],
                        cash_impact_delta: Optional[float] = None) -> PolicyEvaluation:
        violations = []

        # Allow-list miss is recorded, evaluation continues
        if not self.policy.is_allowed(action_type):
            violations.append(f"Action {action_type} is not allowed by policy")

        rule = self.policy.rule_for(action_type)
        risk_level = rule.default_risk if rule and rule.default_risk else RiskLevel.LOW
        requires_approval = False
        blocked = False

        if rule and rule.blocked:
            blocked = True
            violations.append(f"Action {action_type} is blocked by policy")

        if action_type == ActionType.CREATE_OFFER.value and rule and rule.max_discount_percent is not None:
            discount_percent = (payload or {}).get("discountPercent")
            if _is_number(discount_percent) and discount_percent > rule.max_discount_percent:
                violations.append(
                    f"Discount {discount_percent}% exceeds policy max {rule.max_discount_percent}%"
                )
                risk_level = RiskLevel.HIGH
                requires_approval = True

        if rule and rule.require_approval_above_cash_impact is not None:
            cash_impact = abs(cash_impact_delta or 0)
            if cash_impact > rule.require_approval_above_cash_impact:
                requires_approval = True
                if risk_level == RiskLevel.LOW:
                    risk_level = RiskLevel.MEDIUM

        log_policy_evaluation(action_type, risk_level.value, requires_approval, violations)

        return PolicyEvaluation(
            risk_level=risk_level,
            requires_approval=requires_approval,
            violations=violations,
            blocked=blocked,
        )

    def enforce(self, task: TaskInput) -> PolicyEvaluation:
        """Evaluate, then refuse actions that are blocked or outside the allow-list.

        Other violations (a discount above the cap) are returned for the caller
        to flag; the task is kept but must go through a human approval.
        """
        evaluation = self.evaluate(task)
        if evaluation.blocked or not self.policy.is_allowed(task.action_type):
            raise_for_violations(task.action_type, evaluation)
        return evaluation

def raise_for_violations(action_type: str, evaluation: PolicyEvaluation) -> None:
    """Escalate a flagged evaluation into an error for callers that block on violations"""
    if evaluation.violations:
        raise PolicyViolation(action_type, evaluation.violations)

def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)
