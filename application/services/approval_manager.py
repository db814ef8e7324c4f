# application/services/approval_manager.py
from datetime import datetime
from typing import Any, Callable, List, Optional

from domain.exceptions import NotFoundOrAlreadyProcessed, TaskNotFound
from domain.models.approval_workflow import ApprovalDecision, ApprovalDecisionType, ImpactSimulation
from domain.models.task_state import (
    Approval,
    ApprovalState,
    AuditLogEntry,
    PendingApproval,
    RiskLevel,
    TaskStatus,
    cash_impact_order,
)
from infrastructure.storage.persistent_task_store import PersistentTaskStore
from shared.logging import logger, log_approval_decision

SIGNIFICANT_CASH_IMPACT = 5_000_000

class ApprovalManager:
    """Moves approvals from PENDING to a terminal decision and keeps the audit trail"""

    def __init__(self, store: PersistentTaskStore,
                 clock: Callable[[], datetime] = datetime.utcnow):
        self.store = store
        self.clock = clock

    async def process_approval(self, decision: ApprovalDecision) -> None:
        state = ApprovalState(ApprovalDecisionType(decision.decision).value)

        # Conditional write: only an approval still PENDING can be decided
        updated = await self.store.decide_approval(
            task_id=decision.task_id,
            approver_id=decision.approver_id,
            state=state,
            note=decision.note,
        )
        if updated == 0:
            logger.warning("Approval not found or already processed",
                           task_id=decision.task_id,
                           approver_id=decision.approver_id,
                           decision=state.value)
            raise NotFoundOrAlreadyProcessed(decision.task_id, decision.approver_id)

        # Approved tasks go back to PENDING, ready for the executor
        task_status = TaskStatus.PENDING if state == ApprovalState.APPROVED else TaskStatus.CANCELLED
        task_updated = await self.store.update_task_status(decision.task_id, task_status)
        if not task_updated:
            logger.warning("Task status left unchanged after approval",
                           task_id=decision.task_id,
                           requested_status=task_status.value)

        await self.store.insert_audit_log(AuditLogEntry(
            user_id=decision.approver_id,
            action=f"task_{state.value.lower()}",
            entity_type="Task",
            entity_id=decision.task_id,
            payload={
                "decision": state.value,
                "note": decision.note,
                "timestamp": self.clock().isoformat(),
            },
        ))

        log_approval_decision(decision.task_id, decision.approver_id, state.value, decision.note)

    async def get_pending_approvals(self, approver_id: Optional[str] = None) -> List[PendingApproval]:
        pending = await self.store.list_pending_approvals(approver_id)
        return sorted(pending, key=pending_approval_priority)

    async def get_approval_history(self, task_id: str) -> List[Approval]:
        approvals = await self.store.list_approvals(task_id)
        return sorted(approvals, key=lambda approval: approval.created_at, reverse=True)

    async def simulate_approval_impact(self, task_id: str) -> ImpactSimulation:
        """Advisory only; never changes state"""
        task = await self.store.get_task(task_id)
        if not task:
            raise TaskNotFound(task_id)

        cash_impact = task.cash_impact_delta or 0
        risk_assessment = "Low risk"
        recommendations = []

        if task.risk_level == RiskLevel.HIGH:
            risk_assessment = "High risk - requires careful consideration"
            recommendations.append("Review with senior management")
            recommendations.append("Consider alternative approaches")
        elif task.risk_level == RiskLevel.MEDIUM:
            risk_assessment = "Medium risk - standard approval process"
            recommendations.append("Verify compliance with policies")

        if abs(cash_impact) > SIGNIFICANT_CASH_IMPACT:
            recommendations.append("Significant cash impact - review financial projections")

        action = task.action_type.lower()
        if "discount" in action or "offer" in action:
            recommendations.append("Ensure discount is within approved budget limits")

        return ImpactSimulation(
            task_id=task_id,
            cash_impact=cash_impact,
            risk_assessment=risk_assessment,
            recommendations=recommendations,
        )

    async def is_execution_eligible(self, task_id: str) -> bool:
        """True when an executor may pick the task up now"""
        task = await self.store.get_task(task_id)
        if not task:
            raise TaskNotFound(task_id)
        if task.status != TaskStatus.PENDING:
            return False

        approvals = await self.store.list_approvals(task_id)
        if any(approval.state == ApprovalState.PENDING for approval in approvals):
            return False
        if not task.needs_approval:
            return True
        return any(approval.state == ApprovalState.APPROVED for approval in approvals)

def pending_approval_priority(item: PendingApproval) -> Any:
    return (
        -item.task.risk_level.rank,
        cash_impact_order(item.task.cash_impact_delta),
        item.approval.created_at,
    )
