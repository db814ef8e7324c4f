# application/services/task_planner.py
import hashlib
import json
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Callable, List, Optional, Sequence

from application.services.policy_evaluator import PolicyEvaluator
from application.services.unit_selection import FirstAvailableUnitSelector, UnitSelector
from domain.exceptions import PolicyViolation
from domain.models.planner_context import PlannerContext, TaskInput
from domain.models.sales_state import ACTIVE_LEAD_STATUSES, LeadStatus, Project, Unit
from domain.models.task_state import APPROVER_ROLES, ActionType, RiskLevel, Task, cash_impact_order
from infrastructure.storage.persistent_task_store import PersistentTaskStore
from shared.logging import logger, log_planner_run

@dataclass(frozen=True)
class PlannerThresholds:
    """Trigger conditions and constants for the deterministic rules"""
    low_inventory_units: int = 5
    units_to_release: int = 10
    deal_page_leads: int = 3
    units_per_deal_page: int = 3
    deal_page_expiry_days: int = 7
    deal_page_estimated_value: float = 8_500_000
    stale_lead_days: int = 3
    stale_lead_limit: int = 5
    pending_token_age_days: int = 1
    pending_token_limit: int = 5
    urgent_cash_gap: float = 50_000_000
    urgent_days_to_target: int = 30
    urgent_discount_percent: float = 5
    urgent_offer_validity_days: int = 7
    urgent_discount_cost: float = 2_500_000

def task_identity(task: TaskInput) -> str:
    """Structural key of (action_type, payload), insensitive to payload key order"""
    canonical = json.dumps(
        {"actionType": task.action_type, "payload": task.payload},
        sort_keys=True, separators=(",", ":"), default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

def merge_tasks(deterministic: Sequence[TaskInput], proposed: Sequence[TaskInput]) -> List[TaskInput]:
    """Concatenate and de-duplicate; the first occurrence wins"""
    merged = []
    seen = set()
    for task in list(deterministic) + list(proposed):
        key = task_identity(task)
        if key in seen:
            continue
        seen.add(key)
        merged.append(task)
    return merged

def format_lakhs(amount: float) -> str:
    return f"₹{amount / 100_000:.0f} L"

class TaskPlanner:
    """Rule-based generator of candidate tasks from live project state"""

    def __init__(self,
                 store: PersistentTaskStore,
                 evaluator: PolicyEvaluator,
                 unit_selector: Optional[UnitSelector] = None,
                 thresholds: Optional[PlannerThresholds] = None,
                 clock: Callable[[], datetime] = datetime.utcnow):
        self.store = store
        self.evaluator = evaluator
        self.unit_selector = unit_selector or FirstAvailableUnitSelector()
        self.thresholds = thresholds or PlannerThresholds()
        self.clock = clock

    async def generate_tasks(self, context: PlannerContext) -> List[TaskInput]:
        """Evaluate every rule against current state; read-only"""
        now = self.clock()
        cash_gap = context.cash_gap
        days_to_target = context.days_to_target(now)

        logger.info("Generating tasks for project",
                    project_id=context.project_id,
                    cash_gap=cash_gap,
                    days_to_target=days_to_target)

        project = await self.store.get_project(context.project_id)
        if not project:
            logger.warning("Project not found for task generation", project_id=context.project_id)
            return []

        available_units = await self.store.list_available_units(context.project_id)

        tasks: List[TaskInput] = []
        tasks.extend(self._release_units_tasks(context, available_units))
        tasks.extend(await self._deal_page_tasks(context, available_units, now))
        tasks.extend(await self._stale_lead_tasks(context, project, now))
        tasks.extend(await self._pending_token_tasks(context, now))
        tasks.extend(self._urgent_offer_tasks(context, cash_gap, days_to_target))

        log_planner_run(
            project_id=context.project_id,
            tasks_generated=len(tasks),
            cash_gap=cash_gap,
            days_to_target=days_to_target,
            additional_context={"available_units": len(available_units)}
        )
        return tasks

    def _release_units_tasks(self, context: PlannerContext, available_units: List[Unit]) -> List[TaskInput]:
        if len(available_units) >= self.thresholds.low_inventory_units:
            return []
        return [TaskInput(
            agent_type="ReleaseAgent",
            action_type=ActionType.RELEASE_UNITS.value,
            payload={
                "projectId": context.project_id,
                "unitsToRelease": self.thresholds.units_to_release,
                "reason": "Low inventory - need more units for sales",
            },
            risk_level=RiskLevel.MEDIUM,
            cash_impact_delta=0,
            reason_short="Release more units for sales",
        )]

    async def _deal_page_tasks(self, context: PlannerContext, available_units: List[Unit],
                               now: datetime) -> List[TaskInput]:
        limits = self.thresholds
        if len(available_units) < limits.units_per_deal_page:
            return []

        leads = await self.store.list_active_leads(context.project_id, ACTIVE_LEAD_STATUSES)
        tasks = []
        for lead in leads[:limits.deal_page_leads]:
            if await self.store.has_active_deal_page(lead.lead_id, now):
                continue
            selected = self.unit_selector.select(available_units, limits.units_per_deal_page)
            tasks.append(TaskInput(
                agent_type="DealAgent",
                action_type=ActionType.GENERATE_DEAL_PAGE.value,
                payload={
                    "leadId": lead.lead_id,
                    "unitIds": [unit.unit_id for unit in selected],
                    "expiryDays": limits.deal_page_expiry_days,
                },
                risk_level=RiskLevel.LOW,
                cash_impact_delta=limits.deal_page_estimated_value,
                reason_short="Create deal page for qualified lead",
            ))
        return tasks

    async def _stale_lead_tasks(self, context: PlannerContext, project: Project,
                                now: datetime) -> List[TaskInput]:
        limits = self.thresholds
        stale_leads = await self.store.list_stale_leads(
            context.project_id,
            status=LeadStatus.QUALIFIED,
            updated_before=now - timedelta(days=limits.stale_lead_days),
            limit=limits.stale_lead_limit,
        )
        return [
            TaskInput(
                agent_type="ConciergeAgent",
                action_type=ActionType.SEND_WHATSAPP_TEMPLATE.value,
                payload={
                    "leadId": lead.lead_id,
                    "templateName": "follow_up_reminder",
                    "params": {
                        "customer_name": lead.contact_name or "Valued Customer",
                        "project_name": project.name,
                    },
                },
                risk_level=RiskLevel.LOW,
                cash_impact_delta=0,
                reason_short="Follow up with stale lead",
            )
            for lead in stale_leads
        ]

    async def _pending_token_tasks(self, context: PlannerContext, now: datetime) -> List[TaskInput]:
        limits = self.thresholds
        tokens = await self.store.list_pending_tokens(
            context.project_id,
            created_before=now - timedelta(days=limits.pending_token_age_days),
            limit=limits.pending_token_limit,
        )
        return [
            TaskInput(
                agent_type="PaymentsAgent",
                action_type=ActionType.SEND_WHATSAPP_TEMPLATE.value,
                payload={
                    "leadId": token.lead_id,
                    "templateName": "payment_reminder",
                    "params": {
                        "customer_name": token.contact_name or "Valued Customer",
                        "amount": format_lakhs(token.amount),
                        "due_date": "within 24 hours",
                    },
                },
                risk_level=RiskLevel.LOW,
                cash_impact_delta=token.amount,
                reason_short="Remind customer about pending token payment",
            )
            for token in tokens
        ]

    def _urgent_offer_tasks(self, context: PlannerContext, cash_gap: float,
                            days_to_target: int) -> List[TaskInput]:
        limits = self.thresholds
        if cash_gap < limits.urgent_cash_gap or days_to_target >= limits.urgent_days_to_target:
            return []
        return [TaskInput(
            agent_type="DealAgent",
            action_type=ActionType.CREATE_OFFER.value,
            payload={
                "projectId": context.project_id,
                "discountPercent": limits.urgent_discount_percent,
                "validityDays": limits.urgent_offer_validity_days,
                "reason": "Urgent cash target - limited time discount",
            },
            risk_level=RiskLevel.HIGH,
            cash_impact_delta=-limits.urgent_discount_cost,
            reason_short="Urgent discount to meet cash target",
        )]

    def review_tasks(self, tasks: Sequence[TaskInput]) -> List[TaskInput]:
        """Apply the policy.

        Blocked and non-allowed actions are dropped. Risk is raised where the
        policy asks for it, and any task carrying a violation is forced through
        human approval with its violations kept for the approver.
        """
        reviewed = []
        for task in tasks:
            try:
                evaluation = self.evaluator.enforce(task)
            except PolicyViolation as e:
                logger.warning("Dropping task rejected by policy",
                               action_type=task.action_type,
                               agent_type=task.agent_type,
                               violations=e.violations)
                continue
            violations = tuple(task.policy_violations) + tuple(evaluation.violations)
            reviewed.append(replace(
                task,
                risk_level=RiskLevel.highest(task.risk_level, evaluation.risk_level),
                requires_approval=(task.requires_approval or evaluation.requires_approval
                                   or bool(violations)),
                policy_violations=violations,
            ))
        return reviewed

    async def create_task(self, task_input: TaskInput) -> str:
        """Persist a task, attaching a pending approval when its risk calls for one"""
        approver_id = None
        if task_input.needs_approval:
            approver_id = await self.store.find_approver(APPROVER_ROLES)

        approval_unassigned = task_input.needs_approval and approver_id is None
        task_id = await self.store.insert_task(task_input, approval_unassigned=approval_unassigned)

        if approver_id:
            await self.store.insert_approval(task_id, approver_id)
        elif approval_unassigned:
            logger.warning("Approval required but no approver available",
                           task_id=task_id,
                           action_type=task_input.action_type,
                           risk_level=task_input.risk_level.value,
                           approver_roles=list(APPROVER_ROLES))

        logger.info("Task created",
                    task_id=task_id,
                    agent_type=task_input.agent_type,
                    action_type=task_input.action_type,
                    risk_level=task_input.risk_level.value,
                    approver_id=approver_id)
        return task_id

    async def get_today_tasks(self) -> List[Task]:
        """Open tasks created since midnight, highest risk and cash impact first"""
        now = self.clock()
        midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
        tasks = await self.store.list_open_tasks(created_since=midnight)
        return sorted(tasks, key=task_priority_key)

def task_priority_key(task: Task) -> Any:
    return (-task.risk_level.rank, cash_impact_order(task.cash_impact_delta), task.created_at)
