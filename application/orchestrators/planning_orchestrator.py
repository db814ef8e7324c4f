# application/orchestrators/planning_orchestrator.py
from datetime import datetime
from typing import Callable

from application.services.task_planner import TaskPlanner, merge_tasks
from domain.exceptions import CashTargetNotFound
from domain.models.planner_context import PlannerContext, PlanningRunResult
from infrastructure.agents.ai_task_proposer import TaskProposer
from infrastructure.storage.persistent_task_store import PersistentTaskStore
from shared.logging import logger, log_planner_run

class PlanningOrchestrator:
    """One planner run: context from live aggregates, deterministic and AI tasks, policy, persistence"""

    def __init__(self,
                 store: PersistentTaskStore,
                 planner: TaskPlanner,
                 proposer: TaskProposer,
                 clock: Callable[[], datetime] = datetime.utcnow):
        self.store = store
        self.planner = planner
        self.proposer = proposer
        self.clock = clock

    async def build_context(self, project_id: str) -> PlannerContext:
        cash_target = await self.store.get_active_cash_target(project_id)
        if not cash_target:
            raise CashTargetNotFound(project_id)

        current_cash_flow = await self.store.sum_receipts(project_id)
        active_tasks = await self.store.count_active_tasks()
        pending_approvals = await self.store.count_pending_approvals()

        return PlannerContext(
            project_id=project_id,
            current_cash_flow=current_cash_flow,
            target_amount=cash_target.target_amount,
            target_date=cash_target.target_date,
            active_tasks=active_tasks,
            pending_approvals=pending_approvals
        )

    async def run_planner(self, project_id: str) -> PlanningRunResult:
        logger.info("Starting planner run", project_id=project_id)

        context = await self.build_context(project_id)

        deterministic = await self.planner.generate_tasks(context)
        # Never raises; degrades to an empty list
        proposed = await self.proposer.propose_tasks(context)

        merged = merge_tasks(deterministic, proposed)
        reviewed = self.planner.review_tasks(merged)

        task_ids = []
        unassigned_task_ids = []
        for task_input in reviewed:
            task_id = await self.planner.create_task(task_input)
            task_ids.append(task_id)
            if task_input.needs_approval:
                task = await self.store.get_task(task_id)
                if task and task.approval_unassigned:
                    unassigned_task_ids.append(task_id)

        days_to_target = context.days_to_target(self.clock())
        result = PlanningRunResult(
            project_id=project_id,
            current_cash_flow=context.current_cash_flow,
            target_amount=context.target_amount,
            cash_gap=context.cash_gap,
            days_to_target=days_to_target,
            task_ids=task_ids,
            unassigned_task_ids=unassigned_task_ids,
            deterministic_count=len(deterministic),
            proposed_count=len(proposed),
            merged_count=len(merged),
            rejected_count=len(merged) - len(reviewed)
        )

        log_planner_run(
            project_id=project_id,
            tasks_generated=result.tasks_generated,
            cash_gap=result.cash_gap,
            days_to_target=days_to_target,
            source="merged" if self.proposer.is_enabled() else "deterministic",
            additional_context={
                "deterministic_count": result.deterministic_count,
                "proposed_count": result.proposed_count,
                "rejected_count": result.rejected_count,
                "unassigned_count": len(unassigned_task_ids)
            }
        )
        return result
