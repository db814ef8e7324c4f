# tests/unit/application/services/test_approval_manager.py
import asyncio
import pytest
from datetime import timedelta
from dataclasses import FrozenInstanceError, replace

from application.services.approval_manager import ApprovalManager
from domain.exceptions import NotFoundOrAlreadyProcessed, TaskNotFound
from domain.models.approval_workflow import ApprovalDecision, ApprovalDecisionType
from domain.models.task_state import ApprovalState, RiskLevel, TaskStatus

@pytest.fixture
def manager(store, clock):
    return ApprovalManager(store, clock=clock)

async def pending_task(store, risk_level=RiskLevel.HIGH, approver_id="owner-1",
                       action_type="createOffer", cash_impact_delta=-2_500_000):
    task = store.seed_task(risk_level, action_type=action_type, cash_impact_delta=cash_impact_delta)
    await store.insert_approval(task.task_id, approver_id)
    return task

class TestProcessApproval:
    """Test decision processing"""

    @pytest.mark.asyncio
    async def test_approve_keeps_task_pending_for_executor(self, manager, store):
        task = await pending_task(store)

        await manager.process_approval(ApprovalDecision(
            task_id=task.task_id,
            approver_id="owner-1",
            decision=ApprovalDecisionType.APPROVED,
            note="Within budget"
        ))

        approval = (await store.list_approvals(task.task_id))[0]
        assert approval.state == ApprovalState.APPROVED
        assert approval.note == "Within budget"
        assert store.tasks[task.task_id].status == TaskStatus.PENDING
        assert store.status_updates == [{"task_id": task.task_id, "status": TaskStatus.PENDING}]

    @pytest.mark.asyncio
    async def test_reject_cancels_task(self, manager, store):
        task = await pending_task(store)

        await manager.process_approval(ApprovalDecision(
            task_id=task.task_id,
            approver_id="owner-1",
            decision=ApprovalDecisionType.REJECTED
        ))

        assert store.tasks[task.task_id].status == TaskStatus.CANCELLED
        assert (await store.list_approvals(task.task_id))[0].state == ApprovalState.REJECTED

    @pytest.mark.asyncio
    async def test_decision_writes_audit_log(self, manager, store, now):
        task = await pending_task(store)

        await manager.process_approval(ApprovalDecision(
            task_id=task.task_id,
            approver_id="owner-1",
            decision=ApprovalDecisionType.REJECTED,
            note="Too steep"
        ))

        assert len(store.audit_logs) == 1
        entry = store.audit_logs[0]
        assert entry.user_id == "owner-1"
        assert entry.action == "task_rejected"
        assert entry.entity_type == "Task"
        assert entry.entity_id == task.task_id
        assert entry.payload == {
            "decision": "REJECTED",
            "note": "Too steep",
            "timestamp": now.isoformat()
        }

    @pytest.mark.asyncio
    async def test_second_decision_is_rejected(self, manager, store):
        task = await pending_task(store)
        decision = ApprovalDecision(task.task_id, "owner-1", ApprovalDecisionType.APPROVED)

        await manager.process_approval(decision)
        with pytest.raises(NotFoundOrAlreadyProcessed):
            await manager.process_approval(decision)

        assert len(store.status_updates) == 1
        assert len(store.audit_logs) == 1

    @pytest.mark.asyncio
    async def test_wrong_approver_is_rejected(self, manager, store):
        task = await pending_task(store)

        with pytest.raises(NotFoundOrAlreadyProcessed) as exc_info:
            await manager.process_approval(
                ApprovalDecision(task.task_id, "intruder", ApprovalDecisionType.APPROVED)
            )

        assert exc_info.value.task_id == task.task_id
        assert store.tasks[task.task_id].status == TaskStatus.PENDING
        assert store.audit_logs == []

    @pytest.mark.asyncio
    async def test_concurrent_decisions_exactly_one_wins(self, manager, store):
        task = await pending_task(store)

        results = await asyncio.gather(
            manager.process_approval(
                ApprovalDecision(task.task_id, "owner-1", ApprovalDecisionType.APPROVED)
            ),
            manager.process_approval(
                ApprovalDecision(task.task_id, "owner-1", ApprovalDecisionType.REJECTED)
            ),
            return_exceptions=True
        )

        failures = [r for r in results if isinstance(r, NotFoundOrAlreadyProcessed)]
        successes = [r for r in results if r is None]
        assert len(failures) == 1
        assert len(successes) == 1
        assert len(store.status_updates) == 1
        assert len(store.audit_logs) == 1

    @pytest.mark.asyncio
    async def test_approving_terminal_task_leaves_status(self, manager, store):
        task = store.seed_task(RiskLevel.HIGH, status=TaskStatus.COMPLETED)
        await store.insert_approval(task.task_id, "owner-1")

        await manager.process_approval(
            ApprovalDecision(task.task_id, "owner-1", ApprovalDecisionType.REJECTED)
        )

        assert store.tasks[task.task_id].status == TaskStatus.COMPLETED
        assert len(store.audit_logs) == 1

    def test_decision_immutability(self):
        decision = ApprovalDecision("task-1", "owner-1", ApprovalDecisionType.APPROVED)

        with pytest.raises(FrozenInstanceError):
            decision.decision = ApprovalDecisionType.REJECTED

class TestApprovalQueries:
    """Test pending list and history"""

    @pytest.mark.asyncio
    async def test_pending_sorted_by_risk_then_cash_then_age(self, manager, store):
        medium = await pending_task(store, RiskLevel.MEDIUM, cash_impact_delta=0)
        high_small = await pending_task(store, RiskLevel.HIGH, cash_impact_delta=1_000)
        high_big = await pending_task(store, RiskLevel.HIGH, cash_impact_delta=3_000_000)
        high_none = await pending_task(store, RiskLevel.HIGH, cash_impact_delta=None)
        other = await pending_task(store, RiskLevel.HIGH, approver_id="admin-2")

        pending = await manager.get_pending_approvals("owner-1")

        assert [p.task.task_id for p in pending] == [
            high_none.task_id, high_big.task_id, high_small.task_id, medium.task_id
        ]
        assert other.task_id not in [p.task.task_id for p in pending]

    @pytest.mark.asyncio
    async def test_pending_excludes_decided(self, manager, store):
        decided = await pending_task(store)
        open_task = await pending_task(store, RiskLevel.MEDIUM)
        await manager.process_approval(
            ApprovalDecision(decided.task_id, "owner-1", ApprovalDecisionType.APPROVED)
        )

        pending = await manager.get_pending_approvals()

        assert [p.task.task_id for p in pending] == [open_task.task_id]

    @pytest.mark.asyncio
    async def test_history_newest_first(self, manager, store, now):
        task = store.seed_task(RiskLevel.HIGH)
        first_id = await store.insert_approval(task.task_id, "owner-1")
        second_id = await store.insert_approval(task.task_id, "admin-1")
        store.approvals[first_id] = replace(store.approvals[first_id], created_at=now - timedelta(hours=1))

        history = await manager.get_approval_history(task.task_id)

        assert [a.approval_id for a in history] == [second_id, first_id]

class TestImpactAndEligibility:
    """Test advisory simulation and execution gating"""

    @pytest.mark.asyncio
    async def test_high_risk_offer_recommendations(self, manager, store):
        task = await pending_task(store, RiskLevel.HIGH, cash_impact_delta=-6_000_000)

        simulation = await manager.simulate_approval_impact(task.task_id)

        assert simulation.cash_impact == -6_000_000
        assert simulation.risk_assessment == "High risk - requires careful consideration"
        assert simulation.recommendations == [
            "Review with senior management",
            "Consider alternative approaches",
            "Significant cash impact - review financial projections",
            "Ensure discount is within approved budget limits",
        ]

    @pytest.mark.asyncio
    async def test_medium_risk_recommendations(self, manager, store):
        task = await pending_task(store, RiskLevel.MEDIUM, action_type="releaseUnits",
                                  cash_impact_delta=None)

        simulation = await manager.simulate_approval_impact(task.task_id)

        assert simulation.cash_impact == 0
        assert simulation.risk_assessment == "Medium risk - standard approval process"
        assert simulation.recommendations == ["Verify compliance with policies"]

    @pytest.mark.asyncio
    async def test_simulation_does_not_change_state(self, manager, store):
        task = await pending_task(store)

        await manager.simulate_approval_impact(task.task_id)

        assert store.tasks[task.task_id].status == TaskStatus.PENDING
        assert (await store.list_approvals(task.task_id))[0].state == ApprovalState.PENDING

    @pytest.mark.asyncio
    async def test_simulation_unknown_task(self, manager):
        with pytest.raises(TaskNotFound):
            await manager.simulate_approval_impact("missing")

    @pytest.mark.asyncio
    async def test_eligibility_follows_decisions(self, manager, store):
        low = store.seed_task(RiskLevel.LOW, action_type="sendWhatsAppTemplate")
        high = await pending_task(store)
        rejected = await pending_task(store)
        unassigned = store.seed_task(RiskLevel.MEDIUM, action_type="releaseUnits")

        assert await manager.is_execution_eligible(low.task_id) is True
        assert await manager.is_execution_eligible(high.task_id) is False

        await manager.process_approval(
            ApprovalDecision(high.task_id, "owner-1", ApprovalDecisionType.APPROVED)
        )
        await manager.process_approval(
            ApprovalDecision(rejected.task_id, "owner-1", ApprovalDecisionType.REJECTED)
        )

        assert await manager.is_execution_eligible(high.task_id) is True
        assert await manager.is_execution_eligible(rejected.task_id) is False
        assert await manager.is_execution_eligible(unassigned.task_id) is False

    @pytest.mark.asyncio
    async def test_flagged_low_risk_task_needs_an_approval(self, manager, store):
        flagged = store.seed_task(RiskLevel.LOW, action_type="sendWhatsAppTemplate",
                                  policy_violations=["Template not approved for this lead"])

        # No approval attached yet, so nobody has decided
        assert await manager.is_execution_eligible(flagged.task_id) is False

        store.seed_approval(flagged.task_id, "owner-1")
        assert await manager.is_execution_eligible(flagged.task_id) is False

        await manager.process_approval(
            ApprovalDecision(flagged.task_id, "owner-1", ApprovalDecisionType.APPROVED)
        )
        assert await manager.is_execution_eligible(flagged.task_id) is True

    @pytest.mark.asyncio
    async def test_eligibility_unknown_task(self, manager):
        with pytest.raises(TaskNotFound):
            await manager.is_execution_eligible("missing")
