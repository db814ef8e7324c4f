# tests/conftest.py
import asyncio
import uuid
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Dict, Any, List, Optional, Sequence

import pytest

from domain.models.planner_context import TaskInput
from domain.models.sales_state import (
    CashTarget, Lead, LeadStatus, PaymentToken, Project, TokenStatus, Unit, UnitStatus
)
from domain.models.task_state import (
    Approval, ApprovalState, AuditLogEntry, PendingApproval, Task, TaskStatus
)

NOW = datetime(2025, 1, 10, 9, 0, 0)

class FakeSalesStore:
    """In-memory stand-in for PersistentTaskStore with the same async surface"""

    def __init__(self, now: datetime = NOW):
        self.now = now
        self.projects: Dict[str, Project] = {}
        self.units: List[Unit] = []
        self.leads: List[Lead] = []
        self.deal_pages: List[Dict[str, Any]] = []
        self.tokens: List[Dict[str, Any]] = []
        self.receipts: List[Dict[str, Any]] = []
        self.cash_targets: Dict[str, CashTarget] = {}
        self.users: List[Dict[str, str]] = []
        self.tasks: Dict[str, Task] = {}
        self.approvals: Dict[str, Approval] = {}
        self.audit_logs: List[AuditLogEntry] = []
        self.status_updates: List[Dict[str, Any]] = []

    def _tick(self) -> datetime:
        # Strictly increasing timestamps keep creation order observable
        return self.now + timedelta(microseconds=len(self.tasks) + len(self.approvals))

    # Seeding helpers

    def add_project(self, project_id: str = "proj-1", name: str = "Skyline Towers") -> Project:
        project = Project(project_id=project_id, name=name)
        self.projects[project_id] = project
        return project

    def add_units(self, project_id: str, count: int,
                  status: UnitStatus = UnitStatus.AVAILABLE) -> List[Unit]:
        added = []
        for i in range(count):
            unit = Unit(
                unit_id=f"{project_id}-unit-{len(self.units) + 1}",
                project_id=project_id,
                unit_number=f"A-{100 + len(self.units) + 1}",
                status=status,
                created_at=self.now - timedelta(days=30 - i)
            )
            self.units.append(unit)
            added.append(unit)
        return added

    def add_lead(self, project_id: str, lead_id: str,
                 status: LeadStatus = LeadStatus.QUALIFIED,
                 updated_days_ago: float = 0,
                 contact_name: Optional[str] = "Asha Verma") -> Lead:
        lead = Lead(
            lead_id=lead_id,
            project_id=project_id,
            status=status,
            created_at=self.now - timedelta(days=10, minutes=-len(self.leads)),
            updated_at=self.now - timedelta(days=updated_days_ago),
            contact_name=contact_name
        )
        self.leads.append(lead)
        return lead

    def add_deal_page(self, lead_id: str, expires_in_days: float = 3) -> None:
        self.deal_pages.append({
            "lead_id": lead_id,
            "expires_at": self.now + timedelta(days=expires_in_days)
        })

    def add_token(self, project_id: str, lead_id: str, amount: float,
                  age_days: float = 2, status: TokenStatus = TokenStatus.CREATED,
                  contact_name: Optional[str] = "Asha Verma") -> PaymentToken:
        token = PaymentToken(
            token_id=f"token-{len(self.tokens) + 1}",
            lead_id=lead_id,
            amount=amount,
            status=status,
            created_at=self.now - timedelta(days=age_days),
            contact_name=contact_name
        )
        self.tokens.append({"project_id": project_id, "token": token})
        return token

    def add_receipt(self, project_id: str, amount: float) -> None:
        self.receipts.append({"project_id": project_id, "amount": amount})

    def set_cash_target(self, project_id: str, target_amount: float, days_ahead: float) -> CashTarget:
        target = CashTarget(
            project_id=project_id,
            target_amount=target_amount,
            target_date=self.now + timedelta(days=days_ahead)
        )
        self.cash_targets[project_id] = target
        return target

    def add_user(self, user_id: str, role: str) -> None:
        self.users.append({"id": user_id, "role": role})

    def seed_task(self, risk_level, action_type: str = "createOffer",
                  status: TaskStatus = TaskStatus.PENDING,
                  cash_impact_delta: Optional[float] = None,
                  policy_violations: Sequence[str] = ()) -> Task:
        task_id = str(uuid.uuid4())
        created = self._tick()
        task = Task(
            task_id=task_id,
            agent_type="DealAgent",
            action_type=action_type,
            payload={"projectId": "proj-1"},
            risk_level=risk_level,
            status=status,
            created_at=created,
            updated_at=created,
            cash_impact_delta=cash_impact_delta,
            policy_violations=tuple(policy_violations)
        )
        self.tasks[task_id] = task
        return task

    def seed_approval(self, task_id: str, approver_id: str) -> Approval:
        approval_id = str(uuid.uuid4())
        created = self._tick()
        approval = Approval(
            approval_id=approval_id,
            task_id=task_id,
            approver_id=approver_id,
            state=ApprovalState.PENDING,
            created_at=created,
            updated_at=created
        )
        self.approvals[approval_id] = approval
        return approval

    # Sales state reads

    async def get_project(self, project_id: str) -> Optional[Project]:
        return self.projects.get(project_id)

    async def list_available_units(self, project_id: str) -> List[Unit]:
        units = [u for u in self.units
                 if u.project_id == project_id and u.status == UnitStatus.AVAILABLE]
        return sorted(units, key=lambda unit: unit.created_at)

    async def list_active_leads(self, project_id: str, statuses: Sequence[LeadStatus]) -> List[Lead]:
        leads = [l for l in self.leads if l.project_id == project_id and l.status in statuses]
        return sorted(leads, key=lambda lead: lead.created_at)

    async def has_active_deal_page(self, lead_id: str, as_of: datetime) -> bool:
        return any(dp["lead_id"] == lead_id and dp["expires_at"] > as_of for dp in self.deal_pages)

    async def list_stale_leads(self, project_id: str, status: LeadStatus,
                               updated_before: datetime, limit: int) -> List[Lead]:
        leads = [l for l in self.leads
                 if l.project_id == project_id and l.status == status and l.updated_at < updated_before]
        return sorted(leads, key=lambda lead: lead.updated_at)[:limit]

    async def list_pending_tokens(self, project_id: str, created_before: datetime,
                                  limit: int) -> List[PaymentToken]:
        tokens = [t["token"] for t in self.tokens
                  if t["project_id"] == project_id
                  and t["token"].status == TokenStatus.CREATED
                  and t["token"].created_at < created_before]
        return sorted(tokens, key=lambda token: token.created_at)[:limit]

    async def get_active_cash_target(self, project_id: str) -> Optional[CashTarget]:
        return self.cash_targets.get(project_id)

    async def sum_receipts(self, project_id: str) -> float:
        return float(sum(r["amount"] for r in self.receipts if r["project_id"] == project_id))

    async def count_active_tasks(self) -> int:
        return len([t for t in self.tasks.values()
                    if t.status in (TaskStatus.PENDING, TaskStatus.IN_PROGRESS)])

    async def count_pending_approvals(self) -> int:
        return len([a for a in self.approvals.values() if a.state == ApprovalState.PENDING])

    # Tasks and approvals

    async def find_approver(self, roles: Sequence[str]) -> Optional[str]:
        for user in self.users:
            if user["role"] in roles:
                return user["id"]
        return None

    async def insert_task(self, task_input: TaskInput, approval_unassigned: bool = False) -> str:
        task_id = str(uuid.uuid4())
        created = self._tick()
        self.tasks[task_id] = Task(
            task_id=task_id,
            agent_type=task_input.agent_type,
            action_type=task_input.action_type,
            payload=dict(task_input.payload),
            risk_level=task_input.risk_level,
            status=TaskStatus.PENDING,
            created_at=created,
            updated_at=created,
            cash_impact_delta=task_input.cash_impact_delta,
            reason_short=task_input.reason_short,
            approval_unassigned=approval_unassigned,
            policy_violations=tuple(task_input.policy_violations)
        )
        return task_id

    async def insert_approval(self, task_id: str, approver_id: str) -> str:
        approval_id = str(uuid.uuid4())
        created = self._tick()
        self.approvals[approval_id] = Approval(
            approval_id=approval_id,
            task_id=task_id,
            approver_id=approver_id,
            state=ApprovalState.PENDING,
            created_at=created,
            updated_at=created
        )
        return approval_id

    async def decide_approval(self, task_id: str, approver_id: str,
                              state: ApprovalState, note: Optional[str] = None) -> int:
        # Yield first so concurrent callers interleave before the compare-and-set
        await asyncio.sleep(0)
        updated = 0
        for approval_id, approval in list(self.approvals.items()):
            if (approval.task_id == task_id and approval.approver_id == approver_id
                    and approval.state == ApprovalState.PENDING):
                self.approvals[approval_id] = Approval(
                    approval_id=approval.approval_id,
                    task_id=approval.task_id,
                    approver_id=approval.approver_id,
                    state=state,
                    created_at=approval.created_at,
                    updated_at=self.now,
                    note=note
                )
                updated += 1
        return updated

    async def update_task_status(self, task_id: str, status: TaskStatus) -> bool:
        task = self.tasks.get(task_id)
        if not task or task.status.is_terminal:
            return False
        self.tasks[task_id] = replace(task, status=status, updated_at=self.now)
        self.status_updates.append({"task_id": task_id, "status": status})
        return True

    async def insert_audit_log(self, entry: AuditLogEntry) -> None:
        self.audit_logs.append(entry)

    async def get_task(self, task_id: str) -> Optional[Task]:
        return self.tasks.get(task_id)

    async def list_open_tasks(self, created_since: datetime) -> List[Task]:
        return [t for t in self.tasks.values()
                if t.created_at >= created_since
                and t.status in (TaskStatus.PENDING, TaskStatus.IN_PROGRESS)]

    async def list_approvals(self, task_id: str) -> List[Approval]:
        return [a for a in self.approvals.values() if a.task_id == task_id]

    async def list_pending_approvals(self, approver_id: Optional[str] = None) -> List[PendingApproval]:
        return [
            PendingApproval(approval=a, task=self.tasks[a.task_id])
            for a in self.approvals.values()
            if a.state == ApprovalState.PENDING and (approver_id is None or a.approver_id == approver_id)
        ]

@pytest.fixture
def store():
    return FakeSalesStore()

@pytest.fixture
def now():
    return NOW

@pytest.fixture
def clock():
    return lambda: NOW
