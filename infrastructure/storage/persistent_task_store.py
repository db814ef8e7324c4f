# infrastructure/storage/persistent_task_store.py
import json
import uuid
from datetime import datetime
from typing import Optional, List, Sequence
import asyncpg
from domain.models.planner_context import TaskInput
from domain.models.sales_state import (
    CashTarget, Lead, LeadStatus, PaymentToken, Project, TokenStatus, Unit, UnitStatus
)
from domain.models.task_state import (
    Approval, ApprovalState, AuditLogEntry, PendingApproval, RiskLevel, Task, TaskStatus
)
from shared.logging import logger

# Risk levels sort by severity, not alphabetically
_RISK_ORDER_SQL = "CASE t.risk_level WHEN 'HIGH' THEN 2 WHEN 'MEDIUM' THEN 1 ELSE 0 END"

def _affected_rows(status: str) -> int:
    """Row count from an asyncpg command tag such as 'UPDATE 1'"""
    try:
        return int(status.split()[-1])
    except (AttributeError, IndexError, ValueError):
        return 0

class PersistentTaskStore:
    """PostgreSQL access for tasks, approvals and the sales state the planner reads"""

    def __init__(self, database_url: str):
        self.database_url = database_url
        self.connection_pool: Optional[asyncpg.Pool] = None

    async def initialize(self):
        """Initialize database connection pool and create tables"""
        self.connection_pool = await asyncpg.create_pool(
            self.database_url,
            min_size=2,
            max_size=20,
            command_timeout=60
        )
        await self._create_tables()
        await self._create_indexes()

    async def _create_tables(self):
        async with self.connection_pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS projects (
                    id VARCHAR(36) PRIMARY KEY,
                    name TEXT NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            await conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id VARCHAR(36) PRIMARY KEY,
                    email TEXT UNIQUE NOT NULL,
                    name TEXT,
                    role VARCHAR(20) NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            await conn.execute("""
                CREATE TABLE IF NOT EXISTS units (
                    id VARCHAR(36) PRIMARY KEY,
                    project_id VARCHAR(36) REFERENCES projects(id),
                    unit_number VARCHAR(20) NOT NULL,
                    status VARCHAR(20) NOT NULL DEFAULT 'AVAILABLE',
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            await conn.execute("""
                CREATE TABLE IF NOT EXISTS leads (
                    id VARCHAR(36) PRIMARY KEY,
                    project_id VARCHAR(36) REFERENCES projects(id),
                    status VARCHAR(20) NOT NULL DEFAULT 'NEW',
                    contact_name TEXT,
                    contact_phone VARCHAR(20),
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            await conn.execute("""
                CREATE TABLE IF NOT EXISTS deal_pages (
                    id VARCHAR(36) PRIMARY KEY,
                    lead_id VARCHAR(36) REFERENCES leads(id),
                    link_code VARCHAR(32) UNIQUE NOT NULL,
                    expires_at TIMESTAMP NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            await conn.execute("""
                CREATE TABLE IF NOT EXISTS tokens (
                    id VARCHAR(36) PRIMARY KEY,
                    deal_page_id VARCHAR(36) REFERENCES deal_pages(id),
                    amount NUMERIC NOT NULL,
                    status VARCHAR(20) NOT NULL DEFAULT 'CREATED',
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            await conn.execute("""
                CREATE TABLE IF NOT EXISTS receipts (
                    id VARCHAR(36) PRIMARY KEY,
                    lead_id VARCHAR(36) REFERENCES leads(id),
                    amount NUMERIC NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            await conn.execute("""
                CREATE TABLE IF NOT EXISTS cash_targets (
                    id VARCHAR(36) PRIMARY KEY,
                    project_id VARCHAR(36) REFERENCES projects(id),
                    target_amount NUMERIC NOT NULL,
                    target_date TIMESTAMP NOT NULL,
                    status VARCHAR(20) NOT NULL DEFAULT 'ACTIVE',
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            await conn.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    id VARCHAR(36) PRIMARY KEY,
                    agent_type VARCHAR(50) NOT NULL,
                    action_type VARCHAR(50) NOT NULL,
                    payload JSONB NOT NULL DEFAULT '{}',
                    risk_level VARCHAR(10) NOT NULL,
                    cash_impact_delta NUMERIC,
                    reason_short TEXT,
                    status VARCHAR(20) NOT NULL DEFAULT 'PENDING',
                    approval_unassigned BOOLEAN NOT NULL DEFAULT FALSE,
                    policy_violations JSONB NOT NULL DEFAULT '[]',
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            await conn.execute("""
                CREATE TABLE IF NOT EXISTS approvals (
                    id VARCHAR(36) PRIMARY KEY,
                    task_id VARCHAR(36) REFERENCES tasks(id),
                    approver_id VARCHAR(36) REFERENCES users(id),
                    state VARCHAR(20) NOT NULL DEFAULT 'PENDING',
                    note TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            await conn.execute("""
                CREATE TABLE IF NOT EXISTS audit_logs (
                    id SERIAL PRIMARY KEY,
                    user_id VARCHAR(36),
                    action VARCHAR(50) NOT NULL,
                    entity_type VARCHAR(50) NOT NULL,
                    entity_id VARCHAR(36) NOT NULL,
                    payload JSONB NOT NULL DEFAULT '{}',
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

    async def _create_indexes(self):
        async with self.connection_pool.acquire() as conn:
            await conn.execute("CREATE INDEX IF NOT EXISTS idx_task_status ON tasks(status)")
            await conn.execute("CREATE INDEX IF NOT EXISTS idx_task_created ON tasks(created_at)")
            await conn.execute("CREATE INDEX IF NOT EXISTS idx_approval_task ON approvals(task_id)")
            await conn.execute("CREATE INDEX IF NOT EXISTS idx_approval_state ON approvals(state)")
            await conn.execute("CREATE INDEX IF NOT EXISTS idx_unit_project_status ON units(project_id, status)")
            await conn.execute("CREATE INDEX IF NOT EXISTS idx_lead_project_status ON leads(project_id, status)")
            await conn.execute("CREATE INDEX IF NOT EXISTS idx_token_status ON tokens(status)")

    # Sales state reads

    async def get_project(self, project_id: str) -> Optional[Project]:
        async with self.connection_pool.acquire() as conn:
            row = await conn.fetchrow("SELECT id, name FROM projects WHERE id = $1", project_id)
            return Project(project_id=row["id"], name=row["name"]) if row else None

    async def list_available_units(self, project_id: str) -> List[Unit]:
        async with self.connection_pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT * FROM units
                WHERE project_id = $1 AND status = $2
                ORDER BY created_at
            """, project_id, UnitStatus.AVAILABLE.value)
            return [
                Unit(
                    unit_id=row["id"],
                    project_id=row["project_id"],
                    unit_number=row["unit_number"],
                    status=UnitStatus(row["status"]),
                    created_at=row["created_at"]
                )
                for row in rows
            ]

    async def list_active_leads(self, project_id: str,
                                statuses: Sequence[LeadStatus]) -> List[Lead]:
        async with self.connection_pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT * FROM leads
                WHERE project_id = $1 AND status = ANY($2::varchar[])
                ORDER BY created_at
            """, project_id, [status.value for status in statuses])
            return [self._row_to_lead(row) for row in rows]

    async def has_active_deal_page(self, lead_id: str, as_of: datetime) -> bool:
        async with self.connection_pool.acquire() as conn:
            found = await conn.fetchval("""
                SELECT 1 FROM deal_pages WHERE lead_id = $1 AND expires_at > $2 LIMIT 1
            """, lead_id, as_of)
            return found is not None

    async def list_stale_leads(self, project_id: str, status: LeadStatus,
                               updated_before: datetime, limit: int) -> List[Lead]:
        async with self.connection_pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT * FROM leads
                WHERE project_id = $1 AND status = $2 AND updated_at < $3
                ORDER BY updated_at
                LIMIT $4
            """, project_id, status.value, updated_before, limit)
            return [self._row_to_lead(row) for row in rows]

    async def list_pending_tokens(self, project_id: str, created_before: datetime,
                                  limit: int) -> List[PaymentToken]:
        async with self.connection_pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT tk.id, tk.amount, tk.status, tk.created_at,
                       l.id AS lead_id, l.contact_name
                FROM tokens tk
                JOIN deal_pages dp ON dp.id = tk.deal_page_id
                JOIN leads l ON l.id = dp.lead_id
                WHERE l.project_id = $1 AND tk.status = $2 AND tk.created_at < $3
                ORDER BY tk.created_at
                LIMIT $4
            """, project_id, TokenStatus.CREATED.value, created_before, limit)
            return [
                PaymentToken(
                    token_id=row["id"],
                    lead_id=row["lead_id"],
                    amount=float(row["amount"]),
                    status=TokenStatus(row["status"]),
                    created_at=row["created_at"],
                    contact_name=row["contact_name"]
                )
                for row in rows
            ]

    async def get_active_cash_target(self, project_id: str) -> Optional[CashTarget]:
        async with self.connection_pool.acquire() as conn:
            row = await conn.fetchrow("""
                SELECT * FROM cash_targets
                WHERE project_id = $1 AND status = 'ACTIVE'
                ORDER BY created_at DESC
                LIMIT 1
            """, project_id)
            if not row:
                return None
            return CashTarget(
                project_id=row["project_id"],
                target_amount=float(row["target_amount"]),
                target_date=row["target_date"],
                status=row["status"]
            )

    async def sum_receipts(self, project_id: str) -> float:
        async with self.connection_pool.acquire() as conn:
            total = await conn.fetchval("""
                SELECT COALESCE(SUM(r.amount), 0)
                FROM receipts r JOIN leads l ON l.id = r.lead_id
                WHERE l.project_id = $1
            """, project_id)
            return float(total or 0)

    async def count_active_tasks(self) -> int:
        async with self.connection_pool.acquire() as conn:
            return await conn.fetchval("""
                SELECT COUNT(*) FROM tasks WHERE status IN ('PENDING', 'IN_PROGRESS')
            """)

    async def count_pending_approvals(self) -> int:
        async with self.connection_pool.acquire() as conn:
            return await conn.fetchval("SELECT COUNT(*) FROM approvals WHERE state = 'PENDING'")

    # Tasks and approvals

    async def find_approver(self, roles: Sequence[str]) -> Optional[str]:
        async with self.connection_pool.acquire() as conn:
            return await conn.fetchval("""
                SELECT id FROM users WHERE role = ANY($1::varchar[])
                ORDER BY created_at
                LIMIT 1
            """, list(roles))

    async def insert_task(self, task_input: TaskInput, approval_unassigned: bool = False) -> str:
        task_id = str(uuid.uuid4())
        async with self.connection_pool.acquire() as conn:
            await conn.execute("""
                INSERT INTO tasks
                (id, agent_type, action_type, payload, risk_level, cash_impact_delta,
                 reason_short, status, approval_unassigned, policy_violations)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
            """, task_id, task_input.agent_type, task_input.action_type,
                json.dumps(task_input.payload, default=str), task_input.risk_level.value,
                task_input.cash_impact_delta, task_input.reason_short,
                TaskStatus.PENDING.value, approval_unassigned,
                json.dumps(list(task_input.policy_violations)))
        return task_id

    async def insert_approval(self, task_id: str, approver_id: str) -> str:
        approval_id = str(uuid.uuid4())
        async with self.connection_pool.acquire() as conn:
            await conn.execute("""
                INSERT INTO approvals (id, task_id, approver_id, state)
                VALUES ($1, $2, $3, $4)
            """, approval_id, task_id, approver_id, ApprovalState.PENDING.value)
        logger.info("Approval request created",
                   task_id=task_id,
                   approver_id=approver_id,
                   approval_id=approval_id)
        return approval_id

    async def decide_approval(self, task_id: str, approver_id: str,
                              state: ApprovalState, note: Optional[str] = None) -> int:
        """Compare-and-set on state; returns the number of approvals decided"""
        async with self.connection_pool.acquire() as conn:
            result = await conn.execute("""
                UPDATE approvals
                SET state = $3, note = $4, updated_at = CURRENT_TIMESTAMP
                WHERE task_id = $1 AND approver_id = $2 AND state = 'PENDING'
            """, task_id, approver_id, state.value, note)
        return _affected_rows(result)

    async def update_task_status(self, task_id: str, status: TaskStatus) -> bool:
        """Terminal tasks are never updated"""
        async with self.connection_pool.acquire() as conn:
            result = await conn.execute("""
                UPDATE tasks
                SET status = $2, updated_at = CURRENT_TIMESTAMP
                WHERE id = $1 AND status NOT IN ('COMPLETED', 'CANCELLED')
            """, task_id, status.value)
        updated = _affected_rows(result) > 0
        if updated:
            logger.info("Task status updated", task_id=task_id, status=status.value)
        return updated

    async def insert_audit_log(self, entry: AuditLogEntry) -> None:
        async with self.connection_pool.acquire() as conn:
            await conn.execute("""
                INSERT INTO audit_logs (user_id, action, entity_type, entity_id, payload)
                VALUES ($1, $2, $3, $4, $5)
            """, entry.user_id, entry.action, entry.entity_type, entry.entity_id,
                json.dumps(entry.payload, default=str))

    async def get_task(self, task_id: str) -> Optional[Task]:
        async with self.connection_pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM tasks WHERE id = $1", task_id)
            return self._row_to_task(row) if row else None

    async def list_open_tasks(self, created_since: datetime) -> List[Task]:
        async with self.connection_pool.acquire() as conn:
            rows = await conn.fetch(f"""
                SELECT * FROM tasks t
                WHERE t.created_at >= $1 AND t.status IN ('PENDING', 'IN_PROGRESS')
                ORDER BY {_RISK_ORDER_SQL} DESC, t.cash_impact_delta DESC NULLS FIRST, t.created_at
            """, created_since)
            return [self._row_to_task(row) for row in rows]

    async def list_approvals(self, task_id: str) -> List[Approval]:
        async with self.connection_pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT * FROM approvals WHERE task_id = $1 ORDER BY created_at DESC
            """, task_id)
            return [self._row_to_approval(row) for row in rows]

    async def list_pending_approvals(self, approver_id: Optional[str] = None) -> List[PendingApproval]:
        async with self.connection_pool.acquire() as conn:
            rows = await conn.fetch(f"""
                SELECT a.id AS approval_id, a.task_id, a.approver_id, a.state, a.note,
                       a.created_at AS approval_created_at, a.updated_at AS approval_updated_at,
                       t.*
                FROM approvals a JOIN tasks t ON t.id = a.task_id
                WHERE a.state = 'PENDING' AND ($1::varchar IS NULL OR a.approver_id = $1)
                ORDER BY {_RISK_ORDER_SQL} DESC, t.cash_impact_delta DESC NULLS FIRST, a.created_at
            """, approver_id)
            return [
                PendingApproval(
                    approval=Approval(
                        approval_id=row["approval_id"],
                        task_id=row["task_id"],
                        approver_id=row["approver_id"],
                        state=ApprovalState(row["state"]),
                        note=row["note"],
                        created_at=row["approval_created_at"],
                        updated_at=row["approval_updated_at"]
                    ),
                    task=self._row_to_task(row)
                )
                for row in rows
            ]

    def _row_to_lead(self, row) -> Lead:
        return Lead(
            lead_id=row["id"],
            project_id=row["project_id"],
            status=LeadStatus(row["status"]),
            contact_name=row["contact_name"],
            contact_phone=row["contact_phone"],
            created_at=row["created_at"],
            updated_at=row["updated_at"]
        )

    def _row_to_task(self, row) -> Task:
        payload = row["payload"]
        cash_impact = row["cash_impact_delta"]
        violations = row["policy_violations"]
        return Task(
            task_id=row["id"],
            agent_type=row["agent_type"],
            action_type=row["action_type"],
            payload=json.loads(payload) if isinstance(payload, str) else dict(payload or {}),
            risk_level=RiskLevel(row["risk_level"]),
            status=TaskStatus(row["status"]),
            cash_impact_delta=float(cash_impact) if cash_impact is not None else None,
            reason_short=row["reason_short"],
            approval_unassigned=row["approval_unassigned"],
            policy_violations=tuple(json.loads(violations) if isinstance(violations, str) else violations or ()),
            created_at=row["created_at"],
            updated_at=row["updated_at"]
        )

    def _row_to_approval(self, row) -> Approval:
        return Approval(
            approval_id=row["id"],
            task_id=row["task_id"],
            approver_id=row["approver_id"],
            state=ApprovalState(row["state"]),
            note=row["note"],
            created_at=row["created_at"],
            updated_at=row["updated_at"]
        )

    async def close(self):
        """Close database connection pool"""
        if self.connection_pool:
            await self.connection_pool.close()
