# infrastructure/agents/ai_task_proposer.py
from typing import Any, List, Optional
import json
import math
from datetime import datetime

from openai import AsyncOpenAI

from domain.models.planner_context import PlannerContext, TaskInput
from domain.models.task_state import RiskLevel
from infrastructure.resilience.circuit_breaker import CircuitBreaker
from shared.config import Settings
from shared.logging import logger, log_external_call

MAX_PROPOSED_TASKS = 6

SYSTEM_PROMPT = """You plan cash-in tasks for Indian real-estate developers.
- Only propose concrete, actionable tasks that can be executed programmatically.
- Each task has: agentType, actionType, payload, riskLevel (LOW/MEDIUM/HIGH), optional cashImpactDelta, optional reasonShort.
- Known actionTypes: releaseUnits, generateDealPage, sendWhatsAppTemplate, createOffer, followUpDealPage.
- Respect policy basics: discounts under 10% are MEDIUM risk; above 10% HIGH risk; WhatsApp nudges are LOW risk; releasing inventory MEDIUM risk."""

class TaskProposer:
    """Optional source of extra candidate tasks, same shape as the planner's"""

    def is_enabled(self) -> bool:
        raise NotImplementedError

    async def propose_tasks(self, context: PlannerContext) -> List[TaskInput]:
        raise NotImplementedError

class DisabledTaskProposer(TaskProposer):
    """Used when no language-model credential is configured"""

    def is_enabled(self) -> bool:
        return False

    async def propose_tasks(self, context: PlannerContext) -> List[TaskInput]:
        return []

class OpenAITaskProposer(TaskProposer):
    """Asks an OpenAI chat model for 3-6 tasks; every failure degrades to an empty list"""

    def __init__(self, circuit_breaker: CircuitBreaker, api_key: Optional[str] = None,
                 model: str = "gpt-4o-mini", client: Optional[AsyncOpenAI] = None):
        self.circuit_breaker = circuit_breaker
        self.model = model
        self.client = client or AsyncOpenAI(api_key=api_key)

    def is_enabled(self) -> bool:
        return True

    async def propose_tasks(self, context: PlannerContext) -> List[TaskInput]:
        start_time = datetime.utcnow()

        try:
            text = await self.circuit_breaker.call(self._complete, context)
            tasks = parse_proposed_tasks(text)
        except Exception as e:
            log_external_call(
                service_name="ai_task_proposer",
                execution_time_ms=_elapsed_ms(start_time),
                success=False,
                error_message=str(e)
            )
            return []

        log_external_call(
            service_name="ai_task_proposer",
            execution_time_ms=_elapsed_ms(start_time),
            success=True,
            items_returned=len(tasks)
        )
        return tasks

    async def _complete(self, context: PlannerContext) -> str:
        completion = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_user_prompt(context)},
            ],
            temperature=0.2,
            response_format={"type": "json_object"},
        )
        if not completion.choices:
            return "{}"
        return completion.choices[0].message.content or "{}"

def build_user_prompt(context: PlannerContext) -> str:
    return "\n".join([
        "Project Context:",
        f"- projectId: {context.project_id}",
        f"- currentCashFlow: {context.current_cash_flow}",
        f"- targetAmount: {context.target_amount}",
        f"- targetDateISO: {context.target_date.isoformat()}",
        f"- activeTasks: {context.active_tasks}",
        f"- pendingApprovals: {context.pending_approvals}",
        "",
        'Return a JSON object {"tasks": [...]} with 3-6 tasks, no narration.',
    ])

def parse_proposed_tasks(text: Optional[str]) -> List[TaskInput]:
    """Defensive parse of the model response; malformed input yields an empty list"""
    try:
        parsed = json.loads(text or "")
    except (json.JSONDecodeError, TypeError) as e:
        logger.warning("AI proposer returned malformed JSON", error=str(e))
        return []

    if isinstance(parsed, list):
        items = parsed
    elif isinstance(parsed, dict) and isinstance(parsed.get("tasks"), list):
        items = parsed["tasks"]
    else:
        items = []

    cleaned = []
    for item in items:
        task = sanitize_task(item)
        if task is not None:
            cleaned.append(task)
    return cleaned[:MAX_PROPOSED_TASKS]

def sanitize_task(item: Any) -> Optional[TaskInput]:
    if not isinstance(item, dict):
        return None

    agent_type = str(item.get("agentType") or "").strip()
    action_type = str(item.get("actionType") or "").strip()
    if not agent_type or not action_type:
        return None

    payload = item.get("payload")
    reason = item.get("reasonShort")

    return TaskInput(
        agent_type=agent_type,
        action_type=action_type,
        payload=payload if isinstance(payload, dict) else {},
        risk_level=_coerce_risk(item.get("riskLevel")),
        cash_impact_delta=_coerce_number(item.get("cashImpactDelta")),
        reason_short=reason if isinstance(reason, str) else None,
    )

def _coerce_risk(value: Any) -> RiskLevel:
    try:
        return RiskLevel(str(value).strip().upper())
    except ValueError:
        return RiskLevel.LOW

def _coerce_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.replace(",", "").strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None

def _elapsed_ms(start_time: datetime) -> int:
    return int((datetime.utcnow() - start_time).total_seconds() * 1000)

def build_task_proposer(settings: Settings, circuit_breaker: CircuitBreaker) -> TaskProposer:
    """Pick the proposer from configuration"""
    if not settings.ai_proposer_enabled:
        logger.info("AI task proposer disabled - no OPENAI_API_KEY configured")
        return DisabledTaskProposer()
    logger.info("AI task proposer enabled", model=settings.openai_model)
    return OpenAITaskProposer(
        circuit_breaker=circuit_breaker,
        api_key=settings.openai_api_key,
        model=settings.openai_model,
    )
