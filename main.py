# main.py
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Dict, Any, List

from fastapi import FastAPI, HTTPException, Depends, Request
from datetime import datetime

# Internal imports
from application.orchestrators.planning_orchestrator import PlanningOrchestrator
from application.services.approval_manager import ApprovalManager
from application.services.policy_evaluator import PolicyEvaluator
from application.services.pricing_calculator import calculate_complete_pricing
from application.services.task_planner import TaskPlanner
from application.services.unit_selection import build_unit_selector
from domain.exceptions import CashTargetNotFound
from domain.models.approval_workflow import (
    PlanRequestModel,
    PlanResponseModel,
    PricingRequestModel,
    TaskSummaryModel,
)
from infrastructure.agents.ai_task_proposer import build_task_proposer
from infrastructure.resilience.circuit_breaker import CircuitBreakerRegistry, CircuitBreakerConfig
from infrastructure.storage.persistent_task_store import PersistentTaskStore
from infrastructure.web.approval_api import router as approval_router, task_to_model
from shared.config import Settings, load_policy
from shared.logging import logger, setup_logging

VERSION = "1.0.0"

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Wire collaborators once and attach them to app.state"""

    settings = Settings.from_env()
    setup_logging(level=settings.log_level, json_logs=settings.json_logs)
    logger.info("Starting sales task planner", version=VERSION)

    try:
        store = PersistentTaskStore(settings.database_url)
        await store.initialize()

        circuit_breaker_registry = CircuitBreakerRegistry(store.connection_pool)
        proposer_breaker = await circuit_breaker_registry.get_breaker(
            "ai_task_proposer",
            CircuitBreakerConfig(failure_threshold=3, timeout_seconds=settings.ai_proposer_timeout_seconds)
        )

        evaluator = PolicyEvaluator(load_policy(settings))
        planner = TaskPlanner(
            store,
            evaluator,
            unit_selector=build_unit_selector(settings.unit_selection)
        )

        app.state.settings = settings
        app.state.store = store
        app.state.circuit_breaker_registry = circuit_breaker_registry
        app.state.planner = planner
        app.state.orchestrator = PlanningOrchestrator(
            store, planner, build_task_proposer(settings, proposer_breaker)
        )
        app.state.approval_manager = ApprovalManager(store)

        logger.info("Application initialized successfully",
                    ai_proposer_enabled=settings.ai_proposer_enabled,
                    unit_selection=settings.unit_selection)

    except Exception as e:
        logger.error("Failed to initialize application", error=str(e))
        raise

    yield

    logger.info("Shutting down sales task planner")
    await app.state.store.close()

app = FastAPI(
    title="Sales Task Planner",
    description="Rule-based task planning with policy evaluation and human approval",
    version=VERSION,
    lifespan=lifespan
)

# Dependency injection
async def get_orchestrator(request: Request) -> PlanningOrchestrator:
    return request.app.state.orchestrator

async def get_planner(request: Request) -> TaskPlanner:
    return request.app.state.planner

async def get_circuit_breaker_registry(request: Request) -> CircuitBreakerRegistry:
    return request.app.state.circuit_breaker_registry

@app.post("/planner/run", response_model=PlanResponseModel)
async def run_planner(
    request: PlanRequestModel,
    orchestrator: PlanningOrchestrator = Depends(get_orchestrator)
):
    """Generate, review and persist tasks for a project"""

    try:
        result = await orchestrator.run_planner(request.project_id)

        return PlanResponseModel(
            tasks_generated=result.tasks_generated,
            task_ids=result.task_ids,
            unassigned_task_ids=result.unassigned_task_ids,
            context={
                "current_cash_flow": result.current_cash_flow,
                "target_amount": result.target_amount,
                "cash_gap": result.cash_gap,
                "days_to_target": result.days_to_target
            }
        )

    except CashTargetNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error("Planning failed", project_id=request.project_id, error=str(e))
        raise HTTPException(status_code=500, detail="Planning failed")

@app.get("/tasks/today", response_model=List[TaskSummaryModel])
async def get_today_tasks(planner: TaskPlanner = Depends(get_planner)):
    try:
        tasks = await planner.get_today_tasks()
        return [task_to_model(task) for task in tasks]

    except Exception as e:
        logger.error("Failed to get today's tasks", error=str(e))
        raise HTTPException(status_code=500, detail="Failed to get today's tasks")

@app.post("/pricing/quote")
async def quote_price(request: PricingRequestModel) -> Dict[str, Any]:
    """Price breakdown, milestone schedule and EMI options for a unit"""

    result = calculate_complete_pricing(request, loan_percentage=request.loan_percentage)
    return asdict(result)

@app.get("/health")
async def health_check(
    request: Request,
    circuit_breaker_registry: CircuitBreakerRegistry = Depends(get_circuit_breaker_registry)
):
    """System health check"""

    try:
        async with request.app.state.store.connection_pool.acquire() as conn:
            await conn.fetchval("SELECT 1")

        circuit_status = await circuit_breaker_registry.get_all_status()
        open_circuits = [name for name, status in circuit_status.items()
                        if status["state"] == "open"]

        return {
            "status": "healthy" if not open_circuits else "degraded",
            "database": "connected",
            "circuit_breakers": circuit_status,
            "open_circuits": open_circuits,
            "version": VERSION,
            "timestamp": datetime.utcnow().isoformat()
        }

    except Exception as e:
        logger.error("Health check failed", error=str(e))
        return {
            "status": "unhealthy",
            "error": str(e),
            "timestamp": datetime.utcnow().isoformat()
        }

@app.get("/")
async def root():
    """API root endpoint"""
    return {
        "service": "Sales Task Planner",
        "version": VERSION,
        "endpoints": {
            "run_planner": "POST /planner/run",
            "today_tasks": "GET /tasks/today",
            "pricing_quote": "POST /pricing/quote",
            "approvals": "/approvals/*",
            "health_check": "GET /health"
        }
    }

app.include_router(approval_router)

if __name__ == "__main__":
    import uvicorn

    settings = Settings.from_env()
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.reload
    )
