# infrastructure/web/approval_api.py
from fastapi import APIRouter, HTTPException, Depends, Request
from typing import Dict, Any, Optional, List
from application.services.approval_manager import ApprovalManager
from domain.exceptions import NotFoundOrAlreadyProcessed, TaskNotFound
from domain.models.approval_workflow import (
    ApprovalDecision,
    ApprovalDecisionModel,
    ApprovalStatusModel,
    ImpactSimulationModel,
    PendingApprovalModel,
    TaskSummaryModel,
)
from domain.models.task_state import Approval, Task
from shared.logging import logger

router = APIRouter(prefix="/approvals", tags=["approvals"])

# Dependency injection; the instance is attached to app.state during lifespan
async def get_approval_manager(request: Request) -> ApprovalManager:
    return request.app.state.approval_manager

def approval_to_model(approval: Approval) -> ApprovalStatusModel:
    return ApprovalStatusModel(
        approval_id=approval.approval_id,
        task_id=approval.task_id,
        approver_id=approval.approver_id,
        state=approval.state.value,
        note=approval.note,
        created_at=approval.created_at,
        updated_at=approval.updated_at
    )

def task_to_model(task: Task) -> TaskSummaryModel:
    return TaskSummaryModel(
        task_id=task.task_id,
        agent_type=task.agent_type,
        action_type=task.action_type,
        payload=task.payload,
        risk_level=task.risk_level.value,
        status=task.status.value,
        cash_impact_delta=task.cash_impact_delta,
        reason_short=task.reason_short,
        approval_unassigned=task.approval_unassigned,
        policy_violations=list(task.policy_violations),
        created_at=task.created_at
    )

@router.get("/pending", response_model=List[PendingApprovalModel])
async def get_pending_approvals(
    approver_id: Optional[str] = None,
    approval_manager: ApprovalManager = Depends(get_approval_manager)
):
    """Pending approvals, highest risk and cash impact first"""

    try:
        pending = await approval_manager.get_pending_approvals(approver_id)
        return [
            PendingApprovalModel(approval=approval_to_model(item.approval), task=task_to_model(item.task))
            for item in pending
        ]

    except Exception as e:
        logger.error("Failed to get pending approvals", approver_id=approver_id, error=str(e))
        raise HTTPException(status_code=500, detail="Failed to get approvals")

@router.post("/decision")
async def decide_approval(
    request: ApprovalDecisionModel,
    approval_manager: ApprovalManager = Depends(get_approval_manager)
) -> Dict[str, Any]:
    """Record a human decision on a pending approval"""

    try:
        await approval_manager.process_approval(ApprovalDecision(
            task_id=request.task_id,
            approver_id=request.approver_id,
            decision=request.decision,
            note=request.note
        ))

        return {
            "success": True,
            "message": f"Task {request.decision.value.lower()} successfully"
        }

    except NotFoundOrAlreadyProcessed as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.error("Failed to process approval",
                    task_id=request.task_id,
                    approver_id=request.approver_id,
                    error=str(e))
        raise HTTPException(status_code=500, detail="Failed to process approval")

@router.get("/history/{task_id}", response_model=List[ApprovalStatusModel])
async def get_approval_history(
    task_id: str,
    approval_manager: ApprovalManager = Depends(get_approval_manager)
):
    try:
        approvals = await approval_manager.get_approval_history(task_id)
        return [approval_to_model(approval) for approval in approvals]

    except Exception as e:
        logger.error("Failed to get approval history", task_id=task_id, error=str(e))
        raise HTTPException(status_code=500, detail="Failed to get approval history")

@router.get("/impact/{task_id}", response_model=ImpactSimulationModel)
async def simulate_impact(
    task_id: str,
    approval_manager: ApprovalManager = Depends(get_approval_manager)
):
    """Advisory impact summary for the approver"""

    try:
        simulation = await approval_manager.simulate_approval_impact(task_id)
        return ImpactSimulationModel(
            task_id=simulation.task_id,
            cash_impact=simulation.cash_impact,
            risk_assessment=simulation.risk_assessment,
            recommendations=simulation.recommendations
        )

    except TaskNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error("Failed to simulate approval impact", task_id=task_id, error=str(e))
        raise HTTPException(status_code=500, detail="Failed to simulate approval impact")

@router.get("/eligibility/{task_id}")
async def get_execution_eligibility(
    task_id: str,
    approval_manager: ApprovalManager = Depends(get_approval_manager)
) -> Dict[str, Any]:
    """Whether an executor may run the task now"""

    try:
        eligible = await approval_manager.is_execution_eligible(task_id)
        return {"task_id": task_id, "eligible": eligible}

    except TaskNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error("Failed to check execution eligibility", task_id=task_id, error=str(e))
        raise HTTPException(status_code=500, detail="Failed to check execution eligibility")
