# domain/exceptions.py
from typing import List, Optional

class InvalidInput(ValueError):
    """Pricing input failed validation"""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = errors or []

class NotFoundOrAlreadyProcessed(Exception):
    """No PENDING approval matched the decision"""

    def __init__(self, task_id: str, approver_id: str):
        super().__init__(
            f"Approval for task {task_id} by {approver_id} not found or already processed"
        )
        self.task_id = task_id
        self.approver_id = approver_id

class TaskNotFound(LookupError):
    def __init__(self, task_id: str):
        super().__init__(f"Task {task_id} not found")
        self.task_id = task_id

class CashTargetNotFound(LookupError):
    def __init__(self, project_id: str):
        super().__init__(f"No active cash target found for project {project_id}")
        self.project_id = project_id

class PolicyViolation(Exception):
    """Non-fatal policy annotation, raised only when a caller chooses to block on it"""

    def __init__(self, action_type: str, violations: List[str]):
        super().__init__(f"Policy violations for {action_type}: {'; '.join(violations)}")
        self.action_type = action_type
        self.violations = list(violations)

class ExternalServiceDegraded(Exception):
    """Best-effort collaborator (language model, adapter) failed"""

    def __init__(self, service_name: str, reason: str):
        super().__init__(f"{service_name} degraded: {reason}")
        self.service_name = service_name
        self.reason = reason
