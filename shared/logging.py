# shared/logging.py
import structlog
import logging
import sys
from typing import Any, Dict, List, Optional

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

# Get logger instance
logger = structlog.get_logger()

# Configure standard library logging
logging.basicConfig(
    format="%(message)s",
    stream=sys.stdout,
    level=logging.INFO,
)

def setup_logging(level: str = "INFO", json_logs: bool = True):
    """Setup logging configuration"""
    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.getLogger().setLevel(log_level)

    if not json_logs:
        # Human-readable output for local development
        structlog.configure(
            processors=[
                structlog.stdlib.filter_by_level,
                structlog.stdlib.add_logger_name,
                structlog.stdlib.add_log_level,
                structlog.stdlib.PositionalArgumentsFormatter(),
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.UnicodeDecoder(),
                structlog.dev.ConsoleRenderer()
            ],
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )

def log_planner_run(
    project_id: str,
    tasks_generated: int,
    cash_gap: float,
    days_to_target: int,
    source: str = "deterministic",
    additional_context: Optional[Dict[str, Any]] = None
):
    """Log the outcome of a planning pass"""
    extra_data = {
        "project_id": project_id,
        "tasks_generated": tasks_generated,
        "cash_gap": cash_gap,
        "days_to_target": days_to_target,
        "source": source
    }

    if additional_context:
        extra_data.update(additional_context)

    logger.info("Planner run completed", **extra_data)

def log_policy_evaluation(
    action_type: str,
    risk_level: str,
    requires_approval: bool,
    violations: List[str]
):
    """Log policy evaluations; violations are logged as warnings"""
    if violations:
        logger.warning("Policy violations detected",
                       action_type=action_type,
                       risk_level=risk_level,
                       requires_approval=requires_approval,
                       violations=violations)
    else:
        logger.debug("Policy evaluated",
                     action_type=action_type,
                     risk_level=risk_level,
                     requires_approval=requires_approval)

def log_approval_decision(
    task_id: str,
    approver_id: str,
    decision: str,
    note: Optional[str] = None
):
    """Log human approval decisions"""
    logger.info("Approval processed",
               task_id=task_id,
               approver_id=approver_id,
               decision=decision,
               note=note)

def log_external_call(
    service_name: str,
    execution_time_ms: int,
    success: bool,
    items_returned: int = 0,
    error_message: Optional[str] = None
):
    """Log calls to best-effort external services"""
    extra_data = {
        "service_name": service_name,
        "execution_time_ms": execution_time_ms,
        "success": success,
        "items_returned": items_returned
    }

    if error_message:
        extra_data["error_message"] = error_message
        logger.error("External service call failed", **extra_data)
    else:
        logger.info("External service call completed", **extra_data)

def log_circuit_breaker_event(
    service_name: str,
    event_type: str,
    state: str,
    failure_count: int,
    additional_context: Optional[Dict[str, Any]] = None
):
    """Log circuit breaker state changes"""
    extra_data = {
        "service_name": service_name,
        "event_type": event_type,
        "circuit_state": state,
        "failure_count": failure_count
    }

    if additional_context:
        extra_data.update(additional_context)

    logger.info("Circuit breaker event", **extra_data)
