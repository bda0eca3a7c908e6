"""Task plan (DAG) management."""

from .dag import PlanCreation, PlanValidation, TaskPlanService, find_cycle, validate_task_inputs

__all__ = ["PlanCreation", "PlanValidation", "TaskPlanService", "find_cycle", "validate_task_inputs"]
