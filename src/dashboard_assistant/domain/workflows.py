"""Workflow plan domain model and step-dependency validator."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Optional, Sequence, Set

from dashboard_assistant.domain.errors import WorkflowValidationError

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

PRIORITY_HIGH = "high"
PRIORITY_MEDIUM = "medium"
PRIORITY_LOW = "low"

PRIORITIES: FrozenSet[str] = frozenset([PRIORITY_HIGH, PRIORITY_MEDIUM, PRIORITY_LOW])

STEP_STATUS_PENDING = "pending"
STEP_STATUS_IN_PROGRESS = "in_progress"
STEP_STATUS_COMPLETED = "completed"
STEP_STATUS_FAILED = "failed"

STEP_STATUSES: FrozenSet[str] = frozenset(
    [STEP_STATUS_PENDING, STEP_STATUS_IN_PROGRESS, STEP_STATUS_COMPLETED, STEP_STATUS_FAILED]
)

# ---------------------------------------------------------------------------
# Domain records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WorkflowStep:
    step_id: str
    label: str
    detail: str
    depends_on: List[str]
    suggested_tool: str
    expected_outcome: str
    status: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.step_id,
            "label": self.label,
            "detail": self.detail,
            "dependsOnStepIds": list(self.depends_on),
            "suggestedTool": self.suggested_tool,
            "expectedOutcome": self.expected_outcome,
            "status": self.status,
        }


@dataclass(frozen=True)
class WorkflowPlan:
    plan_id: str
    goal: str
    summary: str
    priority: str
    suggested_timeframe: str
    steps: List[WorkflowStep]
    risks: List[str]
    missing_info: List[str]
    used_memories: List[str]
    created_at: datetime
    context: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.plan_id,
            "goal": self.goal,
            "summary": self.summary,
            "priority": self.priority,
            "suggestedTimeframe": self.suggested_timeframe,
            "steps": [s.to_dict() for s in self.steps],
            "risks": list(self.risks),
            "missingInfo": list(self.missing_info),
            "usedMemories": list(self.used_memories),
            "context": dict(self.context),
            "createdAt": self.created_at.isoformat(),
        }


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_plan_steps(steps: Sequence[WorkflowStep]) -> None:
    """Raise WorkflowValidationError unless every dependency points backwards.

    A step may only depend on steps that appear before it in the list, which
    rules out forward, self and circular references in one pass.
    """
    seen: Set[str] = set()
    for position, step in enumerate(steps):
        if not step.step_id:
            raise WorkflowValidationError(f"Step at position {position} has no id.")
        if step.step_id in seen:
            raise WorkflowValidationError(f"Duplicate step id '{step.step_id}'.")
        if step.status is not None and step.status not in STEP_STATUSES:
            raise WorkflowValidationError(f"Unknown status '{step.status}' on step '{step.step_id}'.")
        for dep in step.depends_on:
            if dep not in seen:
                raise WorkflowValidationError(
                    f"Step '{step.step_id}' depends on '{dep}', which is not an earlier step."
                )
        seen.add(step.step_id)


def validate_plan(plan: WorkflowPlan) -> None:
    if plan.priority not in PRIORITIES:
        raise WorkflowValidationError(f"Unknown priority '{plan.priority}'.")
    if not plan.steps:
        raise WorkflowValidationError("Plan has no steps.")
    validate_plan_steps(plan.steps)
