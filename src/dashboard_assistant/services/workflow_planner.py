"""Workflow planner.

Turns a goal plus recalled memories into a WorkflowPlan. When a language
model is configured it is asked for a plan first; its JSON is parsed into
the same records the template produces. The fixed three-step template is
the fallback and always works offline. Every returned plan has passed
``validate_plan``.
"""
from __future__ import annotations

import logging
import re
import time
import uuid
from typing import Any, Dict, List, Optional, Sequence

from dashboard_assistant.domain.contracts import LanguageModel
from dashboard_assistant.domain.errors import WorkflowValidationError
from dashboard_assistant.domain.memory import MemorySearchResult
from dashboard_assistant.domain.workflows import (
    PRIORITIES,
    PRIORITY_HIGH,
    PRIORITY_MEDIUM,
    STEP_STATUSES,
    WorkflowPlan,
    WorkflowStep,
    validate_plan,
)
from dashboard_assistant.util import utc_now

logger = logging.getLogger(__name__)

URGENCY_KEYWORDS = ("urgent", "asap", "immediately", "critical", "emergency")
DEFAULT_RISKS = (
    "Ensure all dependencies are available before starting",
    "Verify access permissions for required resources",
)
MISSING_CONTEXT_NOTE = "More context needed - please provide additional details"
MIN_SUPPORTING_MEMORIES = 3

_MAX_STEPS = 20
_ANALYSIS_RE = re.compile(r"analyz|review|assess")
_CREATION_RE = re.compile(r"create|build|develop")


def detect_priority(goal: str) -> str:
    lowered = (goal or "").lower()
    if any(word in lowered for word in URGENCY_KEYWORDS):
        return PRIORITY_HIGH
    return PRIORITY_MEDIUM


def estimate_timeframe(goal: str) -> str:
    words = len((goal or "").split())
    if words < 10:
        return "15-30 minutes"
    if words < 20:
        return "30-60 minutes"
    return "1-2 hours"


def missing_info_for(recalled: Sequence[MemorySearchResult]) -> List[str]:
    if len(recalled) < MIN_SUPPORTING_MEMORIES:
        return [MISSING_CONTEXT_NOTE]
    return []


def template_steps(goal: str) -> List[WorkflowStep]:
    lowered = (goal or "").lower()
    if _ANALYSIS_RE.search(lowered):
        label, detail, outcome = (
            "Perform analysis",
            "Analyze the gathered information to extract insights",
            "Analysis complete with key insights identified",
        )
    elif _CREATION_RE.search(lowered):
        label, detail, outcome = (
            "Create deliverable",
            "Build the requested item based on gathered requirements",
            "Deliverable created and ready for review",
        )
    else:
        label, detail, outcome = (
            "Execute main task",
            "Perform the primary action to achieve the goal",
            "Main task completed successfully",
        )
    return [
        WorkflowStep(
            step_id="step_1",
            label="Gather relevant context",
            detail=f"Review existing memories and gather information related to: {goal}",
            depends_on=[],
            suggested_tool="memory.search",
            expected_outcome="Complete understanding of relevant context and requirements",
        ),
        WorkflowStep(
            step_id="step_2",
            label=label,
            detail=detail,
            depends_on=["step_1"],
            suggested_tool="dashboard",
            expected_outcome=outcome,
        ),
        WorkflowStep(
            step_id="step_3",
            label="Verify and document",
            detail="Confirm results are correct and save for future reference",
            depends_on=["step_2"],
            suggested_tool="memory.create",
            expected_outcome="Results verified and documentation stored",
        ),
    ]


def _new_plan_id() -> str:
    return f"wf_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


def _str_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if str(v or "").strip()]


def _parse_model_steps(raw: Any) -> List[WorkflowStep]:
    if not isinstance(raw, list):
        return []
    steps: List[WorkflowStep] = []
    for idx, item in enumerate(raw[:_MAX_STEPS]):
        if not isinstance(item, dict):
            continue
        label = str(item.get("label") or item.get("action") or "").strip()
        if not label:
            continue
        status = item.get("status")
        steps.append(
            WorkflowStep(
                step_id=str(item.get("id") or f"step_{idx + 1}"),
                label=label,
                detail=str(item.get("detail") or item.get("description") or ""),
                depends_on=_str_list(item.get("dependsOnStepIds", item.get("dependencies"))),
                suggested_tool=str(item.get("suggestedTool") or item.get("tool") or ""),
                expected_outcome=str(item.get("expectedOutcome") or ""),
                status=status if status in STEP_STATUSES else None,
            )
        )
    return steps


def plan_from_model_output(
    data: Dict[str, Any],
    goal: str,
    recalled: Sequence[MemorySearchResult],
    context: Optional[Dict[str, Any]] = None,
) -> WorkflowPlan:
    """Parse model JSON into a WorkflowPlan; raise WorkflowValidationError if unusable."""
    if isinstance(data.get("plan"), dict):
        data = data["plan"]
    steps = _parse_model_steps(data.get("steps"))
    if not steps:
        raise WorkflowValidationError("Model plan has no usable steps.")
    priority = str(data.get("priority") or "").lower()
    if priority not in PRIORITIES:
        priority = detect_priority(goal)
    plan = WorkflowPlan(
        # Model-supplied ids are not trusted to be unique across users.
        plan_id=_new_plan_id(),
        goal=goal,
        summary=str(data.get("summary") or f"Plan for: {goal}"),
        priority=priority,
        suggested_timeframe=str(data.get("suggestedTimeframe") or estimate_timeframe(goal)),
        steps=steps,
        risks=_str_list(data.get("risks")),
        missing_info=_str_list(data.get("missingInfo")),
        used_memories=_str_list(data.get("usedMemories")) or [m.entry_id for m in recalled],
        created_at=utc_now(),
        context=dict(context or {}),
    )
    validate_plan(plan)
    return plan


class WorkflowPlanner:
    def __init__(self, model: Optional[LanguageModel] = None) -> None:
        self._model = model

    async def plan(
        self,
        goal: str,
        recalled: Sequence[MemorySearchResult] = (),
        context: Optional[Dict[str, Any]] = None,
    ) -> WorkflowPlan:
        if self._model is not None:
            try:
                data = await self._model.generate_workflow(goal, [m.to_dict() for m in recalled])
                plan = plan_from_model_output(data, goal, recalled, context)
                logger.info("Model plan accepted: %s steps for goal %r", len(plan.steps), goal[:80])
                return plan
            except Exception as exc:
                logger.warning("Model planning failed, using template: %s", exc)
        return self.template_plan(goal, recalled, context)

    @staticmethod
    def template_plan(
        goal: str,
        recalled: Sequence[MemorySearchResult] = (),
        context: Optional[Dict[str, Any]] = None,
    ) -> WorkflowPlan:
        plan = WorkflowPlan(
            plan_id=_new_plan_id(),
            goal=goal,
            summary=f"Plan for: {goal}",
            priority=detect_priority(goal),
            suggested_timeframe=estimate_timeframe(goal),
            steps=template_steps(goal),
            risks=list(DEFAULT_RISKS),
            missing_info=missing_info_for(recalled),
            used_memories=[m.entry_id for m in recalled],
            created_at=utc_now(),
            context=dict(context or {}),
        )
        validate_plan(plan)
        return plan

