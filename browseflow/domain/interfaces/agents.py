"""
LLM collaborator contracts - Planner, Executor, Evaluator, Summarizer.

Payloads are pydantic models so structured model output is validated at
the boundary. The engine never prompts a model itself; it only calls
these interfaces.

Design Decisions:
- one async method per role
- strategic intents are free-form strings; mapping onto concrete task
  intents happens in PlanningService so unknown intents can be logged
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# ═══════════════════════════════════════════════════════════════════════════════
# Shared payloads
# ═══════════════════════════════════════════════════════════════════════════════


class PageSnapshot(BaseModel):
    """Serializable page state exchanged with collaborators."""
    url: str = ""
    title: str = ""
    visible_sections: List[str] = Field(default_factory=list)
    available_actions: List[str] = Field(default_factory=list)
    extracted_data: Optional[Dict[str, Any]] = None


class StrategicStep(BaseModel):
    """A human-level step proposed by the planner."""
    id: str = Field(..., min_length=1, description="Planner-assigned step id")
    name: str = ""
    description: str = Field(..., min_length=1)
    intent: str = Field(..., description="search/filter/navigate/extract/authenticate/verify/interact")
    target_concept: str = ""
    input_data: Any = None
    expected_outcome: str = ""
    dependencies: List[str] = Field(default_factory=list)
    max_attempts: Optional[int] = Field(None, ge=1)
    priority: int = Field(3, ge=1, le=5)


class MicroAction(BaseModel):
    type: str
    element_index: Optional[int] = None
    value: Optional[str] = None
    description: str = ""


class ActionResult(BaseModel):
    success: bool
    action: Optional[str] = None
    error: Optional[str] = None
    extracted_value: Any = None


# ═══════════════════════════════════════════════════════════════════════════════
# Planner
# ═══════════════════════════════════════════════════════════════════════════════


class PlannerInput(BaseModel):
    goal: str
    current_url: str
    constraints: List[str] = Field(default_factory=list)
    current_state: Optional[PageSnapshot] = None
    memory_learnings: str = ""
    is_replan: bool = False
    completed_steps: List[str] = Field(default_factory=list)
    failed_step: Optional[str] = None
    failure_reason: Optional[str] = None
    failed_approaches: List[str] = Field(default_factory=list)
    accumulated_data: Dict[str, Any] = Field(default_factory=dict)
    # Rendered continuation request; set on replans only
    continuation_prompt: Optional[str] = None


class PlannerOutput(BaseModel):
    strategy: List[StrategicStep] = Field(default_factory=list)
    reasoning: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)


# ═══════════════════════════════════════════════════════════════════════════════
# Executor
# ═══════════════════════════════════════════════════════════════════════════════


class ExecutorInput(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    task_id: str
    description: str
    intent: str
    target_concept: str = ""
    input_data: Any = None
    expected_outcome: str = ""
    page_state: PageSnapshot
    pristine_screenshot: Optional[str] = None
    highlighted_screenshot: Optional[str] = None
    dom_elements: List[Dict[str, Any]] = Field(default_factory=list)
    memory_learnings: str = ""
    # VariableManager used to interpolate secrets right before browser calls
    variable_manager: Any = None


class ExecutorOutput(BaseModel):
    task_id: str = ""
    micro_actions: List[MicroAction] = Field(default_factory=list)
    results: List[ActionResult] = Field(default_factory=list)
    final_state: Optional[PageSnapshot] = None
    timestamp: datetime = Field(default_factory=datetime.now)

    @property
    def all_actions_succeeded(self) -> bool:
        return all(r.success for r in self.results)

    @property
    def first_error(self) -> Optional[str]:
        for result in self.results:
            if not result.success:
                return result.error or "action failed"
        return None


# ═══════════════════════════════════════════════════════════════════════════════
# Evaluator
# ═══════════════════════════════════════════════════════════════════════════════


class EvaluatorInput(BaseModel):
    task_id: str
    description: str
    expected_outcome: str = ""
    before_state: PageSnapshot
    after_state: PageSnapshot
    micro_actions: List[MicroAction] = Field(default_factory=list)
    results: List[ActionResult] = Field(default_factory=list)
    before_screenshot: Optional[str] = None
    after_screenshot: Optional[str] = None


class EvaluatorOutput(BaseModel):
    success: bool
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    evidence: str = ""
    reason: str = ""
    suggestions: List[str] = Field(default_factory=list)


# ═══════════════════════════════════════════════════════════════════════════════
# Summarizer
# ═══════════════════════════════════════════════════════════════════════════════


class StepOutcome(BaseModel):
    step_id: str
    description: str
    status: str
    error_reason: Optional[str] = None


class SummarizerInput(BaseModel):
    goal: str
    plan: List[StepOutcome] = Field(default_factory=list)
    extracted_data: Dict[str, Any] = Field(default_factory=dict)
    total_duration_ms: float = 0.0
    url: Optional[str] = None


class SummarizerOutput(BaseModel):
    objective: str = ""
    status: str = ""
    summary: str = ""
    extracted_fields: List[Dict[str, Any]] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    performance_metrics: Dict[str, Any] = Field(default_factory=dict)


# ═══════════════════════════════════════════════════════════════════════════════
# Role interfaces
# ═══════════════════════════════════════════════════════════════════════════════


class IPlanner(ABC):
    """Produces a strategic plan for a goal."""

    @abstractmethod
    async def plan(self, planner_input: PlannerInput) -> PlannerOutput:
        """
        Raises:
            Any exception on model or parsing failure
        """
        pass


class IExecutor(ABC):
    """Turns one task into micro-actions against the browser."""

    @abstractmethod
    async def execute(self, executor_input: ExecutorInput) -> ExecutorOutput:
        pass


class IEvaluator(ABC):
    """Judges whether a task achieved its expected outcome."""

    @abstractmethod
    async def evaluate(self, evaluator_input: EvaluatorInput) -> EvaluatorOutput:
        pass


class ISummarizer(ABC):
    @abstractmethod
    async def summarize(self, summarizer_input: SummarizerInput) -> SummarizerOutput:
        pass
