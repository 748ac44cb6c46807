"""
Pytest fixtures for BrowseFlow tests.

Scripted collaborators stand in for the LLM roles and the browser:
- ScriptedPlanner returns a fixed strategy, then queued replans
- ScriptedExecutor plays per-step outcomes ("ok", "fail", "hang" or a dict)
- ScriptedEvaluator accepts an attempt iff every executor action succeeded
- FakeBrowser / FakeDomService serve a static search page
- RecordingReporter keeps every narration line
"""

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from browseflow.config import WorkflowManagerConfig
from browseflow.domain.interfaces.agents import (
    ActionResult,
    EvaluatorInput,
    EvaluatorOutput,
    ExecutorInput,
    ExecutorOutput,
    IEvaluator,
    IExecutor,
    IPlanner,
    ISummarizer,
    MicroAction,
    PageSnapshot,
    PlannerInput,
    PlannerOutput,
    StrategicStep,
    SummarizerInput,
    SummarizerOutput,
)
from browseflow.domain.interfaces.browser import IBrowser, IDomService
from browseflow.domain.interfaces.reporter import IAgentReporter
from browseflow.domain.models import DomElement


# ═══════════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════════


def strategy(*descriptions: str, intent: str = "interact", **overrides: Any) -> List[StrategicStep]:
    """Strategic steps with ids step-1..step-n."""
    return [
        StrategicStep(
            id=f"step-{i}",
            name=f"Step {i}",
            description=description,
            intent=intent,
            target_concept=description.split()[-1],
            expected_outcome=f"{description} done",
            **overrides,
        )
        for i, description in enumerate(descriptions, start=1)
    ]


def search_page_elements() -> List[DomElement]:
    return [
        DomElement("input", "#q", attributes={"type": "search", "placeholder": "Search products"}, index=0),
        DomElement("button", "#go", text="Search", index=1),
        DomElement("a", "#next", text="Next page", index=2),
    ]


def results_page_elements() -> List[DomElement]:
    return [
        DomElement("div", ".result", attributes={"class": "product-card"}, index=0),
        DomElement("select", "#sort", attributes={"aria-label": "Sort by"}, index=1),
        DomElement("button", "#cart", text="Add to cart", index=2),
    ]


# ═══════════════════════════════════════════════════════════════════════════════
# Browser / DOM
# ═══════════════════════════════════════════════════════════════════════════════


class FakeBrowser(IBrowser):

    def __init__(self, fail_launch: bool = False):
        self.url = "about:blank"
        self.title = "Shop"
        self.fail_launch = fail_launch
        self.launched = False
        self.closed = False
        self.visited: List[str] = []

    async def launch(self, url: str) -> None:
        if self.fail_launch:
            raise RuntimeError("chromium not installed")
        self.launched = True
        self.url = url
        self.visited.append(url)

    async def close(self) -> None:
        self.closed = True

    def get_page_url(self) -> str:
        return self.url

    async def get_title(self) -> str:
        return self.title

    async def go_to_url(self, url: str) -> None:
        self.url = url
        self.visited.append(url)

    async def go_back(self) -> None:
        if len(self.visited) > 1:
            self.visited.pop()
            self.url = self.visited[-1]

    async def mouse_click(self, x: float, y: float) -> None:
        pass

    async def fill_input(self, text: str, x: float, y: float) -> None:
        pass

    async def scroll_down(self) -> None:
        pass

    async def scroll_up(self) -> None:
        pass

    async def hover(self, x: float, y: float) -> None:
        pass

    async def select_option(self, selector: str, value: str) -> None:
        pass

    async def wait_for_element(self, selector: str, condition: str = "visible",
                               timeout_ms: int = 5000) -> bool:
        return True

    async def extract_content(self) -> str:
        return f"<html><title>{self.title}</title></html>"

    async def screenshot(self) -> Optional[str]:
        return "c2NyZWVu"


class FakeDomService(IDomService):

    def __init__(self, elements: Optional[List[DomElement]] = None):
        self.elements = elements if elements is not None else search_page_elements()

    async def get_interactive_elements(self) -> List[DomElement]:
        return list(self.elements)

    async def get_pristine_screenshot(self) -> Optional[str]:
        return "cHJpc3RpbmU="

    async def get_highlighted_screenshot(self) -> Optional[str]:
        return "aGlnaGxpZ2h0ZWQ="


# ═══════════════════════════════════════════════════════════════════════════════
# LLM roles
# ═══════════════════════════════════════════════════════════════════════════════


class ScriptedPlanner(IPlanner):
    """Initial strategy first; each replan pops the next queued strategy."""

    def __init__(self, initial: List[StrategicStep], replans: Optional[List[Any]] = None,
                 reasoning: str = "scripted"):
        self.initial = initial
        self.replans = list(replans or [])
        self.reasoning = reasoning
        self.inputs: List[PlannerInput] = []

    async def plan(self, planner_input: PlannerInput) -> PlannerOutput:
        self.inputs.append(planner_input)
        if not planner_input.is_replan:
            return PlannerOutput(strategy=self.initial, reasoning=self.reasoning)
        if not self.replans:
            raise RuntimeError("no replan scripted")
        nxt = self.replans.pop(0)
        if isinstance(nxt, Exception):
            raise nxt
        return PlannerOutput(strategy=nxt, reasoning="replanned")

    @property
    def replan_inputs(self) -> List[PlannerInput]:
        return [i for i in self.inputs if i.is_replan]


class ScriptedExecutor(IExecutor):
    """
    Outcomes are consumed per attempt, keyed by task description.

    "ok" succeeds, "fail" reports a failed action, "hang" sleeps past any
    timeout, "raise" raises; a callable runs first and then succeeds; a
    dict may carry `extracted_data` and `url`, or an `error` to fail with.
    Unscripted attempts succeed.
    """

    def __init__(self, script: Optional[Dict[str, List[Any]]] = None,
                 browser: Optional[FakeBrowser] = None):
        self.script = {k: list(v) for k, v in (script or {}).items()}
        self.browser = browser
        self.calls: List[ExecutorInput] = []

    def attempts_for(self, description: str) -> int:
        return sum(1 for c in self.calls if c.description == description)

    async def execute(self, executor_input: ExecutorInput) -> ExecutorOutput:
        self.calls.append(executor_input)
        queue = self.script.get(executor_input.description) or []
        outcome = queue.pop(0) if queue else "ok"
        action = MicroAction(type="click", element_index=1, description=executor_input.description)

        if callable(outcome):
            outcome(executor_input)
            outcome = "ok"
        if isinstance(outcome, dict) and outcome.get("error"):
            return ExecutorOutput(
                task_id=executor_input.task_id,
                micro_actions=[action],
                results=[ActionResult(success=False, action="click", error=outcome["error"])],
            )
        if outcome == "hang":
            await asyncio.sleep(3600)
        if outcome == "raise":
            raise RuntimeError("element detached from DOM")
        if outcome == "fail":
            return ExecutorOutput(
                task_id=executor_input.task_id,
                micro_actions=[action],
                results=[ActionResult(success=False, action="click", error="Element not found")],
            )

        final_state = None
        if isinstance(outcome, dict):
            if outcome.get("url") and self.browser is not None:
                self.browser.url = outcome["url"]
            final_state = PageSnapshot(
                url=outcome.get("url", executor_input.page_state.url),
                title=executor_input.page_state.title,
                visible_sections=executor_input.page_state.visible_sections,
                available_actions=executor_input.page_state.available_actions,
                extracted_data=outcome.get("extracted_data"),
            )
        return ExecutorOutput(
            task_id=executor_input.task_id,
            micro_actions=[action],
            results=[ActionResult(success=True, action="click")],
            final_state=final_state,
        )


class ScriptedEvaluator(IEvaluator):

    def __init__(self, confidence: float = 0.9):
        self.confidence = confidence
        self.inputs: List[EvaluatorInput] = []

    async def evaluate(self, evaluator_input: EvaluatorInput) -> EvaluatorOutput:
        self.inputs.append(evaluator_input)
        failed = [r for r in evaluator_input.results if not r.success]
        if failed:
            return EvaluatorOutput(
                success=False,
                confidence=0.2,
                reason=failed[0].error or "action failed",
                suggestions=["Try another selector"],
            )
        return EvaluatorOutput(
            success=True,
            confidence=self.confidence,
            evidence=f"Observed: {evaluator_input.expected_outcome}",
            reason="Expected outcome observed",
        )


class StaticSummarizer(ISummarizer):

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.inputs: List[SummarizerInput] = []

    async def summarize(self, summarizer_input: SummarizerInput) -> SummarizerOutput:
        self.inputs.append(summarizer_input)
        if self.fail:
            raise RuntimeError("summarizer model unavailable")
        done = [s for s in summarizer_input.plan if s.status == "completed"]
        return SummarizerOutput(
            objective=summarizer_input.goal,
            status="completed",
            summary=f"{len(done)} steps done for: {summarizer_input.goal}",
            extracted_fields=[{"key": k, "value": v} for k, v in summarizer_input.extracted_data.items()],
        )


class RecordingReporter(IAgentReporter):

    def __init__(self):
        self.messages: List[tuple] = []

    def success(self, message: str) -> None:
        self.messages.append(("success", message))

    def failure(self, message: str) -> None:
        self.messages.append(("failure", message))

    def loading(self, message: str) -> None:
        self.messages.append(("loading", message))

    def info(self, message: str) -> None:
        self.messages.append(("info", message))

    def log(self, message: str) -> None:
        self.messages.append(("log", message))

    def of_level(self, level: str) -> List[str]:
        return [m for lvl, m in self.messages if lvl == level]


# ═══════════════════════════════════════════════════════════════════════════════
# Fixtures
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.fixture
def browser() -> FakeBrowser:
    return FakeBrowser()


@pytest.fixture
def dom_service() -> FakeDomService:
    return FakeDomService()


@pytest.fixture
def reporter() -> RecordingReporter:
    return RecordingReporter()


@pytest.fixture
def evaluator() -> ScriptedEvaluator:
    return ScriptedEvaluator()


@pytest.fixture
def fast_config() -> WorkflowManagerConfig:
    """Default workflow settings without retry delays."""
    return WorkflowManagerConfig(retry_base_delay_ms=0, retry_max_delay_ms=0)
