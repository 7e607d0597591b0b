"""Step action handlers, dispatched by ActionType."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Sequence

from flowmend.core.errors import StepValidationError, StepVerificationError
from flowmend.core.types import ExtractedItem, WorkflowRun
from flowmend.runner.guard import DomainGuard
from flowmend.runner.heuristics import PageHeuristic
from flowmend.runner.session import BrowserSession
from flowmend.runner.workflow import ActionType, WorkflowStep

logger = logging.getLogger(__name__)

NAVIGATION_TIMEOUT_MS = 30_000
INTERACTION_TIMEOUT_MS = 12_000
VERIFY_TIMEOUT_MS = 6_000


@dataclass
class StepContext:
    """Everything one step attempt may touch."""

    session: BrowserSession
    step: WorkflowStep
    index: int  # 0-based position in the workflow
    workflow_url: str
    guard: DomainGuard
    run: WorkflowRun
    sleep: Callable[[float], Awaitable[None]]
    emit: Callable[..., None]
    heuristics: Sequence[PageHeuristic] = field(default_factory=list)

    @property
    def number(self) -> int:
        return self.index + 1

    @property
    def selector(self) -> str:
        if not self.step.selector:
            raise StepValidationError(
                f"Step {self.number}: {self.step.action.value} requires selector."
            )
        return self.step.selector

    def check_current_page(self) -> None:
        self.guard.check(self.session.url, f"Step {self.number}: Current page domain is blocked")


StepHandler = Callable[[StepContext], Awaitable[None]]


async def run_goto(ctx: StepContext) -> None:
    url = ctx.step.value
    if not url:
        raise StepValidationError(f"Step {ctx.number}: goto requires value (URL).")
    ctx.guard.check(url, f"Step {ctx.number}: URL domain is not allowed")
    await ctx.session.goto(url, NAVIGATION_TIMEOUT_MS)
    # A compliant URL can still redirect off the allow-list
    ctx.guard.check(ctx.session.url, f"Step {ctx.number}: Redirected to blocked domain")


async def run_click(ctx: StepContext) -> None:
    selector = ctx.selector
    ctx.check_current_page()
    await ctx.session.click(selector, INTERACTION_TIMEOUT_MS)

    for heuristic in ctx.heuristics:
        if not heuristic.matches(ctx.step, ctx.workflow_url):
            continue
        item = await heuristic.after_click(ctx.session, ctx.step, ctx.number, sleep=ctx.sleep)
        if item is not None:
            ctx.run.extracted_data.append(item)
            ctx.emit(
                "info",
                f"Step {ctx.number} auto-extracted data",
                step=ctx.number,
                heuristic=heuristic.name,
            )


async def run_type(ctx: StepContext) -> None:
    selector = ctx.selector
    text = ctx.step.value or ""
    ctx.check_current_page()
    await ctx.session.type(selector, text, INTERACTION_TIMEOUT_MS)

    current = await ctx.session.input_value(selector, VERIFY_TIMEOUT_MS)
    if current == text:
        return

    ctx.emit(
        "warn",
        f"Step {ctx.number} typed value mismatch; assigning directly",
        step=ctx.number,
        selector=selector,
    )
    await ctx.session.set_value(selector, text, INTERACTION_TIMEOUT_MS)
    current = await ctx.session.input_value(selector, VERIFY_TIMEOUT_MS)
    if current != text:
        raise StepVerificationError(
            f"Step {ctx.number}: field {selector!r} holds {current!r} after typing"
        )


async def run_extract(ctx: StepContext) -> None:
    selector = ctx.selector
    ctx.check_current_page()
    attribute = ctx.step.attribute
    value: Any = await ctx.session.extract(selector, attribute, INTERACTION_TIMEOUT_MS)
    ctx.run.extracted_data.append(
        ExtractedItem(
            step=ctx.number,
            selector=selector,
            attribute=attribute or "textContent",
            value=value,
            page_url=ctx.session.url,
        )
    )


async def run_wait(ctx: StepContext) -> None:
    await ctx.sleep(ctx.step.wait_ms / 1000)


HANDLERS: dict[ActionType, StepHandler] = {
    ActionType.GOTO: run_goto,
    ActionType.CLICK: run_click,
    ActionType.TYPE: run_type,
    ActionType.EXTRACT: run_extract,
    ActionType.WAIT: run_wait,
}


async def run_step(ctx: StepContext) -> None:
    handler = HANDLERS.get(ctx.step.action)
    if handler is None:
        raise StepValidationError(
            f"Step {ctx.number}: Unsupported action {ctx.step.action!r}."
        )
    await handler(ctx)
