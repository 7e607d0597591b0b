"""Pluggable site heuristics applied after click steps."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Sequence
from urllib.parse import urlsplit

from flowmend.core.types import ExtractedItem
from flowmend.runner.session import BrowserSession
from flowmend.runner.workflow import WorkflowStep

logger = logging.getLogger(__name__)

_COLLECT_RESULTS_JS = """(args) => {
    const items = Array.from(document.querySelectorAll(args.itemSelector));
    if (!items.length) return null;
    const titles = items
        .map((item) => {
            const node =
                item.querySelector(args.titleSelector)
                || item.querySelector('a[title]')
                || item.querySelector('h2')
                || item.querySelector('h3')
                || item.querySelector('a');
            const text = (node && (node.getAttribute('title') || node.textContent)) || '';
            return String(text).trim();
        })
        .filter(Boolean)
        .slice(0, args.maxTitles);
    return { resultCount: items.length, titles, pageUrl: window.location.href };
}"""


class PageHeuristic(ABC):
    """
    Site-specific behaviour hooked onto click steps.

    Subclass and add to the executor's heuristics instead of special-casing
    sites inside the executor.
    """

    name: str = "heuristic"

    @abstractmethod
    def matches(self, step: WorkflowStep, workflow_url: str) -> bool: ...

    @abstractmethod
    async def after_click(
        self,
        session: BrowserSession,
        step: WorkflowStep,
        step_number: int,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> ExtractedItem | None: ...


class SearchResultsHeuristic(PageHeuristic):
    """
    After a search click, wait for the results listing and record a summary of it.

    Matches when the clicked selector mentions "search" or the workflow host
    contains one of ``host_hints``.
    """

    name = "search_results"

    def __init__(
        self,
        *,
        item_selector: str = "div[data-qa-locator='product-item']",
        title_selector: str = "[data-qa-locator='product-item-title']",
        host_hints: Sequence[str] = ("daraz",),
        max_titles: int = 10,
        wait_timeout_ms: int = 15_000,
        settle_ms: int = 1_500,
    ) -> None:
        self.item_selector = item_selector
        self.title_selector = title_selector
        self.host_hints = tuple(h.lower() for h in host_hints)
        self.max_titles = max_titles
        self.wait_timeout_ms = wait_timeout_ms
        self.settle_ms = settle_ms

    def matches(self, step: WorkflowStep, workflow_url: str) -> bool:
        if "search" in (step.selector or "").lower():
            return True
        host = (urlsplit(workflow_url).hostname or "").lower()
        return any(hint in host for hint in self.host_hints)

    async def after_click(
        self,
        session: BrowserSession,
        step: WorkflowStep,
        step_number: int,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> ExtractedItem | None:
        await session.wait_for_load_state("networkidle", self.wait_timeout_ms)
        ready = await session.wait_for_selector(self.item_selector, self.wait_timeout_ms)

        summary = None
        if ready:
            try:
                summary = await session.evaluate(
                    _COLLECT_RESULTS_JS,
                    {
                        "itemSelector": self.item_selector,
                        "titleSelector": self.title_selector,
                        "maxTitles": self.max_titles,
                    },
                )
            except Exception as exc:
                logger.debug("Search results collection failed: %s", exc)

        if self.settle_ms:
            await sleep(self.settle_ms / 1000)

        if not summary:
            return None
        return ExtractedItem(
            step=step_number,
            selector=step.selector or "",
            attribute="searchResults",
            value=summary,
            page_url=session.url,
        )


def default_heuristics() -> list[PageHeuristic]:
    return [SearchResultsHeuristic()]
