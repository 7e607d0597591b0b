"""HealingDiagnostics: selector-map health against the current DOM plus a before/after diff."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from flowmend.core.types import (
    HealingReport,
    HealingSummary,
    SelectorEntry,
    SelectorResolution,
)
from flowmend.healing.dom_diff import diff_dom
from flowmend.healing.dom_query import load_document
from flowmend.healing.resolver import SelectorResolver

logger = logging.getLogger(__name__)


def coerce_selector_map(raw: Mapping[str, Any] | None) -> dict[str, SelectorEntry]:
    """Accept either SelectorEntry values or the JSON shape ``{primary, fallbacks}``."""
    result: dict[str, SelectorEntry] = {}
    for exact, value in (raw or {}).items():
        if isinstance(value, SelectorEntry):
            result[exact] = value
        else:
            result[exact] = SelectorEntry.from_dict(exact, value)
    return result


class HealingDiagnostics:
    """
    Answers two independent questions:

    * is the flow still healthy right now? (selector resolution against ``dom_current``)
    * did the interaction change the page? (structural diff of ``dom_before`` vs ``dom_after``)
    """

    def __init__(self, resolver: SelectorResolver | None = None) -> None:
        self._resolver = resolver or SelectorResolver()

    def run_selector_healing(
        self,
        selector_map: Mapping[str, Any],
        dom_html: str,
    ) -> tuple[dict[str, SelectorResolution], HealingSummary]:
        entries = coerce_selector_map(selector_map)
        # Parse once; every entry is resolved against the same document
        document = load_document(dom_html)

        per_selector: dict[str, SelectorResolution] = {}
        summary = HealingSummary(total=len(entries))
        for exact, entry in entries.items():
            resolution = self._resolver.resolve(entry, document)
            per_selector[exact] = resolution
            if not resolution.matched:
                summary.unresolved += 1
            elif resolution.healed:
                summary.healed += 1
            else:
                summary.primary_matched += 1
        return per_selector, summary

    def diagnose(
        self,
        selector_map: Mapping[str, Any],
        dom_before: str,
        dom_after: str,
        dom_current: str,
    ) -> HealingReport:
        per_selector, summary = self.run_selector_healing(selector_map, dom_current)
        dom_diff = diff_dom(dom_before, dom_after)
        summary.dom_diff_available = dom_diff is not None

        logger.info(
            "Self-healing - primary=%d, fallback=%d, unresolved=%d, total=%d",
            summary.primary_matched,
            summary.healed,
            summary.unresolved,
            summary.total,
        )
        return HealingReport(
            summary=summary,
            selector_resolution=per_selector,
            dom_diff=dom_diff,
        )
