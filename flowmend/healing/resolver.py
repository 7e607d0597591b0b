"""Selector resolution: primary first, then fallbacks in declared order."""

from __future__ import annotations

import logging

from soupsieve import SelectorSyntaxError

from flowmend.core.types import SelectorAttempt, SelectorEntry, SelectorResolution
from flowmend.healing.dom_query import DomQueryable, load_document, normalize_selector

logger = logging.getLogger(__name__)

SNAPSHOT_UNAVAILABLE = "snapshot unavailable"


class SelectorResolver:
    """
    Resolves a SelectorEntry against a parsed snapshot.

    Pure: the same entry and document always produce the same resolution.
    """

    def resolve(self, entry: SelectorEntry, document: DomQueryable | None) -> SelectorResolution:
        if document is None:
            return SelectorResolution(
                used_selector=None,
                matched=False,
                healed=False,
                attempts=[],
                reason=SNAPSHOT_UNAVAILABLE,
            )

        primary = normalize_selector(entry.primary)
        attempts: list[SelectorAttempt] = []
        for candidate in self._candidates(entry):
            matched = self._exists(document, candidate)
            attempts.append(SelectorAttempt(selector=candidate, matched=matched))
            if matched:
                return SelectorResolution(
                    used_selector=candidate,
                    matched=True,
                    healed=candidate != primary,
                    attempts=attempts,
                )

        return SelectorResolution(
            used_selector=None,
            matched=False,
            healed=False,
            attempts=attempts,
        )

    def resolve_html(self, entry: SelectorEntry, html: str) -> SelectorResolution:
        return self.resolve(entry, load_document(html))

    @staticmethod
    def _candidates(entry: SelectorEntry) -> list[str]:
        result: list[str] = []
        for raw in entry.candidates:
            normalized = normalize_selector(raw)
            if normalized is not None and normalized not in result:
                result.append(normalized)
        return result

    @staticmethod
    def _exists(document: DomQueryable, selector: str) -> bool:
        try:
            return len(document.query(selector, limit=1)) > 0
        except (SelectorSyntaxError, ValueError, NotImplementedError) as exc:
            logger.debug("Skipping unqueryable selector %r: %s", selector, exc)
            return False
