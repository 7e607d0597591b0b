"""Selector map generation from recorded selectors."""

from __future__ import annotations

import re
from typing import Iterable

from flowmend.core.types import SelectorEntry

_ID_PATTERN = re.compile(r"#([A-Za-z0-9\-_]+)")
_NAME_PATTERN = re.compile(r'\[name="([^"]+)"\]')


def derive_fallbacks(selector: str) -> list[str]:
    """
    Derive simpler candidates from a recorded selector.

    ``form > input#email.wide`` yields ``#email``; ``input[name="q"]`` yields
    ``[name="q"]``. Candidates equal to the selector itself are dropped.
    """
    candidates: list[str] = []
    id_match = _ID_PATTERN.search(selector)
    if id_match:
        candidates.append(f"#{id_match.group(1)}")
    name_match = _NAME_PATTERN.search(selector)
    if name_match:
        candidates.append(f'[name="{name_match.group(1)}"]')

    result: list[str] = []
    for candidate in candidates:
        if candidate != selector and candidate not in result:
            result.append(candidate)
    return result


class SelectorMapBuilder:
    """Builds the selector map for a recorded flow: one entry per distinct selector."""

    def build(self, selectors: Iterable[str | None]) -> dict[str, SelectorEntry]:
        selector_map: dict[str, SelectorEntry] = {}
        for selector in selectors:
            if not selector or selector in selector_map:
                continue
            # The recorded selector stays primary so reports trace back to the recording
            selector_map[selector] = SelectorEntry(
                exact_selector=selector,
                primary=selector,
                fallbacks=tuple(derive_fallbacks(selector)),
            )
        return selector_map

    def build_from_events(self, events: Iterable[dict]) -> dict[str, SelectorEntry]:
        """Convenience for recorder payloads: ``[{"type": "click", "selector": "..."}, ...]``."""
        return self.build(event.get("selector") for event in events)
