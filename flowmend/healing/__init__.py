"""Selector healing and DOM diff engine."""

from flowmend.healing.diagnostics import HealingDiagnostics, coerce_selector_map
from flowmend.healing.dom_diff import collect_dom_stats, diff_dom
from flowmend.healing.dom_query import DomQueryable, SoupDocument, load_document
from flowmend.healing.healer import HealingCheckResult, SelfHealingCheck
from flowmend.healing.resolver import SelectorResolver
from flowmend.healing.selector_map import SelectorMapBuilder, derive_fallbacks
from flowmend.healing.snapshot_store import SnapshotStore, stamp_html, synthesize_after

__all__ = [
    "DomQueryable",
    "HealingCheckResult",
    "HealingDiagnostics",
    "SelectorMapBuilder",
    "SelectorResolver",
    "SelfHealingCheck",
    "SnapshotStore",
    "SoupDocument",
    "coerce_selector_map",
    "collect_dom_stats",
    "derive_fallbacks",
    "diff_dom",
    "load_document",
    "stamp_html",
    "synthesize_after",
]
