"""Structural diff of two HTML snapshots: tag counts, ids and class tokens."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field

from flowmend.core.types import DomDiff, SetDiff, TagDelta
from flowmend.healing.dom_query import SoupDocument, load_document


@dataclass
class DomStats:
    tags: Counter[str] = field(default_factory=Counter)
    ids: set[str] = field(default_factory=set)
    classes: set[str] = field(default_factory=set)


def collect_dom_stats(document: SoupDocument) -> DomStats:
    """Walk every element under ``<body>`` (or the whole document when there is none)."""
    stats = DomStats()
    for el in document.scope.find_all(True):
        tag = (el.name or "").lower()
        if tag:
            stats.tags[tag] += 1

        el_id = str(el.get("id") or "").strip()
        if el_id:
            stats.ids.add(el_id)

        classes = el.get("class") or []
        if isinstance(classes, str):
            classes = classes.split()
        stats.classes.update(c for c in classes if c)
    return stats


def diff_dom(before_html: str, after_html: str) -> DomDiff | None:
    """
    Compare two snapshots structurally.

    Returns None when either side cannot be parsed, so callers can report
    "no diff available" instead of failing.
    """
    before_doc = load_document(before_html)
    after_doc = load_document(after_html)
    if before_doc is None or after_doc is None:
        return None
    return diff_stats(collect_dom_stats(before_doc), collect_dom_stats(after_doc))


def diff_stats(before: DomStats, after: DomStats) -> DomDiff:
    return DomDiff(
        ids=_diff_sets(before.ids, after.ids),
        classes=_diff_sets(before.classes, after.classes),
        tags=_diff_tag_counts(before.tags, after.tags),
    )


def _diff_sets(before: set[str], after: set[str]) -> SetDiff:
    return SetDiff(added=sorted(after - before), removed=sorted(before - after))


def _diff_tag_counts(before: Counter[str], after: Counter[str]) -> list[TagDelta]:
    changed: list[TagDelta] = []
    for tag in sorted(set(before) | set(after)):
        b, a = before.get(tag, 0), after.get(tag, 0)
        if b != a:
            changed.append(TagDelta(tag=tag, before=b, after=a))
    return changed
