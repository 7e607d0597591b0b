"""Shared types and dataclasses for flowmend."""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class SnapshotStage(str, Enum):
    BEFORE = "before"
    AFTER = "after"
    CURRENT = "current"


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


def utc_now() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Selector healing
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SelectorEntry:
    """A recorded UI target: the selector it was recorded with plus derived fallbacks."""

    exact_selector: str
    primary: str
    fallbacks: tuple[str, ...] = ()

    @property
    def candidates(self) -> list[str]:
        return [self.primary, *self.fallbacks]

    @classmethod
    def from_dict(cls, exact_selector: str, raw: dict[str, Any] | None) -> SelectorEntry:
        raw = raw or {}
        primary = raw.get("primary")
        if not isinstance(primary, str) or not primary:
            primary = exact_selector
        listed = raw.get("fallbacks")
        if not isinstance(listed, (list, tuple)):
            listed = []
        seen: set[str] = {primary}
        fallbacks: list[str] = []
        for candidate in listed:
            if isinstance(candidate, str) and candidate and candidate not in seen:
                seen.add(candidate)
                fallbacks.append(candidate)
        return cls(
            exact_selector=raw.get("exactSelector") or exact_selector,
            primary=primary,
            fallbacks=tuple(fallbacks),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "exactSelector": self.exact_selector,
            "primary": self.primary,
            "fallbacks": list(self.fallbacks),
        }


SelectorMap = dict[str, SelectorEntry]


@dataclass
class SelectorAttempt:
    selector: str
    matched: bool


@dataclass
class SelectorResolution:
    """Outcome of resolving one SelectorEntry against one snapshot."""

    used_selector: str | None
    matched: bool
    healed: bool
    attempts: list[SelectorAttempt] = field(default_factory=list)
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "usedSelector": self.used_selector,
            "matched": self.matched,
            "healed": self.healed,
            "attempts": [
                {"selector": a.selector, "matched": a.matched} for a in self.attempts
            ],
        }
        if self.reason is not None:
            data["reason"] = self.reason
        return data


@dataclass
class HealingSummary:
    total: int = 0
    primary_matched: int = 0
    healed: int = 0
    unresolved: int = 0
    dom_diff_available: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalSelectors": self.total,
            "primaryMatched": self.primary_matched,
            "healedWithFallback": self.healed,
            "unresolved": self.unresolved,
            "domDiffAvailable": self.dom_diff_available,
        }


@dataclass
class SetDiff:
    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.added and not self.removed


@dataclass
class TagDelta:
    tag: str
    before: int
    after: int

    @property
    def delta(self) -> int:
        return self.after - self.before


@dataclass
class DomDiff:
    """Structural difference between two HTML snapshots."""

    ids: SetDiff = field(default_factory=SetDiff)
    classes: SetDiff = field(default_factory=SetDiff)
    tags: list[TagDelta] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self.ids.is_empty and self.classes.is_empty and not self.tags

    def to_dict(self) -> dict[str, Any]:
        return {
            "ids": {"added": list(self.ids.added), "removed": list(self.ids.removed)},
            "classes": {
                "added": list(self.classes.added),
                "removed": list(self.classes.removed),
            },
            "tags": [
                {"tag": t.tag, "before": t.before, "after": t.after, "delta": t.delta}
                for t in self.tags
            ],
        }


@dataclass
class HealingReport:
    summary: HealingSummary
    selector_resolution: dict[str, SelectorResolution]
    dom_diff: DomDiff | None

    def resolved_selector(self, exact_selector: str) -> str | None:
        """Selector to use for a recorded target, or None when it did not resolve."""
        resolution = self.selector_resolution.get(exact_selector)
        return resolution.used_selector if resolution is not None else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": self.summary.to_dict(),
            "selectorResolution": {
                key: res.to_dict() for key, res in self.selector_resolution.items()
            },
            "domDiff": self.dom_diff.to_dict() if self.dom_diff is not None else None,
        }


@dataclass
class DomSnapshot:
    """HTML captured at one lifecycle stage of a run."""

    html: str
    stage: SnapshotStage
    run_id: str


# ---------------------------------------------------------------------------
# Workflow runs
# ---------------------------------------------------------------------------


@dataclass
class LogEntry:
    level: str  # "info", "warn", "error", "console"
    message: str
    meta: dict[str, Any] = field(default_factory=dict)
    at: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {"at": self.at, "level": self.level, "message": self.message, **self.meta}


@dataclass
class ScreenshotRecord:
    step: int  # 1-based
    action: str
    file_name: str
    path: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "step": self.step,
            "action": self.action,
            "fileName": self.file_name,
            "path": self.path,
        }


@dataclass
class ExtractedItem:
    step: int  # 1-based
    selector: str
    attribute: str
    value: Any
    page_url: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "step": self.step,
            "selector": self.selector,
            "attribute": self.attribute,
            "value": self.value,
            "pageUrl": self.page_url,
        }


@dataclass
class ConsoleMessage:
    type: str
    text: str
    at: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {"at": self.at, "type": self.type, "text": self.text}


@dataclass
class ProgressUpdate:
    run_id: str
    status: RunStatus
    logs: list[LogEntry]

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status.value, "logs": [e.to_dict() for e in self.logs]}


@dataclass
class WorkflowRun:
    """Record of one workflow execution. Lists are append-only."""

    workflow_id: str
    step_count: int
    status: RunStatus = RunStatus.PENDING
    started_at: str = ""
    completed_at: str = ""
    logs: list[LogEntry] = field(default_factory=list)
    screenshots: list[ScreenshotRecord] = field(default_factory=list)
    console_logs: list[ConsoleMessage] = field(default_factory=list)
    extracted_data: list[ExtractedItem] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "workflowId": self.workflow_id,
            "status": self.status.value,
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
            "logs": [e.to_dict() for e in self.logs],
            "screenshots": [s.to_dict() for s in self.screenshots],
            "consoleLogs": [c.to_dict() for c in self.console_logs],
            "extractedData": [x.to_dict() for x in self.extracted_data],
        }
        if self.error is not None:
            data["error"] = self.error
        return data
