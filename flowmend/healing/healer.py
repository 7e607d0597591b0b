"""Self-healing check: stamps a run's snapshots and grades its selector map."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from flowmend.core.types import HealingReport, SnapshotStage
from flowmend.healing.diagnostics import HealingDiagnostics, coerce_selector_map
from flowmend.healing.snapshot_store import SnapshotStore, synthesize_after, synthesize_current

logger = logging.getLogger(__name__)


@dataclass
class HealingCheckResult:
    status: str  # "passed" | "failed"
    strict: bool
    report: HealingReport
    snapshots: dict[str, str]
    log_lines: list[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.status == "passed"

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "strictSelectorMatch": self.strict,
            "healing": self.report.to_dict(),
            "domSnapshots": dict(self.snapshots),
            "logs": "\n".join(self.log_lines),
        }


def _has_html(value: object) -> bool:
    return isinstance(value, str) and bool(value.strip())


class SelfHealingCheck:
    """
    Runs HealingDiagnostics over a flow's selector map.

    Strict mode
        Enabled when the caller supplies ``dom_current``. The check fails if any
        selector is unresolved.

    Diagnostic mode
        ``dom_current`` is synthesized from the after snapshot, annotated with
        how the map resolves there. Unresolved selectors are reported but never
        fail the check.
    """

    def __init__(self, diagnostics: HealingDiagnostics | None = None) -> None:
        self._diagnostics = diagnostics or HealingDiagnostics()

    def run(
        self,
        selector_map: Mapping[str, Any],
        dom_before: str,
        dom_after: str | None = None,
        dom_current: str | None = None,
        *,
        instruction: str = "",
        run_id: str | None = None,
        name: str = "flow",
    ) -> HealingCheckResult:
        entries = coerce_selector_map(selector_map)
        store = SnapshotStore(run_id=run_id)

        before = store.put(SnapshotStage.BEFORE, dom_before)
        after_source = dom_after if _has_html(dom_after) else synthesize_after(
            before.html, entries, instruction
        )
        after = store.put(SnapshotStage.AFTER, after_source)

        strict = _has_html(dom_current)
        if strict:
            current_source = dom_current
        else:
            _, inferred = self._diagnostics.run_selector_healing(entries, after.html)
            current_source = synthesize_current(after.html, inferred, instruction)
        current = store.put(SnapshotStage.CURRENT, current_source)

        report = self._diagnostics.diagnose(
            entries,
            dom_before=before.html,
            dom_after=after.html,
            dom_current=current.html,
        )
        summary = report.summary
        passed = (summary.unresolved == 0 or summary.total == 0) if strict else True

        mode = (
            "strict (explicit DOM current provided)"
            if strict
            else "diagnostic (inferred/synthetic DOM current)"
        )
        log_lines = [
            f"Self-healing run for {name}",
            f"Mapped selectors: {summary.total}",
            f"Mode: {mode}",
            f"Self-healing - primary={summary.primary_matched}, "
            f"fallback={summary.healed}, unresolved={summary.unresolved}, "
            f"total={summary.total}",
        ]
        if not passed:
            logger.warning(
                "Self-healing check failed for %s: %d unresolved selector(s)",
                name,
                summary.unresolved,
                extra={"run_id": store.run_id},
            )

        return HealingCheckResult(
            status="passed" if passed else "failed",
            strict=strict,
            report=report,
            snapshots=store.as_dict(),
            log_lines=log_lines,
        )
