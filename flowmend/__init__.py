from flowmend.core.errors import (
    DomainBlockedError,
    ElementNotFoundError,
    FlowmendError,
    RunTimeoutError,
    WorkflowValidationError,
)
from flowmend.core.types import (
    DomDiff,
    HealingReport,
    HealingSummary,
    RunStatus,
    SelectorEntry,
    SelectorResolution,
    SnapshotStage,
    WorkflowRun,
)
from flowmend.healing import HealingDiagnostics, SelectorResolver, SelfHealingCheck, SnapshotStore
from flowmend.runner import (
    DomainGuard,
    ExecutionParams,
    JobRegistry,
    ProgressChannel,
    Workflow,
    WorkflowExecutor,
)

__all__ = [
    "DomDiff",
    "HealingReport",
    "HealingSummary",
    "RunStatus",
    "SelectorEntry",
    "SelectorResolution",
    "SnapshotStage",
    "WorkflowRun",
    # Healing
    "HealingDiagnostics",
    "SelectorResolver",
    "SelfHealingCheck",
    "SnapshotStore",
    # Runner
    "DomainGuard",
    "ExecutionParams",
    "JobRegistry",
    "ProgressChannel",
    "Workflow",
    "WorkflowExecutor",
    # Errors
    "DomainBlockedError",
    "ElementNotFoundError",
    "FlowmendError",
    "RunTimeoutError",
    "WorkflowValidationError",
]
