"""Workflow runner: validation, domain guarding and step execution."""

from flowmend.runner.executor import WorkflowExecutor
from flowmend.runner.guard import DomainGuard, is_allowed, merge_allowed_domains, normalize_domain
from flowmend.runner.heuristics import PageHeuristic, SearchResultsHeuristic, default_heuristics
from flowmend.runner.progress import ProgressChannel, Subscription
from flowmend.runner.registry import JobRegistry
from flowmend.runner.session import BrowserSession, PlaywrightSession
from flowmend.runner.workflow import ActionType, ExecutionParams, Workflow, WorkflowStep

__all__ = [
    "ActionType",
    "BrowserSession",
    "DomainGuard",
    "ExecutionParams",
    "JobRegistry",
    "PageHeuristic",
    "PlaywrightSession",
    "ProgressChannel",
    "SearchResultsHeuristic",
    "Subscription",
    "Workflow",
    "WorkflowExecutor",
    "WorkflowStep",
    "default_heuristics",
    "is_allowed",
    "merge_allowed_domains",
    "normalize_domain",
]
