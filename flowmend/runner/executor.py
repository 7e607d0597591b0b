"""WorkflowExecutor: drives a browser session through a workflow's steps."""

from __future__ import annotations

import asyncio
import logging
import uuid
from pathlib import Path
from typing import Any, Awaitable, Callable, Sequence

from flowmend.core.config import Settings, get_settings
from flowmend.core.errors import RunTimeoutError, WorkflowValidationError, is_retryable
from flowmend.core.types import (
    ConsoleMessage,
    ExtractedItem,
    LogEntry,
    ProgressUpdate,
    RunStatus,
    ScreenshotRecord,
    WorkflowRun,
    utc_now,
)
from flowmend.runner.actions import StepContext, run_step
from flowmend.runner.guard import DomainGuard, merge_allowed_domains
from flowmend.runner.heuristics import PageHeuristic, default_heuristics
from flowmend.runner.progress import ProgressChannel
from flowmend.runner.registry import JobRegistry
from flowmend.runner.session import BrowserSession, PlaywrightSession
from flowmend.runner.workflow import ExecutionParams, Workflow

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Awaitable[BrowserSession]]

RETRY_BACKOFF_SECONDS = 0.4
BODY_PREVIEW_CHARS = 400

_LOG_LEVELS = {
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "console": logging.DEBUG,
}

# LogEntry meta keys forwarded to the module logger, as LogRecord attribute names
_META_LOG_FIELDS = {
    "step": "step",
    "action": "action",
    "attempt": "attempt",
    "error": "error",
    "willRetry": "will_retry",
    "selector": "selector",
    "heuristic": "heuristic",
}

_PAGE_SNAPSHOT_JS = """(previewChars) => {
    const h1 = document.querySelector('h1')?.textContent || '';
    const h2 = document.querySelector('h2')?.textContent || '';
    const bodyText = (document.body?.innerText || '').trim().slice(0, previewChars);
    return {
        title: document.title || '',
        url: window.location.href,
        headings: [h1, h2].map((x) => String(x || '').trim()).filter(Boolean),
        bodyPreview: bodyText,
    };
}"""


class WorkflowExecutor:
    """
    Runs a validated Workflow, one step at a time, against a fresh browser session.

    Run states
        pending -> running -> completed | failed

    Step states
        pending -> running -> succeeded, or back to running after a linear
        backoff while ``attempt <= step_retries``, or failed (which fails the run).

    The whole running phase races ``max_execution_ms``; the session is closed
    on every exit path.
    """

    def __init__(
        self,
        session_factory: SessionFactory | None = None,
        *,
        settings: Settings | None = None,
        registry: JobRegistry | None = None,
        heuristics: Sequence[PageHeuristic] | None = None,
        screenshots_dir: str | Path | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._settings = settings or get_settings()
        self._session_factory = session_factory or self._launch_playwright
        self._registry = registry if registry is not None else JobRegistry()
        self._heuristics = list(heuristics) if heuristics is not None else default_heuristics()
        self._screenshots_dir = Path(screenshots_dir or self._settings.screenshots_dir)
        self._sleep = sleep

    @property
    def registry(self) -> JobRegistry:
        return self._registry

    async def _launch_playwright(self) -> BrowserSession:
        return await PlaywrightSession.launch(
            headless=self._settings.headless,
            viewport=(self._settings.viewport_width, self._settings.viewport_height),
        )

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def resolve_params(self, overrides: ExecutionParams | dict | None = None) -> ExecutionParams:
        """Apply settings defaults and merge the request allow-list with the configured one."""
        if isinstance(overrides, ExecutionParams):
            params = overrides
        else:
            params = ExecutionParams.from_settings(self._settings, **(overrides or {}))
        merged = merge_allowed_domains(params.allowed_domains, self._settings.allowed_domain_list)
        return params.model_copy(update={"allowed_domains": merged})

    def submit(
        self,
        workflow: Workflow | dict,
        params: ExecutionParams | dict | None = None,
        *,
        run_id: str | None = None,
        progress: ProgressChannel | None = None,
    ) -> tuple[str, asyncio.Task]:
        """
        Validate, then start the run as a registered background task.

        Raises WorkflowValidationError before anything is scheduled, including
        when ``run_id`` is already registered.
        """
        workflow = Workflow.parse(workflow)
        resolved = self.resolve_params(params)
        run_id = run_id or uuid.uuid4().hex
        if self._registry.get(run_id) is not None:
            raise WorkflowValidationError(f"Run {run_id!r} is already registered")

        task = asyncio.ensure_future(self.execute(run_id, workflow, resolved, progress=progress))
        try:
            self._registry.register(run_id, task)
        except ValueError as exc:
            task.cancel()
            raise WorkflowValidationError(str(exc)) from exc
        logger.info(
            "Submitted run %s (%d steps, domains=%s)",
            run_id,
            len(workflow.steps),
            resolved.allowed_domains or "unrestricted",
            extra={"run_id": run_id},
        )
        return run_id, task

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(
        self,
        run_id: str,
        workflow: Workflow | dict,
        params: ExecutionParams | dict | None = None,
        *,
        progress: ProgressChannel | None = None,
    ) -> WorkflowRun:
        """
        Execute ``workflow`` and return its run record.

        ``params`` are used as given; ``submit()`` is the entry point that
        merges them with the configured allow-list.
        """
        workflow = Workflow.parse(workflow)
        params = ExecutionParams.parse(params)
        run = WorkflowRun(workflow_id=run_id, step_count=len(workflow.steps))
        guard = DomainGuard(params.allowed_domains)
        session: BrowserSession | None = None

        def emit(level: str, message: str, **meta: Any) -> None:
            run.logs.append(LogEntry(level=level, message=message, meta=meta))
            _log_entry(run_id, level, message, meta)
            if progress is not None:
                progress.publish(ProgressUpdate(run_id=run_id, status=run.status, logs=list(run.logs)))

        def on_console(kind: str, text: str) -> None:
            run.console_logs.append(ConsoleMessage(type=kind, text=text))
            emit("console", text, type=kind)

        async def drive() -> None:
            nonlocal session
            emit(
                "info",
                "Starting workflow execution",
                workflowId=run_id,
                maxExecutionMs=params.max_execution_ms,
            )
            session = await self._session_factory()
            session.on_console(on_console)
            session.on_page_error(lambda text: emit("error", f"Page error: {text}"))

            total = len(workflow.steps)
            for index, step in enumerate(workflow.steps):
                ctx = StepContext(
                    session=session,
                    step=step,
                    index=index,
                    workflow_url=workflow.url,
                    guard=guard,
                    run=run,
                    sleep=self._sleep,
                    emit=emit,
                    heuristics=self._heuristics,
                )
                await self._run_step_with_retries(ctx, total, params.step_retries, emit)

            if not run.extracted_data:
                await self._fallback_snapshot(session, run, total)

        run.status = RunStatus.RUNNING
        run.started_at = utc_now()
        try:
            await self._race(drive(), params)
        except asyncio.CancelledError:
            self._mark_failed(run, "Execution cancelled", emit)
            raise
        except Exception as exc:
            self._mark_failed(run, str(exc) or type(exc).__name__, emit)
        else:
            run.status = RunStatus.COMPLETED
            emit("info", "Workflow execution completed")
        finally:
            run.completed_at = utc_now()
            if session is not None:
                await self._close_session(session)
        return run

    @staticmethod
    async def _race(coro: Awaitable[None], params: ExecutionParams) -> None:
        """Run ``coro`` against the execution deadline; the loser is cancelled."""
        task = asyncio.ensure_future(coro)
        try:
            done, _ = await asyncio.wait({task}, timeout=params.timeout_seconds)
        except asyncio.CancelledError:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            raise
        if task not in done:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            raise RunTimeoutError(params.max_execution_ms)
        task.result()

    async def _run_step_with_retries(
        self,
        ctx: StepContext,
        total: int,
        step_retries: int,
        emit: Callable[..., None],
    ) -> None:
        action = ctx.step.action.value
        attempt = 0
        while True:
            attempt += 1
            emit(
                "info",
                f"Executing step {ctx.number}/{total}",
                step=ctx.number,
                action=action,
                attempt=attempt,
            )
            try:
                await run_step(ctx)
                await self._capture_screenshot(ctx)
            except Exception as exc:
                will_retry = is_retryable(exc) and attempt <= step_retries
                emit(
                    "warn",
                    f"Step {ctx.number} failed",
                    step=ctx.number,
                    action=action,
                    error=str(exc),
                    attempt=attempt,
                    willRetry=will_retry,
                )
                if not will_retry:
                    raise
                await self._sleep(RETRY_BACKOFF_SECONDS * attempt)
                continue
            emit("info", f"Step {ctx.number} completed", step=ctx.number, action=action)
            return

    async def _capture_screenshot(self, ctx: StepContext) -> None:
        file_name = f"{ctx.run.workflow_id}-step-{ctx.number}.png"
        self._screenshots_dir.mkdir(parents=True, exist_ok=True)
        path = self._screenshots_dir / file_name
        await ctx.session.screenshot(path)
        ctx.run.screenshots.append(
            ScreenshotRecord(
                step=ctx.number,
                action=ctx.step.action.value,
                file_name=file_name,
                path=str(path),
            )
        )

    @staticmethod
    async def _fallback_snapshot(session: BrowserSession, run: WorkflowRun, step_count: int) -> None:
        """Best-effort page summary so every completed run yields some data."""
        try:
            snapshot = await session.evaluate(_PAGE_SNAPSHOT_JS, BODY_PREVIEW_CHARS)
        except Exception as exc:
            logger.debug("Fallback page snapshot failed: %s", exc, extra={"run_id": run.workflow_id})
            return
        if snapshot:
            run.extracted_data.append(
                ExtractedItem(
                    step=step_count,
                    selector="document",
                    attribute="pageSnapshot",
                    value=snapshot,
                    page_url=session.url,
                )
            )

    @staticmethod
    def _mark_failed(run: WorkflowRun, message: str, emit: Callable[..., None]) -> None:
        run.status = RunStatus.FAILED
        run.error = message
        emit("error", f"Workflow execution failed: {message}")

    @staticmethod
    async def _close_session(session: BrowserSession) -> None:
        try:
            await session.close()
        except Exception:
            logger.debug("Ignoring error while closing session", exc_info=True)


def _log_entry(run_id: str, level: str, message: str, meta: dict[str, Any]) -> None:
    """Mirror a run log entry to the module logger, meta included."""
    extra: dict[str, Any] = {"run_id": run_id}
    for key, field in _META_LOG_FIELDS.items():
        if key in meta:
            extra[field] = meta[key]
    if "error" in meta:
        logger.log(_LOG_LEVELS.get(level, logging.INFO), "%s: %s", message, meta["error"], extra=extra)
    else:
        logger.log(_LOG_LEVELS.get(level, logging.INFO), message, extra=extra)
