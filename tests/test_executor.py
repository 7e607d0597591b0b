"""Unit tests for WorkflowExecutor, driven by an in-memory BrowserSession."""

from __future__ import annotations

import asyncio
import logging
import tempfile
from pathlib import Path
from typing import Any

import pytest

from flowmend.core.config import Settings
from flowmend.core.errors import ElementNotFoundError, WorkflowValidationError
from flowmend.core.types import ExtractedItem, RunStatus
from flowmend.runner.executor import WorkflowExecutor
from flowmend.runner.heuristics import PageHeuristic
from flowmend.runner.progress import ProgressChannel
from flowmend.runner.session import BrowserSession
from flowmend.runner.workflow import ExecutionParams


class FakeSession(BrowserSession):
    """Records calls; failures are queued per action name."""

    def __init__(self) -> None:
        self._url = "about:blank"
        self.redirects: dict[str, str] = {}
        self.fields: dict[str, str] = {}
        self.texts: dict[str, str] = {}
        self.failures: dict[str, list[Exception]] = {}
        self.calls: list[tuple[str, Any]] = []
        self.console_on_goto: list[tuple[str, str]] = []
        self.snapshot: Any = {"title": "Example Domain", "url": "", "headings": [], "bodyPreview": ""}
        self.snapshot_error: Exception | None = None
        self.mangle_typing = False
        self.ignore_set_value = False
        self.hang_on_click = False
        self.click_started = asyncio.Event()
        self.closed = False
        self._console = None

    def _maybe_fail(self, action: str) -> None:
        queue = self.failures.get(action)
        if queue:
            raise queue.pop(0)

    @property
    def url(self) -> str:
        return self._url

    async def goto(self, url: str, timeout_ms: int) -> None:
        self.calls.append(("goto", url))
        self._maybe_fail("goto")
        self._url = self.redirects.get(url, url)
        if self._console is not None:
            for kind, text in self.console_on_goto:
                self._console(kind, text)

    async def click(self, selector: str, timeout_ms: int) -> None:
        self.calls.append(("click", selector))
        self.click_started.set()
        if self.hang_on_click:
            await asyncio.Event().wait()
        self._maybe_fail("click")

    async def type(self, selector: str, text: str, timeout_ms: int) -> None:
        self.calls.append(("type", selector))
        self._maybe_fail("type")
        self.fields[selector] = text[:-1] if self.mangle_typing else text

    async def input_value(self, selector: str, timeout_ms: int) -> str:
        return self.fields.get(selector, "")

    async def set_value(self, selector: str, text: str, timeout_ms: int) -> None:
        self.calls.append(("set_value", selector))
        if not self.ignore_set_value:
            self.fields[selector] = text

    async def extract(self, selector: str, attribute: str | None, timeout_ms: int) -> Any:
        self.calls.append(("extract", selector))
        self._maybe_fail("extract")
        return self.texts.get(selector, "")

    async def screenshot(self, path: Path) -> None:
        self.calls.append(("screenshot", Path(path).name))

    async def content(self) -> str:
        return "<html><body></body></html>"

    async def evaluate(self, expression: str, arg: Any = None) -> Any:
        if self.snapshot_error is not None:
            raise self.snapshot_error
        return self.snapshot

    async def wait_for_selector(self, selector: str, timeout_ms: int) -> bool:
        return True

    def on_console(self, handler) -> None:
        self._console = handler

    async def close(self) -> None:
        self.closed = True


def make_workflow(*steps: dict, url: str = "https://example.com") -> dict:
    return {"url": url, "steps": list(steps)}


GOTO = {"action": "goto", "value": "https://example.com"}


def messages(run) -> list[str]:
    return [entry.message for entry in run.logs]


class ListHandler(logging.Handler):
    def __init__(self, records: list[logging.LogRecord]) -> None:
        super().__init__(logging.DEBUG)
        self.records = records

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


class TestWorkflowExecutor:
    def setup_method(self):
        self.tmpdir = tempfile.mkdtemp()
        self.settings = Settings(_env_file=None, screenshots_dir=self.tmpdir)
        self.session = FakeSession()
        self.sleeps: list[float] = []

    async def _sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)

    def make_executor(self, **kwargs) -> WorkflowExecutor:
        session = self.session

        async def factory() -> BrowserSession:
            return session

        kwargs.setdefault("settings", self.settings)
        kwargs.setdefault("heuristics", [])
        return WorkflowExecutor(session_factory=factory, sleep=self._sleep, **kwargs)

    # ------------------------------------------------------------------ happy path

    async def test_three_step_run_completes_with_screenshots(self):
        self.session.texts["h1"] = "Example Domain"
        workflow = make_workflow(
            GOTO,
            {"action": "type", "selector": "#q", "value": "hello"},
            {"action": "extract", "selector": "h1"},
        )
        run = await self.make_executor().execute("wf1", workflow)

        assert run.status is RunStatus.COMPLETED
        assert run.error is None
        assert [s.file_name for s in run.screenshots] == [
            "wf1-step-1.png",
            "wf1-step-2.png",
            "wf1-step-3.png",
        ]
        assert [s.step for s in run.screenshots] == [1, 2, 3]
        assert run.extracted_data[0].value == "Example Domain"
        assert run.extracted_data[0].attribute == "textContent"
        assert run.extracted_data[0].page_url == "https://example.com"
        assert run.started_at and run.completed_at
        assert self.session.closed

    async def test_search_scenario_runs_steps_in_order(self):
        workflow = make_workflow(
            {"action": "goto", "value": "https://ex.com"},
            {"action": "type", "selector": "#q", "value": "shoes"},
            {"action": "click", "selector": "#search-btn"},
            url="https://ex.com",
        )
        run = await self.make_executor().execute("wf2", workflow, {"allowedDomains": ["ex.com"]})

        assert run.status is RunStatus.COMPLETED
        assert len(run.screenshots) == 3
        actions = [name for name, _ in self.session.calls if name != "screenshot"]
        assert actions == ["goto", "type", "click"]
        assert self.session.fields["#q"] == "shoes"

    async def test_log_sequence(self):
        run = await self.make_executor().execute("wf1", make_workflow(GOTO))
        log = messages(run)
        assert log[0] == "Starting workflow execution"
        assert "Executing step 1/1" in log
        assert "Step 1 completed" in log
        assert log[-1] == "Workflow execution completed"
        assert run.logs[0].meta["maxExecutionMs"] == 120_000

    async def test_serialized_run_record(self):
        run = await self.make_executor().execute("wf1", make_workflow(GOTO))
        data = run.to_dict()
        assert data["status"] == "completed"
        assert data["screenshots"][0]["fileName"] == "wf1-step-1.png"
        assert "error" not in data

    # ------------------------------------------------------------------ retries

    async def test_transient_failure_is_retried_once(self):
        self.session.failures["click"] = [ElementNotFoundError("missing #go", selector="#go")]
        workflow = make_workflow(GOTO, {"action": "click", "selector": "#go"})
        run = await self.make_executor().execute("wf1", workflow)

        assert run.status is RunStatus.COMPLETED
        retries = [e for e in run.logs if e.meta.get("willRetry") is True]
        assert len(retries) == 1
        assert retries[0].level == "warn"
        assert self.sleeps == [pytest.approx(0.4)]
        assert len(run.screenshots) == 2

    async def test_retries_exhausted_fails_run(self):
        self.session.failures["click"] = [
            ElementNotFoundError("missing #go"),
            ElementNotFoundError("still missing #go"),
        ]
        workflow = make_workflow(GOTO, {"action": "click", "selector": "#go"})
        run = await self.make_executor().execute("wf1", workflow, {"stepRetries": 1})

        assert run.status is RunStatus.FAILED
        assert run.error == "still missing #go"
        failures = [e for e in run.logs if e.message == "Step 2 failed"]
        assert [e.meta["willRetry"] for e in failures] == [True, False]
        assert run.logs[-1].message == "Workflow execution failed: still missing #go"
        assert self.session.closed

    async def test_zero_retries_fails_on_first_error(self):
        self.session.failures["click"] = [RuntimeError("driver crashed")]
        workflow = make_workflow(GOTO, {"action": "click", "selector": "#go"})
        run = await self.make_executor().execute("wf1", workflow, {"stepRetries": 0})
        assert run.status is RunStatus.FAILED
        assert self.sleeps == []

    async def test_backoff_grows_linearly(self):
        self.session.failures["click"] = [RuntimeError("flaky"), RuntimeError("flaky")]
        workflow = make_workflow(GOTO, {"action": "click", "selector": "#go"})
        run = await self.make_executor().execute("wf1", workflow, {"stepRetries": 2})
        assert run.status is RunStatus.COMPLETED
        assert self.sleeps == [pytest.approx(0.4), pytest.approx(0.8)]

    async def test_step_failure_log_record_carries_meta(self):
        records: list[logging.LogRecord] = []
        handler = ListHandler(records)
        executor_logger = logging.getLogger("flowmend.runner.executor")
        previous_level = executor_logger.level
        executor_logger.addHandler(handler)
        executor_logger.setLevel(logging.DEBUG)
        try:
            self.session.failures["click"] = [ElementNotFoundError("missing #go", selector="#go")]
            workflow = make_workflow(GOTO, {"action": "click", "selector": "#go"})
            await self.make_executor().execute("wf1", workflow)
        finally:
            executor_logger.removeHandler(handler)
            executor_logger.setLevel(previous_level)

        failed = [r for r in records if r.msg == "%s: %s" and r.args[0] == "Step 2 failed"]
        assert len(failed) == 1
        record = failed[0]
        assert record.levelno == logging.WARNING
        assert record.getMessage() == "Step 2 failed: missing #go"
        assert (record.run_id, record.step, record.action) == ("wf1", 2, "click")
        assert (record.error, record.attempt, record.will_retry) == ("missing #go", 1, True)

    # ------------------------------------------------------------------ domain guard

    async def test_blocked_goto_is_not_retried(self):
        workflow = make_workflow({"action": "goto", "value": "https://evil.com/x"})
        run = await self.make_executor().execute(
            "wf1", workflow, {"allowedDomains": ["example.com"], "stepRetries": 3}
        )
        assert run.status is RunStatus.FAILED
        assert "URL domain is not allowed" in run.error
        assert messages(run).count("Executing step 1/1") == 1
        assert ("goto", "https://evil.com/x") not in self.session.calls

    async def test_redirect_to_blocked_domain_fails(self):
        self.session.redirects["https://example.com"] = "https://evil.com/landing"
        run = await self.make_executor().execute(
            "wf1", make_workflow(GOTO), {"allowedDomains": ["example.com"]}
        )
        assert run.status is RunStatus.FAILED
        assert "Redirected to blocked domain" in run.error

    async def test_subdomain_is_allowed(self):
        workflow = make_workflow({"action": "goto", "value": "https://shop.example.com/a"})
        run = await self.make_executor().execute(
            "wf1", workflow, {"allowedDomains": ["example.com"]}
        )
        assert run.status is RunStatus.COMPLETED

    # ------------------------------------------------------------------ timeout

    async def test_run_timeout_fails_and_closes_session(self):
        self.session.hang_on_click = True
        params = ExecutionParams.model_construct(
            max_execution_ms=50, step_retries=0, allowed_domains=[]
        )
        workflow = make_workflow({"action": "click", "selector": "#never"})
        run = await self.make_executor().execute("wf1", workflow, params)

        assert run.status is RunStatus.FAILED
        assert run.error == "Execution timed out after 50ms"
        assert "timed out" in run.logs[-1].message
        assert self.session.closed
        assert run.screenshots == []

    # ------------------------------------------------------------------ type verification

    async def test_type_mismatch_is_corrected(self):
        self.session.mangle_typing = True
        workflow = make_workflow(GOTO, {"action": "type", "selector": "#q", "value": "hello"})
        run = await self.make_executor().execute("wf1", workflow)

        assert run.status is RunStatus.COMPLETED
        assert self.session.fields["#q"] == "hello"
        assert ("set_value", "#q") in self.session.calls
        assert any("mismatch" in e.message and e.level == "warn" for e in run.logs)

    async def test_type_mismatch_after_correction_fails_step(self):
        self.session.mangle_typing = True
        self.session.ignore_set_value = True
        workflow = make_workflow(GOTO, {"action": "type", "selector": "#q", "value": "hello"})
        run = await self.make_executor().execute("wf1", workflow, {"stepRetries": 0})
        assert run.status is RunStatus.FAILED
        assert "#q" in run.error

    async def test_type_accepts_empty_value(self):
        self.session.fields["#q"] = "stale"
        workflow = make_workflow(GOTO, {"action": "type", "selector": "#q", "value": ""})
        run = await self.make_executor().execute("wf1", workflow)
        assert run.status is RunStatus.COMPLETED
        assert self.session.fields["#q"] == ""

    # ------------------------------------------------------------------ wait

    async def test_wait_is_clamped_and_unguarded(self):
        workflow = make_workflow({"action": "wait", "value": 50})
        run = await self.make_executor().execute(
            "wf1", workflow, {"allowedDomains": ["example.com"]}
        )
        assert run.status is RunStatus.COMPLETED
        assert self.sleeps == [pytest.approx(0.2)]

    # ------------------------------------------------------------------ extraction

    async def test_fallback_snapshot_when_nothing_extracted(self):
        run = await self.make_executor().execute("wf1", make_workflow(GOTO))
        assert len(run.extracted_data) == 1
        item = run.extracted_data[0]
        assert item.attribute == "pageSnapshot"
        assert item.selector == "document"
        assert item.step == 1
        assert item.value["title"] == "Example Domain"

    async def test_fallback_snapshot_failure_is_ignored(self):
        self.session.snapshot_error = RuntimeError("page gone")
        run = await self.make_executor().execute("wf1", make_workflow(GOTO))
        assert run.status is RunStatus.COMPLETED
        assert run.extracted_data == []

    async def test_no_fallback_when_data_extracted(self):
        self.session.texts[".price"] = "$10"
        workflow = make_workflow(
            GOTO, {"action": "extract", "selector": ".price", "attribute": "data-sku"}
        )
        run = await self.make_executor().execute("wf1", workflow)
        assert [x.attribute for x in run.extracted_data] == ["data-sku"]

    async def test_click_heuristic_appends_item(self):
        sleeps_seen: list[Any] = []

        class StubHeuristic(PageHeuristic):
            name = "stub"

            def matches(self, step, workflow_url):
                return True

            async def after_click(self, session, step, step_number, sleep=None):
                sleeps_seen.append(sleep)
                return ExtractedItem(step=step_number, selector=step.selector, attribute="stub", value=1)

        workflow = make_workflow(GOTO, {"action": "click", "selector": "#search"})
        run = await self.make_executor(heuristics=[StubHeuristic()]).execute("wf1", workflow)
        assert [x.attribute for x in run.extracted_data] == ["stub"]
        assert any(e.meta.get("heuristic") == "stub" for e in run.logs)
        assert sleeps_seen == [self._sleep]

    # ------------------------------------------------------------------ console + progress

    async def test_console_messages_are_captured(self):
        self.session.console_on_goto = [("warning", "deprecated API")]
        run = await self.make_executor().execute("wf1", make_workflow(GOTO))
        assert [(c.type, c.text) for c in run.console_logs] == [("warning", "deprecated API")]
        assert any(e.level == "console" and e.message == "deprecated API" for e in run.logs)

    async def test_progress_updates_mirror_logs(self):
        channel = ProgressChannel()
        sub = channel.subscribe(maxsize=1000)
        run = await self.make_executor().execute("wf1", make_workflow(GOTO), progress=channel)
        channel.close()

        updates = [u async for u in sub]
        assert len(updates) == len(run.logs)
        assert updates[-1].status is RunStatus.COMPLETED
        assert updates[-1].to_dict()["logs"][-1]["message"] == "Workflow execution completed"

    async def test_failing_listener_does_not_affect_run(self):
        channel = ProgressChannel()
        calls = []

        async def broken(update):
            calls.append(update)
            raise RuntimeError("socket closed")

        channel.add_listener(broken)
        run = await self.make_executor().execute("wf1", make_workflow(GOTO), progress=channel)
        await channel.drain()
        assert run.status is RunStatus.COMPLETED
        assert len(calls) == len(run.logs)

    # ------------------------------------------------------------------ validation

    async def test_missing_url_is_rejected(self):
        with pytest.raises(WorkflowValidationError):
            await self.make_executor().execute("wf1", {"steps": [GOTO]})
        assert not self.session.calls

    async def test_zero_steps_is_rejected(self):
        with pytest.raises(WorkflowValidationError):
            await self.make_executor().execute("wf1", make_workflow())


class TestSubmit:
    def setup_method(self):
        self.tmpdir = tempfile.mkdtemp()
        self.session = FakeSession()
        self.starts: list[BrowserSession] = []

    def make_executor(self, **settings) -> WorkflowExecutor:
        session = self.session

        async def factory() -> BrowserSession:
            self.starts.append(session)
            return session

        async def no_sleep(_seconds):
            return None

        return WorkflowExecutor(
            session_factory=factory,
            settings=Settings(_env_file=None, screenshots_dir=self.tmpdir, **settings),
            heuristics=[],
            sleep=no_sleep,
        )

    async def test_submit_registers_and_cleans_up(self):
        executor = self.make_executor()
        run_id, task = executor.submit(make_workflow(GOTO))
        assert executor.registry.is_active(run_id)

        run = await task
        await asyncio.sleep(0)
        assert run.status is RunStatus.COMPLETED
        assert run.workflow_id == run_id
        assert len(executor.registry) == 0

    async def test_duplicate_run_id_starts_no_session(self):
        executor = self.make_executor()

        run_id, task = executor.submit(make_workflow(GOTO), run_id="dup")
        with pytest.raises(WorkflowValidationError):
            executor.submit(make_workflow(GOTO), run_id="dup")

        run = await task
        await asyncio.sleep(0)
        assert run.status is RunStatus.COMPLETED
        assert len(self.starts) == 1
        assert len(executor.registry) == 0

    async def test_submit_rejects_invalid_workflow(self):
        executor = self.make_executor()
        with pytest.raises(WorkflowValidationError):
            executor.submit({"url": "notaurl", "steps": [GOTO]})
        assert len(executor.registry) == 0

    async def test_submit_rejects_disjoint_domains(self):
        executor = self.make_executor(allowed_domains="example.com")
        with pytest.raises(WorkflowValidationError):
            executor.submit(make_workflow(GOTO), {"allowedDomains": ["other.com"]})

    async def test_resolve_params_uses_settings_defaults(self):
        executor = self.make_executor(max_execution_ms=60_000, step_retries=2)
        params = executor.resolve_params()
        assert params.max_execution_ms == 60_000
        assert params.step_retries == 2

        params = executor.resolve_params({"maxExecutionMs": 10_000})
        assert params.max_execution_ms == 10_000
        assert params.step_retries == 2

    async def test_resolve_params_intersects_domains(self):
        executor = self.make_executor(allowed_domains="example.com,foo.org")
        params = executor.resolve_params({"allowedDomains": ["www.Example.com", "bar.net"]})
        assert params.allowed_domains == ["example.com"]

    async def test_configured_wildcard_lifts_restriction(self):
        executor = self.make_executor(allowed_domains="*")
        params = executor.resolve_params({"allowedDomains": ["example.com"]})
        assert params.allowed_domains == []

    async def test_cancel_closes_session(self):
        self.session.hang_on_click = True
        executor = self.make_executor()
        run_id, task = executor.submit(make_workflow(GOTO, {"action": "click", "selector": "#go"}))
        await self.session.click_started.wait()

        assert executor.registry.cancel(run_id) is True
        with pytest.raises(asyncio.CancelledError):
            await task
        assert self.session.closed
        assert executor.registry.cancel(run_id) is False
