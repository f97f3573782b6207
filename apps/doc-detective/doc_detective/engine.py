"""Execution engine for resolved tests."""

from __future__ import annotations

import copy
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional

import structlog

from .aggregator import aggregate, rollup
from .config import detect_environment
from .errors import RunnerStartError
from .handlers import run_step
from .integrations import Uploader, upload_changed_files
from .resolver import BROWSER_PREFERENCE, is_browser_required
from .results import FAIL, SKIPPED, StepContext, StepOutcome, rollup_status
from .runners import Runner, RunnerFactory, RunnerHandle, playwright_runner_factory

LOGGER = structlog.get_logger("doc_detective", component="engine")

UNSUPPORTED_CONTEXT = "Skipped because context isn't supported by the environment."
UNSAFE_SKIP = "Skipped because unsafe steps aren't allowed."
PREVIOUS_FAILURE_SKIP = "Skipped due to previous failure in context."

ContextListener = Callable[[dict[str, Any], dict[str, Any], dict[str, Any]], None]


class MetaValues:
    """Outputs of executed steps, addressable as ``$$specs.<id>.tests...``.

    Workers write disjoint branches; the lock keeps snapshots consistent.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tree: dict[str, Any] = {"specs": {}}

    def record(self, spec_id: str, test_id: str, context_id: str, step_id: str, outputs: dict[str, Any]) -> None:
        with self._lock:
            specs = self._tree["specs"]
            tests = specs.setdefault(spec_id, {"tests": {}})["tests"]
            contexts = tests.setdefault(test_id, {"contexts": {}})["contexts"]
            steps = contexts.setdefault(context_id, {"steps": {}})["steps"]
            steps[step_id] = {"outputs": copy.deepcopy(outputs)}

    def scope(self, last_outputs: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        with self._lock:
            snapshot = copy.deepcopy(self._tree)
        snapshot.update(copy.deepcopy(last_outputs or {}))
        return snapshot


@dataclass
class ContextJob:
    """One context execution; ``node`` is written only by the worker running it."""

    spec: dict[str, Any]
    test: dict[str, Any]
    context: dict[str, Any]
    node: dict[str, Any] = field(default_factory=dict)


class SpecRunner:
    """Runs every context of a ResolvedTests document on a bounded worker pool."""

    def __init__(
        self,
        resolved_tests: dict[str, Any],
        *,
        runner_factory: Optional[RunnerFactory] = None,
        uploaders: Iterable[Uploader] = (),
        on_context_complete: Optional[ContextListener] = None,
    ) -> None:
        self.resolved_tests = resolved_tests
        self.config = dict(resolved_tests.get("config") or {})
        if not self.config.get("environment"):
            self.config["environment"] = detect_environment()
        self.environment = self.config["environment"]
        self.runner_factory = runner_factory or playwright_runner_factory
        self.uploaders = list(uploaders)
        self.on_context_complete = on_context_complete
        self.meta_values = MetaValues()
        self._handles: list[RunnerHandle] = []
        self._handles_lock = threading.Lock()

    @property
    def allow_unsafe(self) -> bool:
        return bool(self.config.get("allowUnsafeSteps"))

    @property
    def max_workers(self) -> int:
        value = self.config.get("concurrentRunners") or 1
        return max(int(value), 1)

    def _installed_browsers(self) -> list[str]:
        return [app.get("name") for app in self.environment.get("apps") or []]

    def apply_context_defaults(self, context: dict[str, Any]) -> dict[str, Any]:
        context = copy.deepcopy(context)
        context.setdefault("contextId", str(uuid.uuid4()))
        if not context.get("platform"):
            context["platform"] = self.environment.get("platform")
        if not context.get("browser") and is_browser_required(context.get("steps") or []):
            installed = self._installed_browsers()
            name = next((candidate for candidate in BROWSER_PREFERENCE if candidate in installed), None)
            if name:
                context["browser"] = {"name": name}
        return context

    def is_supported_context(self, context: dict[str, Any]) -> bool:
        if context.get("platform") != self.environment.get("platform"):
            return False
        browser = context.get("browser")
        if browser:
            name = "webkit" if browser.get("name") == "safari" else browser.get("name")
            return name in self._installed_browsers()
        return not is_browser_required(context.get("steps") or [])

    def _start_runner(self, context: dict[str, Any]) -> Runner:
        runner = self.runner_factory(context, self.config)
        try:
            runner.start()
            return runner
        except RunnerStartError as exc:
            runner.close()
            browser = context.get("browser") or {}
            if browser.get("headless", True):
                raise
            LOGGER.warning(
                "runner_retrying_headless",
                browser=browser.get("name"),
                platform=context.get("platform"),
                error=str(exc),
            )
        retry_context = {**context, "browser": {**context["browser"], "headless": True}}
        runner = self.runner_factory(retry_context, self.config)
        try:
            runner.start()
        except RunnerStartError:
            runner.close()
            raise
        return runner

    def _new_handle(self, context: dict[str, Any]) -> RunnerHandle:
        handle = RunnerHandle(lambda: self._start_runner(context))
        with self._handles_lock:
            self._handles.append(handle)
        return handle

    def close_all_runners(self) -> None:
        with self._handles_lock:
            handles = list(self._handles)
        for handle in handles:
            handle.close()

    def _skip_context(self, job: ContextJob, description: str) -> None:
        job.node.update({"result": SKIPPED, "resultDescription": description})

    def run_context(self, job: ContextJob) -> dict[str, Any]:
        """Execute one context; the returned node is ``job.node``."""

        context = job.context
        spec_id, test_id, context_id = job.spec["specId"], job.test["testId"], context["contextId"]
        log = LOGGER.bind(spec_id=spec_id, test_id=test_id, context_id=context_id)
        job.node.update(
            {
                "contextId": context_id,
                "platform": context.get("platform"),
                "browser": context.get("browser"),
                "steps": [],
            }
        )

        if not self.is_supported_context(context):
            log.info("context_unsupported", platform=context.get("platform"), browser=context.get("browser"))
            self._skip_context(job, UNSUPPORTED_CONTEXT)
            return job.node

        steps = [dict(step) for step in context.get("steps") or []]
        runnable = [step for step in steps if self.allow_unsafe or not step.get("unsafe")]
        handle = self._new_handle(context) if is_browser_required(steps) else None
        step_context = StepContext(config=self.config, context=context, runner=handle)
        try:
            if handle is not None and is_browser_required(runnable):
                try:
                    handle.get()
                except RunnerStartError as exc:
                    name = (context.get("browser") or {}).get("name")
                    description = f"Failed to start context '{name}' on '{context.get('platform')}'."
                    log.error("runner_start_failed", error=str(exc))
                    self._skip_context(job, description)
                    return job.node

            failed = False
            last_outputs: dict[str, Any] = {}
            for step in steps:
                step.setdefault("stepId", str(uuid.uuid4()))
                step_log = log.bind(step_id=step["stepId"])
                if step.get("unsafe") and not self.allow_unsafe:
                    outcome = StepOutcome.skipped(UNSAFE_SKIP)
                elif failed:
                    outcome = StepOutcome.skipped(PREVIOUS_FAILURE_SKIP)
                else:
                    step_context.meta_values = self.meta_values.scope(last_outputs)
                    outcome = run_step(step, step_context)
                    last_outputs = outcome.outputs
                    self.meta_values.record(spec_id, test_id, context_id, step["stepId"], outcome.outputs)
                if outcome.status == FAIL:
                    failed = True
                step_log.debug("step_finished", result=outcome.status, description=outcome.description)
                job.node["steps"].append(
                    {
                        **step,
                        "result": outcome.status,
                        "resultDescription": outcome.description,
                        "outputs": outcome.outputs,
                    }
                )

            if step_context.recording and handle is not None and handle.active is not None:
                outcome = run_step({"stopRecord": True, "stepId": str(uuid.uuid4())}, step_context)
                log.debug("recording_auto_stopped", result=outcome.status)
        finally:
            if handle is not None:
                handle.close()

        job.node["result"] = rollup_status(step["result"] for step in job.node["steps"])
        return job.node

    def _plan(self) -> tuple[list[dict[str, Any]], list[ContextJob]]:
        """Pre-build the result tree so each worker owns exactly one context node."""

        specs: list[dict[str, Any]] = []
        jobs: list[ContextJob] = []
        for spec in self.resolved_tests.get("specs") or []:
            spec_id = spec.get("specId") or str(uuid.uuid4())
            spec_node = {key: value for key, value in spec.items() if key != "tests"}
            spec_node.update({"specId": spec_id, "tests": []})
            for test in spec.get("tests") or []:
                test_id = test.get("testId") or str(uuid.uuid4())
                test_node = {key: value for key, value in test.items() if key not in {"contexts", "steps"}}
                test_node.update({"testId": test_id, "contexts": []})
                for context in test.get("contexts") or [{"steps": test.get("steps") or []}]:
                    job = ContextJob(spec_node, test_node, self.apply_context_defaults(context))
                    test_node["contexts"].append(job.node)
                    jobs.append(job)
                spec_node["tests"].append(test_node)
            specs.append(spec_node)
        return specs, jobs

    def _run_job(self, job: ContextJob) -> dict[str, Any]:
        try:
            return self.run_context(job)
        except Exception as exc:
            LOGGER.exception("context_crashed", context_id=job.context.get("contextId"))
            job.node.update({"result": FAIL, "resultDescription": f"Context crashed: {exc}"})
            return job.node

    def run(self) -> dict[str, Any]:
        """Execute everything and return the report: summary plus the result tree."""

        started_at = datetime.now(timezone.utc)
        specs, jobs = self._plan()
        LOGGER.info("run_started", contexts=len(jobs), workers=self.max_workers)

        executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="doc-detective")
        try:
            futures: list[tuple[ContextJob, Future]] = [(job, executor.submit(self._run_job, job)) for job in jobs]
            for job, future in futures:
                future.result()
                if self.on_context_complete is not None:
                    self.on_context_complete(job.spec, job.test, job.node)
        finally:
            executor.shutdown(wait=True, cancel_futures=True)
            self.close_all_runners()

        rollup(specs)
        report: dict[str, Any] = {"summary": aggregate(specs), "specs": specs}
        uploads = upload_changed_files(self.config, specs, self.uploaders)
        if uploads.total:
            report["uploadResults"] = uploads.as_dict()

        finished_at = datetime.now(timezone.utc)
        LOGGER.info(
            "run_finished",
            duration_ms=round((finished_at - started_at).total_seconds() * 1000, 3),
            summary=report["summary"],
        )
        return report


def run_specs(resolved_tests: dict[str, Any], **kwargs: Any) -> dict[str, Any]:
    return SpecRunner(resolved_tests, **kwargs).run()
