"""
orchestrator.py

Responsibility: run compile tasks for the three build modes.

- single file: one task; a failure propagates to the caller
- batch: discover every source under the folder and compile them concurrently;
  every task is awaited and each result is reported on its own
- watch: rebuild one file per change event until the event stream ends

The orchestrator reads the BuildConfiguration and never changes it.
"""

from __future__ import annotations

import asyncio
import enum
import time

from torx.compiler import Compiler, compile
from torx.config import BuildConfiguration, ConfigurationError
from torx.discovery import discover
from torx.reporter import Reporter
from torx.tasks import BuildResult, BuildTask, run_task, run_task_safely, task_for
from torx.watcher import ChangeEvent, ChangeKind, ChangeWatcher


class RunState(enum.Enum):
    IDLE = "idle"
    SINGLE_COMPILE = "single-compile"
    BATCH_COMPILE = "batch-compile"
    WATCHING = "watching"
    DONE = "done"


def _ensure_unique_outputs(tasks: list[BuildTask]) -> None:
    seen: dict[str, BuildTask] = {}
    for task in tasks:
        key = str(task.output_path)
        if key in seen:
            raise ConfigurationError(
                f"{seen[key].source_path} and {task.source_path} would both build {task.output_path}"
            )
        seen[key] = task


class BuildOrchestrator:
    def __init__(
        self,
        config: BuildConfiguration,
        *,
        compiler: Compiler = compile,
        reporter: Reporter | None = None,
        watcher: ChangeWatcher | None = None,
    ) -> None:
        self.config = config
        self.reporter = reporter or Reporter()
        self.state = RunState.IDLE
        self._compiler = compiler
        self._watcher = watcher

    async def run(self) -> list[BuildResult]:
        """
        Dispatch on the configuration. Watch mode returns only once its
        watcher is closed, with no results.
        """
        if self.config.watch:
            await self.watch()
            return []
        if self.config.single_file:
            return [await self.build_file()]
        return await self.build_all()

    async def build_file(self) -> BuildResult:
        """
        Compile the configured source file. Raises CompileError on failure.
        """
        if self.config.source_file is None:
            raise ConfigurationError("Single-file build needs a source file.")

        self.state = RunState.SINGLE_COMPILE
        try:
            result = await run_task(
                task_for(self.config.source_file, self.config),
                self._compiler,
                self.config.options,
                dry_run=self.config.dry_run,
            )
        finally:
            self.state = RunState.DONE
        self.reporter.built(result)
        return result

    async def _build_and_report(self, task: BuildTask) -> BuildResult:
        result = await run_task_safely(task, self._compiler, self.config.options, dry_run=self.config.dry_run)
        self.reporter.built(result)
        return result

    async def build_all(self) -> list[BuildResult]:
        """
        Compile every source under the source folder.

        Returns one BuildResult per source, failures included. Raises
        DiscoveryError if the tree cannot be walked.
        """
        self.state = RunState.BATCH_COMPILE
        start = time.perf_counter()
        try:
            sources = await asyncio.to_thread(discover, self.config.source_folder)
            tasks = [task_for(source, self.config) for source in sources]
            _ensure_unique_outputs(tasks)

            outcomes = await asyncio.gather(
                *(self._build_and_report(task) for task in tasks),
                return_exceptions=True,
            )
        finally:
            self.state = RunState.DONE

        # Only unexpected errors escape run_task_safely; surface the first
        # once every task has finished.
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome

        results = list(outcomes)
        self.reporter.batch_finished(results, round((time.perf_counter() - start) * 1000))
        return results

    def _triggers_build(self, event: ChangeEvent) -> bool:
        source_file = self.config.source_file
        if source_file is not None and event.path.resolve() != source_file.resolve():
            return False
        return True

    async def watch(self) -> None:
        """
        Rebuild each changed template as its event arrives.

        Compile failures are reported and the loop carries on; a
        WatchSubscriptionError ends it.
        """
        watcher = self._watcher or ChangeWatcher(self.config.watch_folder)
        self.state = RunState.WATCHING
        self.reporter.watch_started(watcher.folder)

        async for event in watcher:
            if not self._triggers_build(event):
                continue
            self.reporter.change(event)
            # Added files are reported only; they build on their first change.
            if event.kind is not ChangeKind.CHANGED:
                continue
            await self._build_and_report(task_for(event.path, self.config))
