"""
reporter.py

Responsibility: every line the operator sees.

Successes go to `out` prefixed `BUILD:`, failures go to `err` prefixed `ERROR:`.
Reporting never raises; a closed or broken stream just loses the line.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Sequence, TextIO

from torx.tasks import BuildResult
from torx.watcher import ChangeEvent


class Reporter:
    def __init__(self, out: TextIO | None = None, err: TextIO | None = None) -> None:
        self._out = out
        self._err = err

    @property
    def out(self) -> TextIO:
        return self._out or sys.stdout

    @property
    def err(self) -> TextIO:
        return self._err or sys.stderr

    def _emit(self, stream: TextIO, line: str) -> None:
        try:
            print(line, file=stream, flush=True)
        except (OSError, ValueError):
            pass

    def watch_started(self, folder: Path) -> None:
        self._emit(self.out, f"Watching {folder} for changes...")

    def change(self, event: ChangeEvent) -> None:
        self._emit(self.out, f"File {event.path} has been {event.kind.value}")

    def built(self, result: BuildResult) -> None:
        if result.error is not None:
            self.failed(result.error)
            return
        suffix = "" if result.written else " [dry run]"
        self._emit(self.out, f"BUILD: {result.output_path} ({result.duration_ms} ms){suffix}")

    def failed(self, error: BaseException | str) -> None:
        self._emit(self.err, f"ERROR: {error}")

    def batch_finished(self, results: Sequence[BuildResult], elapsed_ms: int) -> None:
        failures = sum(1 for r in results if not r.ok)
        if failures:
            self._emit(self.err, f"ERROR: {failures} of {len(results)} files failed ({elapsed_ms} ms)")
        else:
            self._emit(self.out, f"BUILD: {len(results)} files ({elapsed_ms} ms)")
