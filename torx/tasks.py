"""
tasks.py

Responsibility: the unit of work, one template source -> one output file.

A task reads the source, awaits the compile collaborator, then writes the
output, strictly in that order. Any failure is surfaced as a CompileError
naming the source path.
"""

from __future__ import annotations

import asyncio
import os
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from torx import TEMPLATE_EXTENSION
from torx.compiler import Compiler
from torx.config import BuildConfiguration


class CompileError(RuntimeError):
    def __init__(self, source_path: Path, message: str, cause: BaseException | None = None) -> None:
        super().__init__(f"{source_path}: {message}")
        self.source_path = source_path
        self.cause = cause


@dataclass(frozen=True)
class BuildTask:
    source_path: Path
    output_path: Path


@dataclass(frozen=True)
class BuildResult:
    source_path: Path
    output_path: Path
    duration_ms: int
    error: CompileError | None = None
    written: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


def output_name(source_path: Path) -> str:
    name = source_path.name
    if name.endswith(TEMPLATE_EXTENSION):
        return name[: -len(TEMPLATE_EXTENSION)]
    return name


def task_for(source_path: str | Path, config: BuildConfiguration) -> BuildTask:
    """
    Derive the BuildTask for a source.

    Output goes to the distribution folder when one is configured, otherwise
    beside the source. The name is the source's base name without `.torx`.
    """
    src = Path(source_path)
    folder = config.distribution_folder if config.distribution_folder is not None else src.parent
    return BuildTask(source_path=src, output_path=folder / output_name(src))


def _write_output(path: Path, text: str) -> None:
    """
    Write text to path via a temporary sibling file and a rename, so a failed
    write never leaves a partial output behind.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as fh:
            fh.write(text)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def _elapsed_ms(start: float) -> int:
    return round((time.perf_counter() - start) * 1000)


async def run_task(
    task: BuildTask,
    compiler: Compiler,
    options: Mapping[str, Any] | None = None,
    *,
    dry_run: bool = False,
) -> BuildResult:
    """
    Read, compile and write one task. Raises CompileError on any failure.
    """
    src = task.source_path
    start = time.perf_counter()

    try:
        text = await asyncio.to_thread(src.read_text, encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise CompileError(src, f"could not read file ({e})", e) from e

    try:
        out = await compiler(text, dict(options or {}), str(src))
    except Exception as e:  # noqa: BLE001 - collaborator errors are opaque
        raise CompileError(src, f"compile failed: {e}", e) from e
    if not isinstance(out, str):
        raise CompileError(src, f"compile returned {type(out).__name__}, expected text")

    if not dry_run:
        try:
            await asyncio.to_thread(_write_output, task.output_path, out)
        # UnicodeEncodeError (a ValueError) for text UTF-8 cannot encode.
        except (OSError, ValueError) as e:
            raise CompileError(src, f"could not write {task.output_path} ({e})", e) from e

    return BuildResult(
        source_path=src,
        output_path=task.output_path,
        duration_ms=_elapsed_ms(start),
        written=not dry_run,
    )


async def run_task_safely(
    task: BuildTask,
    compiler: Compiler,
    options: Mapping[str, Any] | None = None,
    *,
    dry_run: bool = False,
) -> BuildResult:
    """
    Like run_task, but a CompileError is returned inside the BuildResult.
    """
    start = time.perf_counter()
    try:
        return await run_task(task, compiler, options, dry_run=dry_run)
    except CompileError as e:
        return BuildResult(
            source_path=task.source_path,
            output_path=task.output_path,
            duration_ms=_elapsed_ms(start),
            error=e,
        )
