import asyncio
import io
from pathlib import Path
from typing import Any, AsyncIterator, Iterable, Mapping

import pytest
from watchfiles import Change

from torx.config import BuildConfiguration, ConfigurationError
from torx.discovery import DiscoveryError
from torx.orchestrator import BuildOrchestrator, RunState
from torx.reporter import Reporter
from torx.tasks import CompileError
from torx.watcher import ChangeWatcher, WatchSubscriptionError


class FakeCompiler:
    """Upper-cases its input; fails for sources whose text contains FAIL."""

    def __init__(self, delay: float = 0.0) -> None:
        self.calls: list[str] = []
        self.delay = delay
        self.active = 0
        self.max_active = 0

    async def __call__(self, text: str, options: Mapping[str, Any], source_path: str) -> str:
        self.calls.append(source_path)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay)
            if "FAIL" in text:
                raise ValueError("bad template")
            return text.upper()
        finally:
            self.active -= 1


def _write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def _orchestrator(
    config: BuildConfiguration, compiler: FakeCompiler, watcher: ChangeWatcher | None = None
) -> tuple[BuildOrchestrator, io.StringIO, io.StringIO]:
    out, err = io.StringIO(), io.StringIO()
    orch = BuildOrchestrator(config, compiler=compiler, reporter=Reporter(out=out, err=err), watcher=watcher)
    return orch, out, err


async def _batches(*items: Iterable[tuple[Change, str]]) -> AsyncIterator[set[tuple[Change, str]]]:
    for batch in items:
        yield set(batch)


def test_single_file_builds_one_output(tmp_path: Path) -> None:
    src = _write(tmp_path / "src" / "index.html.torx", "hello")
    config = BuildConfiguration(source_folder=src.parent, source_file=src, distribution_folder=tmp_path / "dist")
    compiler = FakeCompiler()
    orch, out, _err = _orchestrator(config, compiler)

    results = asyncio.run(orch.run())

    assert len(results) == 1
    assert results[0].output_path == tmp_path / "dist" / "index.html"
    assert list((tmp_path / "dist").iterdir()) == [tmp_path / "dist" / "index.html"]
    assert (tmp_path / "dist" / "index.html").read_text(encoding="utf-8") == "HELLO"
    assert out.getvalue().startswith("BUILD: ")
    assert orch.state is RunState.DONE


def test_single_file_failure_propagates(tmp_path: Path) -> None:
    src = _write(tmp_path / "bad.torx", "FAIL")
    config = BuildConfiguration(source_folder=tmp_path, source_file=src)
    orch, out, _err = _orchestrator(config, FakeCompiler())

    with pytest.raises(CompileError) as excinfo:
        asyncio.run(orch.build_file())

    assert str(src) in str(excinfo.value)
    assert out.getvalue() == ""
    assert orch.state is RunState.DONE


def test_build_file_requires_source_file(tmp_path: Path) -> None:
    orch, _out, _err = _orchestrator(BuildConfiguration(source_folder=tmp_path), FakeCompiler())
    with pytest.raises(ConfigurationError):
        asyncio.run(orch.build_file())


def test_batch_builds_every_source(tmp_path: Path) -> None:
    names = ["a.txt.torx", "nested/b.html.torx", "nested/deeper/c.torx"]
    for name in names:
        _write(tmp_path / "src" / name, name)
    _write(tmp_path / "src" / "skip.md", "not a template")
    config = BuildConfiguration(source_folder=tmp_path / "src", distribution_folder=tmp_path / "dist")
    compiler = FakeCompiler(delay=0.01)
    orch, out, err = _orchestrator(config, compiler)

    results = asyncio.run(orch.run())

    assert all(r.ok for r in results)
    assert sorted(p.name for p in (tmp_path / "dist").iterdir()) == ["a.txt", "b.html", "c"]
    assert (tmp_path / "dist" / "b.html").read_text(encoding="utf-8") == "NESTED/B.HTML.TORX"
    assert compiler.max_active > 1
    assert out.getvalue().splitlines()[-1].startswith("BUILD: 3 files (")
    assert err.getvalue() == ""
    assert orch.state is RunState.DONE


def test_batch_reports_each_failure_and_awaits_the_rest(tmp_path: Path) -> None:
    f1 = _write(tmp_path / "src" / "f1.torx", "one")
    f2 = _write(tmp_path / "src" / "f2.torx", "FAIL")
    f3 = _write(tmp_path / "src" / "f3.torx", "three")
    config = BuildConfiguration(source_folder=tmp_path / "src", distribution_folder=tmp_path / "dist")
    orch, out, err = _orchestrator(config, FakeCompiler(delay=0.01))

    results = asyncio.run(orch.build_all())

    by_source = {r.source_path: r for r in results}
    assert set(by_source) == {f1, f2, f3}
    assert by_source[f1].ok and by_source[f3].ok
    assert not by_source[f2].ok
    assert by_source[f2].error is not None and by_source[f2].error.source_path == f2

    assert str(f2) in err.getvalue()
    assert "1 of 3 files failed" in err.getvalue()
    assert str(tmp_path / "dist" / "f2") not in out.getvalue()
    assert not (tmp_path / "dist" / "f2").exists()
    assert (tmp_path / "dist" / "f1").read_text(encoding="utf-8") == "ONE"
    assert (tmp_path / "dist" / "f3").read_text(encoding="utf-8") == "THREE"


def test_batch_rejects_colliding_outputs(tmp_path: Path) -> None:
    _write(tmp_path / "src" / "a" / "page.torx", "1")
    _write(tmp_path / "src" / "b" / "page.torx", "2")
    config = BuildConfiguration(source_folder=tmp_path / "src", distribution_folder=tmp_path / "dist")
    compiler = FakeCompiler()
    orch, _out, _err = _orchestrator(config, compiler)

    with pytest.raises(ConfigurationError):
        asyncio.run(orch.build_all())
    assert compiler.calls == []


def test_batch_discovery_failure_propagates(tmp_path: Path) -> None:
    config = BuildConfiguration(source_folder=tmp_path / "missing")
    orch, _out, _err = _orchestrator(config, FakeCompiler())

    with pytest.raises(DiscoveryError):
        asyncio.run(orch.run())
    assert orch.state is RunState.DONE


def test_batch_dry_run_writes_nothing(tmp_path: Path) -> None:
    _write(tmp_path / "src" / "a.torx", "x")
    config = BuildConfiguration(source_folder=tmp_path / "src", distribution_folder=tmp_path / "dist", dry_run=True)
    orch, out, _err = _orchestrator(config, FakeCompiler())

    results = asyncio.run(orch.run())

    assert [r.written for r in results] == [False]
    assert not (tmp_path / "dist").exists()
    assert "[dry run]" in out.getvalue()


def test_watch_builds_once_per_changed_template(tmp_path: Path) -> None:
    src = _write(tmp_path / "page.torx", "page")
    _write(tmp_path / "notes.txt", "ignored")
    config = BuildConfiguration(source_folder=tmp_path, distribution_folder=tmp_path / "dist", watch=True)
    compiler = FakeCompiler()
    watcher = ChangeWatcher(
        tmp_path,
        source=_batches([(Change.modified, str(src))], [(Change.modified, str(tmp_path / "notes.txt"))]),
    )
    orch, out, err = _orchestrator(config, compiler, watcher)

    asyncio.run(orch.run())

    assert compiler.calls == [str(src)]
    build_lines = [line for line in out.getvalue().splitlines() if line.startswith("BUILD:")]
    assert len(build_lines) == 1
    assert err.getvalue() == ""
    assert out.getvalue().startswith(f"Watching {tmp_path} for changes...")
    assert (tmp_path / "dist" / "page").read_text(encoding="utf-8") == "PAGE"
    assert orch.state is RunState.WATCHING


def test_watch_recovers_from_compile_errors(tmp_path: Path) -> None:
    bad = _write(tmp_path / "bad.torx", "FAIL")
    good = _write(tmp_path / "good.torx", "good")
    config = BuildConfiguration(source_folder=tmp_path, watch=True)
    compiler = FakeCompiler()
    watcher = ChangeWatcher(
        tmp_path,
        source=_batches([(Change.modified, str(bad))], [(Change.modified, str(good))]),
    )
    orch, out, err = _orchestrator(config, compiler, watcher)

    asyncio.run(orch.watch())

    assert compiler.calls == [str(bad), str(good)]
    assert err.getvalue().startswith("ERROR: ")
    assert str(bad) in err.getvalue()
    assert (tmp_path / "good").read_text(encoding="utf-8") == "GOOD"


def test_watch_reports_but_does_not_build_added_or_removed(tmp_path: Path) -> None:
    config = BuildConfiguration(source_folder=tmp_path, watch=True)
    compiler = FakeCompiler()
    watcher = ChangeWatcher(
        tmp_path,
        source=_batches([(Change.added, str(tmp_path / "new.torx"))], [(Change.deleted, str(tmp_path / "old.torx"))]),
    )
    orch, out, _err = _orchestrator(config, compiler, watcher)

    asyncio.run(orch.watch())

    assert compiler.calls == []
    assert "has been added" in out.getvalue()
    assert "has been removed" in out.getvalue()


def test_watch_single_file_ignores_siblings(tmp_path: Path) -> None:
    target = _write(tmp_path / "target.torx", "t")
    other = _write(tmp_path / "other.torx", "o")
    config = BuildConfiguration(source_folder=tmp_path, source_file=target, watch=True)
    compiler = FakeCompiler()
    watcher = ChangeWatcher(
        tmp_path,
        source=_batches([(Change.modified, str(other)), (Change.modified, str(target))]),
    )
    orch, _out, _err = _orchestrator(config, compiler, watcher)

    asyncio.run(orch.run())

    assert compiler.calls == [str(target)]


def test_watch_subscription_failure_propagates(tmp_path: Path) -> None:
    config = BuildConfiguration(source_folder=tmp_path / "missing", watch=True)
    orch, _out, _err = _orchestrator(config, FakeCompiler())

    with pytest.raises(WatchSubscriptionError):
        asyncio.run(orch.run())


def test_watch_survives_unwritable_output(tmp_path: Path) -> None:
    bad = _write(tmp_path / "a.torx", "a")
    good = _write(tmp_path / "b.torx", "b")

    async def surrogate_for_a(text: str, options: Mapping[str, Any], source_path: str) -> str:
        return "bad \udc80 output" if source_path == str(bad) else text.upper()

    config = BuildConfiguration(source_folder=tmp_path, distribution_folder=tmp_path / "dist", watch=True)
    watcher = ChangeWatcher(
        tmp_path,
        source=_batches([(Change.modified, str(bad))], [(Change.modified, str(good))]),
    )
    out, err = io.StringIO(), io.StringIO()
    orch = BuildOrchestrator(config, compiler=surrogate_for_a, reporter=Reporter(out=out, err=err), watcher=watcher)

    asyncio.run(orch.watch())

    assert str(bad) in err.getvalue()
    assert (tmp_path / "dist" / "b").read_text(encoding="utf-8") == "B"
    assert sorted(p.name for p in (tmp_path / "dist").iterdir()) == ["b"]


def test_batch_tags_unwritable_output_as_failure(tmp_path: Path) -> None:
    bad = _write(tmp_path / "src" / "bad.torx", "x")
    _write(tmp_path / "src" / "ok.torx", "y")

    async def surrogate_for_bad(text: str, options: Mapping[str, Any], source_path: str) -> str:
        return "\udc80" if source_path == str(bad) else text

    config = BuildConfiguration(source_folder=tmp_path / "src", distribution_folder=tmp_path / "dist")
    orch = BuildOrchestrator(config, compiler=surrogate_for_bad, reporter=Reporter(out=io.StringIO(), err=io.StringIO()))

    results = asyncio.run(orch.build_all())

    assert [r.source_path for r in results if not r.ok] == [bad]
    assert (tmp_path / "dist" / "ok").read_text(encoding="utf-8") == "y"
