"""
cli.py

Responsibility: CLI entrypoint for torx.

High-level flow:
1) Parse arguments (+ optional YAML project file) -> `BuildConfiguration`
2) Run the orchestrator in the mode the configuration selects
3) Map the outcome to an exit code (0 success, 1 any failure)

This module should orchestrate behavior but keep concerns isolated:
- Configuration: `config.py`
- Build modes: `orchestrator.py`
- Operator output: `reporter.py`
"""

from __future__ import annotations

import argparse
import asyncio

from torx import TEMPLATE_EXTENSION, __version__
from torx.config import BuildConfiguration, ConfigurationError, load_project_file, make_configuration
from torx.discovery import DiscoveryError
from torx.orchestrator import BuildOrchestrator
from torx.reporter import Reporter
from torx.tasks import CompileError
from torx.watcher import WatchSubscriptionError

_RUN_ERRORS = (ConfigurationError, DiscoveryError, CompileError, WatchSubscriptionError)


class _ArgumentParser(argparse.ArgumentParser):
    """argparse exits with status 2 on bad input; torx reports and exits 1."""

    def error(self, message: str) -> None:  # type: ignore[override]
        raise ConfigurationError(message)


def _build_parser() -> argparse.ArgumentParser:
    p = _ArgumentParser(prog="torx", description="torx - compile template files into output files")
    p.add_argument(
        "source",
        nargs="?",
        default=None,
        help=f"Template file (*{TEMPLATE_EXTENSION}) or folder of templates",
    )
    p.add_argument("dist", nargs="?", default=None, help="Distribution folder for outputs (default: beside each source)")
    p.add_argument("-v", "--version", action="version", version=f"%(prog)s@{__version__}", help="Print torx version")
    p.add_argument("-w", "--watch", action="store_true", help="Watch for changes")
    p.add_argument("-d", "--dry-run", action="store_true", help="Compile without writing output files")
    p.add_argument("-c", "--config", default=None, help="YAML project file (source, dist, watch, dry_run, options)")
    return p


def _configuration(args: argparse.Namespace) -> BuildConfiguration:
    project = load_project_file(args.config) if args.config else None
    return make_configuration(
        source=args.source,
        dist=args.dist,
        watch=bool(args.watch),
        dry_run=bool(args.dry_run),
        project=project,
    )


def main(argv: list[str] | None = None, *, reporter: Reporter | None = None) -> int:
    reporter = reporter or Reporter()
    parser = _build_parser()

    try:
        args = parser.parse_args(argv)
        config = _configuration(args)
    except SystemExit as e:
        # -h/--help and -v/--version print and exit through argparse.
        return int(e.code or 0)
    except ConfigurationError as e:
        reporter.failed(e)
        return 1

    orchestrator = BuildOrchestrator(config, reporter=reporter)
    try:
        results = asyncio.run(orchestrator.run())
    except _RUN_ERRORS as e:
        reporter.failed(e)
        return 1
    except KeyboardInterrupt:
        return 130

    return 0 if all(r.ok for r in results) else 1


if __name__ == "__main__":
    raise SystemExit(main())
