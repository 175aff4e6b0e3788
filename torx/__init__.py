"""
torx package

This package implements the torx build tool: it compiles `.torx` template
sources into output files, either one file, a whole tree, or continuously
as files change.

Key responsibilities are split across modules:
- `discovery.py`: recognise template sources and walk a tree for them
- `compiler.py`: default Jinja2-backed compile collaborator
- `tasks.py`: one source -> one output compile task
- `watcher.py`: filesystem change events scoped to a folder
- `reporter.py`: operator-facing BUILD/ERROR output
- `orchestrator.py`: single, batch and watch build modes
- `config.py`: immutable build configuration and YAML project file
- `cli.py`: CLI entrypoint (parse -> configure -> orchestrate -> exit code)
"""

from __future__ import annotations

__all__ = ["__version__", "TEMPLATE_EXTENSION"]

__version__ = "0.1.0"

TEMPLATE_EXTENSION = ".torx"
