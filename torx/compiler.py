"""
compiler.py

Responsibility: the default compile collaborator, turning template text into
output text with Jinja2.

Contract shared by every collaborator the orchestrator accepts:

    async compile(source_text, options, source_path) -> str

- `options` is a mapping of template variables (empty by default).
- `source_path` is used for error attribution and to resolve includes
  relative to the template's own folder.
- Failures raise the collaborator's own errors (here: `jinja2.TemplateError`);
  callers wrap them.

This module intentionally does NOT read or write files, nor know about build modes.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping

from jinja2 import Environment, FileSystemLoader, StrictUndefined

Compiler = Callable[[str, Mapping[str, Any], str], Awaitable[str]]


def _environment(source_path: str) -> Environment:
    return Environment(
        loader=FileSystemLoader(str(Path(source_path).parent)),
        autoescape=False,
        undefined=StrictUndefined,
        keep_trailing_newline=True,
        enable_async=True,
    )


async def compile(source_text: str, options: Mapping[str, Any] | None, source_path: str) -> str:  # noqa: A001
    """
    Render source_text as a Jinja2 template with options as its context.

    Syntax errors carry source_path as their filename.
    """
    env = _environment(source_path)
    code = env.compile(source_text, name=Path(source_path).name, filename=source_path)
    template = env.template_class.from_code(env, code, env.make_globals(None))
    return await template.render_async(**dict(options or {}))
