"""Rendering of mold documents through the template dialect."""
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Dict, List, Mapping

import re

from core.template import Template, TemplateError

from .diagnostics import Diagnostic, DiagnosticSink, Severity

if TYPE_CHECKING:
    from .ingots import IngotResolver


RESERVED_KEYWORDS = frozenset(
    {
        # control
        "if", "else", "end", "range", "with", "define", "block", "template",
        # literals
        "nil", "true", "false",
        # functions
        "not", "and", "or", "len", "index", "print", "printf", "println", "call",
        "eq", "ne", "lt", "le", "gt", "ge",
        # partials
        "ingot",
    }
)
"""Leading identifiers that shorthand references never rewrite."""

_SHORTHAND_PATTERN = re.compile(r"\{\{(-?\s*)([a-zA-Z]\w*(?:\.\w+)*)(\s*-?)\}\}")


def preprocess(content: str) -> str:
    """Rewrite ``{{name.path}}`` shorthand into ``{{.name.path}}``."""

    def replace(match: re.Match[str]) -> str:
        prefix, token, suffix = match.groups()
        if token.split(".", 1)[0] in RESERVED_KEYWORDS:
            return match.group(0)
        return "{{" + prefix + "." + token + suffix + "}}"

    return _SHORTHAND_PATTERN.sub(replace, content)


def _ingot_placeholder(name: str) -> str:
    return ""


def compile_template(
    content: str,
    *,
    source: str | None = None,
    functions: Mapping[str, Callable[..., Any]] | None = None,
) -> Template:
    """Preprocess and parse ``content``; raises ``TemplateSyntaxError``."""

    return Template(preprocess(content), name=source or "template", functions=functions)


def check_syntax(content: str, *, source: str | None = None) -> None:
    """Parse ``content`` without executing it.

    ``ingot`` is accepted as a function name so documents that include
    partials can be checked without a resolver.
    """

    compile_template(content, source=source, functions={"ingot": _ingot_placeholder})


def _display_path(path: str) -> str:
    return "{{" + path + "}}"


def render_template(
    content: str,
    context: Mapping[str, Any],
    *,
    ingots: "IngotResolver | None" = None,
    sink: DiagnosticSink | None = None,
    source: str | None = None,
    ingot_stack: tuple[str, ...] = (),
) -> str:
    """Render ``content`` against ``context``.

    References that do not resolve render as empty text; each distinct one is
    reported once to ``sink`` as a warning. When ``ingots`` is given the
    ``ingot "name"`` function renders the named partial with the same context.
    """

    if not content:
        return ""

    functions: Dict[str, Callable[..., Any]] = {}
    if ingots is not None:

        def ingot(name: Any) -> str:
            if not isinstance(name, str) or not name.strip():
                raise TemplateError(f"{source or 'template'}: ingot name must be a non-empty string, got {name!r}")
            return ingots.resolve(name, context, sink=sink, stack=ingot_stack)

        functions["ingot"] = ingot

    template = compile_template(content, source=source, functions=functions)

    unresolved: List[str] = []

    def on_missing(path: str) -> None:
        if path not in unresolved:
            unresolved.append(path)

    rendered = template.execute(context, on_missing=on_missing)
    if sink is not None:
        for path in unresolved:
            sink.emit(
                Diagnostic(
                    Severity.WARNING,
                    f"unresolved template variable: {_display_path(path)}",
                    source,
                )
            )
    return rendered


__all__ = [
    "RESERVED_KEYWORDS",
    "check_syntax",
    "compile_template",
    "preprocess",
    "render_template",
]
