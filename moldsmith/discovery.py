"""Run ``discover`` commands and turn their output into selectable options."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Sequence

import json

from core.command_runner import CommandError, CommandRunner, SubprocessCommandRunner
from core.template import NO_VALUE, TemplateError, field_references

from .errors import DiscoveryError
from .manifest import DiscoverSpec
from .render import compile_template, preprocess


@dataclass(frozen=True, slots=True)
class DiscoveredOption:
    label: str
    value: str
    extra: tuple[str, ...] = field(default_factory=tuple)


def parse_options(output: str) -> List[DiscoveredOption]:
    """Parse one option per line in ``label|value[|extra...]`` form.

    A line without ``|`` is used as both label and value. Blank lines are
    ignored.
    """

    options: List[DiscoveredOption] = []
    for raw_line in output.strip().splitlines():
        line = raw_line.strip()
        if not line:
            continue
        parts = line.split("|")
        if len(parts) == 1:
            options.append(DiscoveredOption(label=line, value=line))
            continue
        options.append(
            DiscoveredOption(
                label=parts[0].strip(),
                value=parts[1].strip(),
                extra=tuple(part.strip() for part in parts[2:]),
            )
        )
    return options


def expand_command(command: str, context: Mapping[str, Any]) -> str:
    """Substitute context references; unknown keys print ``<no value>``."""

    template = compile_template(command, source="discover")
    return template.execute(context, missing_text=NO_VALUE)


def command_references(command: str) -> List[str]:
    """Return the context paths ``command`` depends on."""

    return field_references(preprocess(command))


class DiscoveryExecutor:
    """Execute discovery commands through a :class:`CommandRunner`."""

    def __init__(self, runner: CommandRunner | None = None):
        self.runner = runner or SubprocessCommandRunner()

    def run(self, spec: DiscoverSpec, context: Mapping[str, Any]) -> List[DiscoveredOption]:
        try:
            command = expand_command(spec.command, context)
        except TemplateError as exc:
            raise DiscoveryError(f"expanding discover command template: {exc}") from exc

        try:
            result = self.runner.run_shell(command)
        except CommandError as exc:
            raise DiscoveryError(f"running discover command: {exc}") from exc

        if not spec.parse:
            return parse_options(result.stdout)
        return self._parse_json(result.stdout, spec.parse)

    @staticmethod
    def _parse_json(output: str, parse_template: str) -> List[DiscoveredOption]:
        try:
            data = json.loads(output)
        except json.JSONDecodeError as exc:
            raise DiscoveryError(f"parsing discover output as JSON: {exc}") from exc
        try:
            template = compile_template(parse_template, source="discover.parse")
            rendered = template.execute(data, missing_text=NO_VALUE)
        except TemplateError as exc:
            raise DiscoveryError(f"applying discover.parse template: {exc}") from exc
        return parse_options(rendered)


def also_sets_values(
    spec: DiscoverSpec,
    options: Sequence[DiscoveredOption],
    selected: str,
) -> Dict[str, str]:
    """Map each ``also_sets`` variable to the chosen option's extra field."""

    values: Dict[str, str] = {}
    if not spec.also_sets:
        return values
    for option in options:
        if option.value != selected:
            continue
        for name, index in spec.also_sets.items():
            if 0 <= index < len(option.extra):
                values[name] = option.extra[index]
        break
    return values


__all__ = [
    "DiscoveredOption",
    "DiscoveryExecutor",
    "also_sets_values",
    "command_references",
    "expand_command",
    "parse_options",
]
