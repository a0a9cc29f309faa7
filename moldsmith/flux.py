"""Layered resolution and validation of flux (template variable) values.

Every function here treats its inputs as read-only and returns a fresh
context. The layering order used by :func:`resolve_context` is, from lowest to
highest precedence: schema inline defaults, the mold's ``flux.yaml``, value
files given on the command line, and ``key=value`` overrides.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Sequence

import yaml

from core.config_loader import fill_mappings, load_config_file, merge_mappings

from .errors import FluxOverrideError, FluxValidationError, ManifestError
from .manifest import FluxVar, scalar_text


class _Missing:
    __slots__ = ()

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()
"""Returned by :func:`get_by_path` when a path does not resolve."""


Context = Dict[str, Any]


def _split_path(path: str) -> List[str]:
    return [part for part in path.split(".") if part]


def get_by_path(context: Mapping[str, Any], path: str) -> Any:
    current: Any = context
    for part in _split_path(path):
        if not isinstance(current, Mapping) or part not in current:
            return MISSING
        current = current[part]
    return current


def set_by_path(context: Mapping[str, Any], path: str, value: Any) -> Context:
    """Return a copy of ``context`` with ``value`` stored at dotted ``path``.

    Intermediate mappings are created as needed; a non-mapping value found on
    the way is replaced by a mapping.
    """

    parts = _split_path(path)
    if not parts:
        raise FluxOverrideError(f"invalid flux path {path!r}")
    result = merge_mappings(context, {})
    node = result
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    node[parts[-1]] = value
    return result


def apply_layer(context: Mapping[str, Any], overlay: Mapping[str, Any]) -> Context:
    """Deep merge ``overlay`` over ``context``; overlay leaves win."""

    return merge_mappings(context, overlay)


def apply_file_defaults(defaults: Mapping[str, Any], context: Mapping[str, Any]) -> Context:
    """Fill gaps in ``context`` from ``defaults`` without replacing any value."""

    return fill_mappings(context, defaults)


def _has_scalar_prefix(context: Mapping[str, Any], path: str) -> bool:
    current: Any = context
    for part in _split_path(path)[:-1]:
        if part not in current:
            return False
        current = current[part]
        if not isinstance(current, Mapping):
            return True
    return False


def apply_defaults(schema: Sequence[FluxVar], context: Mapping[str, Any]) -> Context:
    """Set each declared default whose path is still absent.

    A default never replaces a provided value, including a scalar sitting on
    one of its parent segments.
    """

    result = merge_mappings(context, {})
    for variable in schema:
        if not variable.default or not variable.name:
            continue
        if get_by_path(result, variable.name) is not MISSING:
            continue
        if _has_scalar_prefix(result, variable.name):
            continue
        result = set_by_path(result, variable.name, variable.default)
    return result


def _is_empty(value: Any) -> bool:
    if value is MISSING or value is None:
        return True
    if isinstance(value, (str, list, tuple, Mapping)):
        return len(value) == 0
    return False


def _type_error(variable: FluxVar, value: Any) -> str | None:
    text = value if isinstance(value, str) else scalar_text(value)
    if variable.type in ("string", "select", "list"):
        return None
    if variable.type == "bool":
        if isinstance(value, bool) or text.lower() in ("true", "false"):
            return None
        return f"flux {variable.name!r} must be a bool (true/false), got {text!r}"
    if variable.type == "int":
        if isinstance(value, bool):
            return f"flux {variable.name!r} must be an int, got {text!r}"
        if isinstance(value, int):
            return None
        try:
            int(text.strip())
        except ValueError:
            return f"flux {variable.name!r} must be an int, got {text!r}"
        return None
    return f"flux {variable.name!r} has unknown type {variable.type!r}"


def validate(schema: Sequence[FluxVar], context: Mapping[str, Any]) -> List[str]:
    """Return every violation of ``schema`` found in ``context``."""

    errors: List[str] = []
    for variable in schema:
        value = get_by_path(context, variable.name)
        if _is_empty(value):
            if variable.required:
                errors.append(f"flux {variable.name!r} is required but not provided")
            continue
        message = _type_error(variable, value)
        if message:
            errors.append(message)
    return errors


def check(schema: Sequence[FluxVar], context: Mapping[str, Any]) -> None:
    errors = validate(schema, context)
    if errors:
        raise FluxValidationError(errors)


def parse_override(text: str) -> tuple[str, str]:
    """Split ``dotted.key=value`` on the first ``=``."""

    key, separator, value = text.partition("=")
    if not separator:
        raise FluxOverrideError(f"invalid --set format {text!r} (expected key=value)")
    key = key.strip()
    if not key:
        raise FluxOverrideError(f"invalid --set format {text!r} (empty key)")
    return key, value


def apply_overrides(context: Mapping[str, Any], overrides: Iterable[str]) -> Context:
    result = merge_mappings(context, {})
    for override in overrides:
        key, value = parse_override(override)
        result = set_by_path(result, key, value)
    return result


def load_value_file(path: Path) -> Mapping[str, Any]:
    if not path.is_file():
        raise ManifestError("value file not found", source=str(path))
    try:
        return load_config_file(path)
    except (OSError, TypeError, ValueError, yaml.YAMLError) as exc:
        raise ManifestError(f"cannot load value file: {exc}", source=str(path)) from exc


def layer_value_files(paths: Iterable[Path]) -> Context:
    """Load each value file and layer them left to right."""

    context: Context = {}
    for path in paths:
        context = apply_layer(context, load_value_file(Path(path)))
    return context


def select_schema(
    manifest_flux: Sequence[FluxVar],
    schema_file_flux: Sequence[FluxVar] | None,
) -> tuple[FluxVar, ...]:
    """Pick the effective declarations; a non-empty schema file wins."""

    if schema_file_flux:
        return tuple(schema_file_flux)
    return tuple(manifest_flux)


def resolve_context(
    schema: Sequence[FluxVar],
    *,
    defaults_file: Mapping[str, Any] | None = None,
    value_files: Sequence[Path] = (),
    overrides: Sequence[str] = (),
) -> Context:
    """Build the variable context from every layer in precedence order."""

    context = layer_value_files(value_files)
    context = apply_overrides(context, overrides)
    if defaults_file:
        context = apply_file_defaults(defaults_file, context)
    return apply_defaults(schema, context)


__all__ = [
    "Context",
    "MISSING",
    "apply_defaults",
    "apply_file_defaults",
    "apply_layer",
    "apply_overrides",
    "check",
    "get_by_path",
    "layer_value_files",
    "load_value_file",
    "parse_override",
    "resolve_context",
    "select_schema",
    "set_by_path",
    "validate",
]
