"""Mold and ingot manifest models.

Manifests are parsed from plain mappings (usually decoded YAML) into frozen
dataclasses. Parsing is strict about the *shape* of each section but lenient
about missing values so that :mod:`moldsmith.temper` can report every problem
at once instead of stopping at the first absent field.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Sequence, Union

import yaml

from core.config_loader import load_document, normalize_string_list

from .errors import ManifestError


MOLD_MANIFEST = "mold.yaml"
INGOT_MANIFEST = "ingot.yaml"
FLUX_DEFAULTS_FILE = "flux.yaml"
FLUX_SCHEMA_FILE = "flux.schema.yaml"

FLUX_TYPES: tuple[str, ...] = ("string", "bool", "int", "list", "select")
"""Allowed values for a flux variable ``type``."""


def scalar_text(value: Any) -> str:
    """Render a decoded YAML scalar as flux text."""

    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _text(data: Mapping[str, Any], key: str, *, label: str, source: str | None) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if isinstance(value, (Mapping, list)):
        raise ManifestError(f"{label}{key} must be a scalar", source=source)
    return scalar_text(value)


def _section(data: Mapping[str, Any], key: str, *, source: str | None) -> Mapping[str, Any]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ManifestError(f"{key} must be a mapping", source=source)
    return value


def _entries(data: Mapping[str, Any], key: str, *, source: str | None) -> Sequence[Any]:
    value = data.get(key)
    if value is None:
        return ()
    if not isinstance(value, list):
        raise ManifestError(f"{key} must be a list", source=source)
    return value


@dataclass(frozen=True, slots=True)
class Author:
    name: str = ""
    url: str = ""


@dataclass(frozen=True, slots=True)
class Requires:
    moldsmith: str = ""

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, source: str | None = None) -> "Requires":
        return cls(moldsmith=_text(data, "moldsmith", label="requires.", source=source))


@dataclass(frozen=True, slots=True)
class SelectOption:
    label: str
    value: str


@dataclass(frozen=True, slots=True)
class DiscoverSpec:
    """How to enumerate candidate values for a flux variable at prompt time."""

    command: str
    parse: str = ""
    prompt: str = "input"
    also_sets: Mapping[str, int] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, label: str, source: str | None = None) -> "DiscoverSpec":
        also_sets_raw = data.get("also_sets") or {}
        if not isinstance(also_sets_raw, Mapping):
            raise ManifestError(f"{label}discover.also_sets must be a mapping", source=source)
        also_sets: Dict[str, int] = {}
        for name, index in also_sets_raw.items():
            if not isinstance(index, int) or isinstance(index, bool):
                raise ManifestError(f"{label}discover.also_sets.{name} must be an integer", source=source)
            also_sets[str(name)] = index
        return cls(
            command=_text(data, "command", label=f"{label}discover.", source=source),
            parse=_text(data, "parse", label=f"{label}discover.", source=source),
            prompt=_text(data, "prompt", label=f"{label}discover.", source=source) or "input",
            also_sets=also_sets,
        )


@dataclass(frozen=True, slots=True)
class FluxVar:
    """A typed template variable declared by a mold or schema file."""

    name: str
    type: str = ""
    required: bool = False
    default: str = ""
    description: str = ""
    options: tuple[SelectOption, ...] = ()
    discover: DiscoverSpec | None = None

    @classmethod
    def from_mapping(cls, data: Any, *, index: int, source: str | None = None) -> "FluxVar":
        label = f"flux[{index}]."
        if not isinstance(data, Mapping):
            raise ManifestError(f"flux[{index}] must be a mapping", source=source)
        options = []
        for position, raw in enumerate(_entries(data, "options", source=source)):
            if isinstance(raw, Mapping):
                value = scalar_text(raw.get("value"))
                options.append(SelectOption(label=scalar_text(raw.get("label")) or value, value=value))
            elif isinstance(raw, list):
                raise ManifestError(f"{label}options[{position}] must be a mapping or scalar", source=source)
            else:
                text = scalar_text(raw)
                options.append(SelectOption(label=text, value=text))
        discover_raw = data.get("discover")
        discover = None
        if discover_raw is not None:
            if not isinstance(discover_raw, Mapping):
                raise ManifestError(f"{label}discover must be a mapping", source=source)
            discover = DiscoverSpec.from_mapping(discover_raw, label=label, source=source)
        required = data.get("required", False)
        if required is None:
            required = False
        if not isinstance(required, bool):
            raise ManifestError(f"{label}required must be a boolean", source=source)
        return cls(
            name=_text(data, "name", label=label, source=source),
            type=_text(data, "type", label=label, source=source),
            required=required,
            default=_text(data, "default", label=label, source=source),
            description=_text(data, "description", label=label, source=source),
            options=tuple(options),
            discover=discover,
        )


@dataclass(frozen=True, slots=True)
class Dependency:
    ingot: str
    version: str


# Output mapping ------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class OutputTarget:
    """Destination for one output mapping entry."""

    dest: str
    process: bool = True


@dataclass(frozen=True, slots=True)
class OutputAbsent:
    """No ``output`` declared: files keep their own paths."""


@dataclass(frozen=True, slots=True)
class OutputParent:
    """``output: <path>``: top-level directories are re-rooted under ``path``."""

    path: str


@dataclass(frozen=True, slots=True)
class OutputExplicit:
    """``output: {src: dest, ...}``: explicit source-to-destination entries."""

    entries: Mapping[str, OutputTarget]


OutputSpec = Union[OutputAbsent, OutputParent, OutputExplicit]


def parse_output_target(value: Any, *, key: str) -> OutputTarget:
    if isinstance(value, str):
        return OutputTarget(dest=value)
    if isinstance(value, Mapping):
        dest = value.get("dest", "")
        if not isinstance(dest, str):
            raise ManifestError(f"output key {key!r}: dest must be a string")
        process = value.get("process", True)
        if not isinstance(process, bool):
            raise ManifestError(f"output key {key!r}: process must be a boolean")
        return OutputTarget(dest=dest, process=process)
    raise ManifestError(f"output key {key!r}: value must be a string or mapping, got {type(value).__name__}")


def parse_output_spec(raw: Any) -> OutputSpec:
    """Turn the raw ``output`` manifest value into its tagged variant."""

    if raw is None:
        return OutputAbsent()
    if isinstance(raw, str):
        return OutputParent(path=raw)
    if isinstance(raw, Mapping):
        entries = {str(key): parse_output_target(value, key=str(key)) for key, value in raw.items()}
        return OutputExplicit(entries=entries)
    raise ManifestError(f"output must be a string or mapping, got {type(raw).__name__}")


# Manifests -----------------------------------------------------------------


def parse_flux_schema(data: Any, *, source: str | None = None) -> tuple[FluxVar, ...]:
    """Parse a list of flux declarations (a schema file or a manifest section)."""

    if data is None:
        return ()
    if not isinstance(data, list):
        raise ManifestError("flux schema must be a list of declarations", source=source)
    return tuple(FluxVar.from_mapping(item, index=index, source=source) for index, item in enumerate(data))


@dataclass(frozen=True, slots=True)
class Mold:
    """A parsed ``mold.yaml`` manifest."""

    api_version: str
    kind: str
    name: str
    version: str
    description: str = ""
    author: Author = field(default_factory=Author)
    requires: Requires = field(default_factory=Requires)
    flux: tuple[FluxVar, ...] = ()
    dependencies: tuple[Dependency, ...] = ()
    output_raw: Any = None

    @property
    def output(self) -> OutputSpec:
        return parse_output_spec(self.output_raw)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, source: str | None = MOLD_MANIFEST) -> "Mold":
        author = _section(data, "author", source=source)
        dependencies = []
        for index, raw in enumerate(_entries(data, "dependencies", source=source)):
            if not isinstance(raw, Mapping):
                raise ManifestError(f"dependencies[{index}] must be a mapping", source=source)
            label = f"dependencies[{index}]."
            dependencies.append(
                Dependency(
                    ingot=_text(raw, "ingot", label=label, source=source),
                    version=_text(raw, "version", label=label, source=source),
                )
            )
        return cls(
            api_version=_text(data, "apiVersion", label="", source=source),
            kind=_text(data, "kind", label="", source=source),
            name=_text(data, "name", label="", source=source),
            version=_text(data, "version", label="", source=source),
            description=_text(data, "description", label="", source=source),
            author=Author(
                name=_text(author, "name", label="author.", source=source),
                url=_text(author, "url", label="author.", source=source),
            ),
            requires=Requires.from_mapping(_section(data, "requires", source=source), source=source),
            flux=parse_flux_schema(list(_entries(data, "flux", source=source)), source=source),
            dependencies=tuple(dependencies),
            output_raw=data.get("output"),
        )


@dataclass(frozen=True, slots=True)
class Ingot:
    """A parsed ``ingot.yaml`` manifest."""

    api_version: str
    kind: str
    name: str
    version: str
    description: str = ""
    files: tuple[str, ...] = ()
    requires: Requires = field(default_factory=Requires)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, source: str | None = INGOT_MANIFEST) -> "Ingot":
        try:
            files = normalize_string_list(data.get("files"), field_name="files")
        except TypeError as exc:
            raise ManifestError(str(exc), source=source) from exc
        return cls(
            api_version=_text(data, "apiVersion", label="", source=source),
            kind=_text(data, "kind", label="", source=source),
            name=_text(data, "name", label="", source=source),
            version=_text(data, "version", label="", source=source),
            description=_text(data, "description", label="", source=source),
            files=tuple(files),
            requires=Requires.from_mapping(_section(data, "requires", source=source), source=source),
        )


def _load_mapping(path: Path, *, source: str) -> Mapping[str, Any]:
    try:
        data = load_document(path)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        raise ManifestError(f"cannot read manifest: {exc}", source=source) from exc
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ManifestError("manifest must contain a mapping at the root", source=source)
    return data


def load_mold(path: Path) -> Mold:
    """Load ``mold.yaml`` from ``path``."""

    return Mold.from_mapping(_load_mapping(path, source=path.name), source=path.name)


def load_ingot(path: Path) -> Ingot:
    """Load ``ingot.yaml`` from ``path``."""

    return Ingot.from_mapping(_load_mapping(path, source=path.name), source=path.name)


def load_flux_schema(path: Path) -> tuple[FluxVar, ...] | None:
    """Load a flux schema file; a missing file yields ``None``."""

    if not path.is_file():
        return None
    try:
        data = load_document(path)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        raise ManifestError(f"cannot read flux schema: {exc}", source=path.name) from exc
    return parse_flux_schema(data, source=path.name)


__all__ = [
    "Author",
    "Dependency",
    "DiscoverSpec",
    "FLUX_DEFAULTS_FILE",
    "FLUX_SCHEMA_FILE",
    "FLUX_TYPES",
    "FluxVar",
    "INGOT_MANIFEST",
    "Ingot",
    "MOLD_MANIFEST",
    "Mold",
    "OutputAbsent",
    "OutputExplicit",
    "OutputParent",
    "OutputSpec",
    "OutputTarget",
    "Requires",
    "SelectOption",
    "load_flux_schema",
    "load_ingot",
    "load_mold",
    "parse_flux_schema",
    "parse_output_spec",
    "parse_output_target",
    "scalar_text",
]
