"""Render molds of templated documents into a project tree."""

from .diagnostics import Diagnostic, DiagnosticCollector, Severity, TemperResult
from .errors import (
    CircularIngotError,
    DiscoveryError,
    FluxOverrideError,
    FluxValidationError,
    IngotNotFoundError,
    ManifestError,
    MoldsmithError,
    OutputSourceError,
    ResolutionError,
)
from .manifest import Ingot, Mold, parse_output_spec
from .output import ResolvedFile, resolve_files
from .render import preprocess, render_template
from .temper import temper

__version__ = "0.1.0"

__all__ = [
    "CircularIngotError",
    "Diagnostic",
    "DiagnosticCollector",
    "DiscoveryError",
    "FluxOverrideError",
    "FluxValidationError",
    "Ingot",
    "IngotNotFoundError",
    "ManifestError",
    "Mold",
    "MoldsmithError",
    "OutputSourceError",
    "ResolutionError",
    "ResolvedFile",
    "Severity",
    "TemperResult",
    "__version__",
    "parse_output_spec",
    "preprocess",
    "render_template",
    "resolve_files",
    "temper",
]
