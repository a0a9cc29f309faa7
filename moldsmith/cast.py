"""Render a mold into a target directory."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Sequence

from . import flux
from .console import Console
from .diagnostics import Diagnostic, DiagnosticCollector
from .errors import ResolutionError
from .ingots import IngotResolver
from .output import ResolvedFile, resolve_files
from .reader import MoldReader
from .render import render_template


@dataclass(slots=True)
class CastOptions:
    target: Path
    value_files: Sequence[Path] = ()
    overrides: Sequence[str] = ()
    ingot_roots: Sequence[Path] = ()
    dry_run: bool = False


@dataclass(slots=True)
class CastResult:
    context: Dict[str, Any]
    files: List[ResolvedFile] = field(default_factory=list)
    written: List[Path] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)


def _destination(target: Path, resolved: ResolvedFile) -> Path:
    destination = target / resolved.destination
    try:
        destination.resolve().relative_to(target.resolve())
    except ValueError as exc:
        raise ResolutionError(
            f"destination {resolved.destination!r} for {resolved.source!r} escapes the target directory"
        ) from exc
    return destination


def cast(reader: MoldReader, options: CastOptions, *, console: Console | None = None) -> CastResult:
    """Resolve flux, map output paths and render every file of the mold.

    Flux is resolved and validated once before any file is touched. Files
    are processed in source order; the first failure stops the cast.
    """

    console = console or Console(level="none", dry_run=options.dry_run)
    mold = reader.load_mold()
    schema = flux.select_schema(mold.flux, reader.load_flux_schema())
    context = flux.resolve_context(
        schema,
        defaults_file=reader.load_flux_defaults(),
        value_files=options.value_files,
        overrides=options.overrides,
    )
    flux.check(schema, context)
    console.debug(f"Resolved flux for {mold.name}: {context}")

    result = CastResult(context=context)
    result.files = resolve_files(mold.output, reader.list_files())
    resolver = IngotResolver([reader.root, *options.ingot_roots])
    sink = DiagnosticCollector()

    for resolved in result.files:
        destination = _destination(options.target, resolved)
        if resolved.process:
            payload: str | bytes = render_template(
                reader.read_text(resolved.source),
                context,
                ingots=resolver,
                sink=sink,
                source=resolved.source,
            )
        else:
            payload = reader.read_bytes(resolved.source)

        if options.dry_run:
            console.dry(f"{resolved.source} -> {destination}")
            continue
        destination.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(payload, bytes):
            destination.write_bytes(payload)
        else:
            destination.write_text(payload, encoding="utf-8")
        result.written.append(destination)
        console.debug(f"Wrote {destination}")

    result.diagnostics.extend(sink)
    for diagnostic in result.diagnostics:
        console.diagnostic(diagnostic)
    console.info(f"Cast {mold.name} {mold.version}: {len(result.files)} file(s)")
    return result


__all__ = ["CastOptions", "CastResult", "cast"]
