"""Validate a mold or ingot directory without rendering anything."""
from __future__ import annotations

from pathlib import Path
from typing import List, Sequence

import re

from core.template import TemplateSyntaxError

from .diagnostics import DiagnosticCollector, TemperResult
from .errors import ManifestError, OutputSourceError
from .ingots import INGOTS_DIR
from .manifest import (
    FLUX_SCHEMA_FILE,
    FLUX_TYPES,
    INGOT_MANIFEST,
    MOLD_MANIFEST,
    FluxVar,
    Ingot,
    Mold,
    OutputAbsent,
    load_ingot,
)
from .output import resolve_files
from .reader import MoldReader
from .render import check_syntax


SEMVER_PATTERN = re.compile(
    r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(-((0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)(\.(0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*))*))?"
    r"(\+([0-9a-zA-Z-]+(\.[0-9a-zA-Z-]+)*))?$"
)
VERSION_CONSTRAINT_PATTERN = re.compile(r"^[>=<^~!]*\d+\.\d+\.\d+")

DOCUMENT_SUFFIX = ".md"
_ALLOWED_TYPES = ", ".join(FLUX_TYPES)


def _validate_header(manifest: Mold | Ingot, *, expected_kind: str) -> List[str]:
    errors: List[str] = []
    if not manifest.api_version:
        errors.append("apiVersion is required")
    if not manifest.kind:
        errors.append("kind is required")
    elif manifest.kind != expected_kind:
        errors.append(f'kind must be "{expected_kind}", got {manifest.kind!r}')
    if not manifest.name:
        errors.append("name is required")
    if not manifest.version:
        errors.append("version is required")
    elif not SEMVER_PATTERN.match(manifest.version):
        errors.append(f"version {manifest.version!r} is not valid semver")
    constraint = manifest.requires.moldsmith
    if constraint and not VERSION_CONSTRAINT_PATTERN.match(constraint):
        errors.append(f"requires.moldsmith {constraint!r} is not a valid version constraint")
    return errors


def validate_flux_declarations(schema: Sequence[FluxVar]) -> List[str]:
    errors: List[str] = []
    for index, variable in enumerate(schema):
        if not variable.name:
            errors.append(f"flux[{index}].name is required")
        if not variable.type:
            errors.append(f"flux[{index}].type is required")
        elif variable.type not in FLUX_TYPES:
            errors.append(f"flux[{index}].type {variable.type!r} is not valid (allowed: {_ALLOWED_TYPES})")
    return errors


def validate_mold(mold: Mold) -> List[str]:
    """Return every field-level problem in a mold manifest."""

    errors = _validate_header(mold, expected_kind="mold")
    errors.extend(validate_flux_declarations(mold.flux))
    for index, dependency in enumerate(mold.dependencies):
        if not dependency.ingot:
            errors.append(f"dependencies[{index}].ingot is required")
        if not dependency.version:
            errors.append(f"dependencies[{index}].version is required")
        elif not VERSION_CONSTRAINT_PATTERN.match(dependency.version):
            errors.append(
                f"dependencies[{index}].version {dependency.version!r} is not a valid version constraint"
            )
    return errors


def validate_ingot(ingot: Ingot) -> List[str]:
    return _validate_header(ingot, expected_kind="ingot")


def _check_ingot_files(reader: MoldReader, ingot: Ingot, base: str, manifest: str, sink: DiagnosticCollector) -> None:
    for entry in ingot.files:
        path = f"{base}/{entry}" if base else entry
        if not reader.exists(path):
            sink.error(f"referenced file not found: {path}", file=manifest)


def _check_nested_ingots(reader: MoldReader, files: Sequence[str], sink: DiagnosticCollector) -> None:
    prefix = f"{INGOTS_DIR}/"
    for source in files:
        if not source.startswith(prefix) or not source.endswith(f"/{INGOT_MANIFEST}"):
            continue
        try:
            ingot = load_ingot(reader.root / source)
        except ManifestError as exc:
            sink.error(f"failed to parse {source}: {exc}", file=source)
            continue
        _check_ingot_files(reader, ingot, source.rsplit("/", 1)[0], source, sink)


def _check_templates(reader: MoldReader, files: Sequence[str], sink: DiagnosticCollector) -> None:
    for source in files:
        if not source.endswith(DOCUMENT_SUFFIX):
            continue
        try:
            content = reader.read_text(source)
        except (OSError, UnicodeDecodeError) as exc:
            sink.error(f"failed to read file: {exc}", file=source)
            continue
        try:
            check_syntax(content, source=source)
        except TemplateSyntaxError as exc:
            sink.error(f"template syntax error: {exc}", file=source)


def _check_flux_schema(reader: MoldReader, manifest_flux: Sequence[FluxVar], sink: DiagnosticCollector) -> None:
    try:
        schema = reader.load_flux_schema()
    except ManifestError as exc:
        sink.error(f"failed to parse {FLUX_SCHEMA_FILE}: {exc}", file=FLUX_SCHEMA_FILE)
        return
    if schema is None:
        return
    for message in validate_flux_declarations(schema):
        sink.error(message, file=FLUX_SCHEMA_FILE)
    if manifest_flux and schema:
        sink.warning(
            f"flux variables defined in both {MOLD_MANIFEST} and {FLUX_SCHEMA_FILE}; "
            "schema file takes precedence at runtime"
        )


def _temper_mold(reader: MoldReader, result: TemperResult, sink: DiagnosticCollector) -> None:
    files = reader.list_files()
    try:
        mold = reader.load_mold()
    except ManifestError as exc:
        sink.error(f"failed to parse {MOLD_MANIFEST}: {exc}", file=MOLD_MANIFEST)
        mold = None

    if mold is not None:
        result.name = mold.name
        result.version = mold.version
        for message in validate_mold(mold):
            sink.error(message, file=MOLD_MANIFEST)
        try:
            output = mold.output
            if not isinstance(output, OutputAbsent):
                resolve_files(output, files)
        except (ManifestError, OutputSourceError) as exc:
            sink.error(f"resolving output mapping: {exc}", file=MOLD_MANIFEST)

    _check_flux_schema(reader, mold.flux if mold is not None else (), sink)
    _check_nested_ingots(reader, files, sink)
    _check_templates(reader, files, sink)


def _temper_ingot(reader: MoldReader, result: TemperResult, sink: DiagnosticCollector) -> None:
    files = reader.list_files()
    try:
        ingot = reader.load_ingot()
    except ManifestError as exc:
        sink.error(f"failed to parse {INGOT_MANIFEST}: {exc}", file=INGOT_MANIFEST)
        ingot = None

    if ingot is not None:
        result.name = ingot.name
        result.version = ingot.version
        for message in validate_ingot(ingot):
            sink.error(message, file=INGOT_MANIFEST)
        _check_ingot_files(reader, ingot, "", INGOT_MANIFEST, sink)

    _check_nested_ingots(reader, files, sink)
    _check_templates(reader, files, sink)


def temper(target: Path | MoldReader) -> TemperResult:
    """Run every check against a mold or ingot directory.

    The checks are independent: a failure in one never prevents the others
    from running, and the result carries all diagnostics in check order.
    """

    reader = target if isinstance(target, MoldReader) else MoldReader(Path(target))
    result = TemperResult()
    sink = DiagnosticCollector()

    if reader.has_mold():
        result.kind = "mold"
        _temper_mold(reader, result, sink)
    elif reader.has_ingot():
        result.kind = "ingot"
        _temper_ingot(reader, result, sink)
    else:
        sink.error(f"no {MOLD_MANIFEST} or {INGOT_MANIFEST} found")

    result.diagnostics.extend(sink)
    return result


__all__ = [
    "SEMVER_PATTERN",
    "VERSION_CONSTRAINT_PATTERN",
    "temper",
    "validate_flux_declarations",
    "validate_ingot",
    "validate_mold",
]
