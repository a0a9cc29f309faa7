"""Map mold source files to destination paths in the target project."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Set

import posixpath

from .errors import OutputSourceError
from .manifest import (
    FLUX_DEFAULTS_FILE,
    FLUX_SCHEMA_FILE,
    INGOT_MANIFEST,
    MOLD_MANIFEST,
    OutputAbsent,
    OutputExplicit,
    OutputParent,
    OutputSpec,
)


RESERVED_DIRS = frozenset({"ingots"})
RESERVED_ROOT_FILES = frozenset({MOLD_MANIFEST, INGOT_MANIFEST, FLUX_DEFAULTS_FILE, FLUX_SCHEMA_FILE})

# Ranking used when several rules claim the same source.
_AUTO, _DIRECTORY, _FILE = 0, 1, 2


@dataclass(frozen=True, slots=True)
class ResolvedFile:
    source: str
    destination: str
    process: bool = True


def _normalize(path: str) -> str:
    text = path.replace("\\", "/").strip()
    if not text:
        return ""
    normalized = posixpath.normpath(text)
    return "" if normalized == "." else normalized.lstrip("/")


def _join(prefix: str, rest: str) -> str:
    return _normalize(posixpath.join(prefix, rest)) if prefix else _normalize(rest)


def is_reserved(source: str) -> bool:
    """Return True when ``source`` is excluded from auto-discovery."""

    head, _, tail = source.partition("/")
    if tail:
        return head in RESERVED_DIRS or head.startswith(".")
    return head in RESERVED_ROOT_FILES or head.startswith(".")


def _auto_destination(source: str, parent: str | None) -> str:
    if parent and "/" in source:
        return _join(parent, source)
    return source


def _auto_discover(files: Iterable[str], parent: str | None) -> Dict[str, ResolvedFile]:
    return {
        source: ResolvedFile(source, _auto_destination(source, parent), True)
        for source in files
        if not is_reserved(source)
    }


def _directories(files: Iterable[str]) -> Set[str]:
    directories: Set[str] = set()
    for source in files:
        parent = posixpath.dirname(source)
        while parent:
            directories.add(parent)
            parent = posixpath.dirname(parent)
    return directories


def _resolve_explicit(spec: OutputExplicit, files: List[str]) -> Dict[str, ResolvedFile]:
    available = set(files)
    directories = _directories(files)
    ranked: Dict[str, tuple[tuple[int, int], ResolvedFile]] = {}

    def claim(rank: tuple[int, int], resolved: ResolvedFile) -> None:
        current = ranked.get(resolved.source)
        if current is None or rank > current[0]:
            ranked[resolved.source] = (rank, resolved)

    for key, target in spec.entries.items():
        source_key = _normalize(key)
        if source_key == "" or source_key in directories:
            # "." names the mold root: every file sits below it.
            prefix = source_key + "/" if source_key else ""
            for source in files:
                if not source_key and is_reserved(source):
                    continue
                if source.startswith(prefix):
                    destination = _join(target.dest, source[len(prefix):])
                    claim((_DIRECTORY, len(source_key)), ResolvedFile(source, destination, target.process))
        elif source_key in available:
            claim((_FILE, 0), ResolvedFile(source_key, _normalize(target.dest), target.process))
        else:
            raise OutputSourceError(key)

    for source, resolved in _auto_discover(files, None).items():
        claim((_AUTO, 0), resolved)
    return {source: resolved for source, (_, resolved) in ranked.items()}


def resolve_files(spec: OutputSpec, sources: Iterable[str]) -> List[ResolvedFile]:
    """Resolve every source file to its destination, sorted by source path.

    ``sources`` are POSIX paths relative to the mold root. A source claimed
    by several explicit keys resolves to the most specific one: a file key,
    then the longest directory key, then auto-discovery.
    """

    files = sorted({path for path in (_normalize(source) for source in sources) if path})
    if isinstance(spec, OutputAbsent):
        resolved = _auto_discover(files, None)
    elif isinstance(spec, OutputParent):
        resolved = _auto_discover(files, _normalize(spec.path))
    elif isinstance(spec, OutputExplicit):
        resolved = _resolve_explicit(spec, files)
    else:
        raise TypeError(f"unsupported output mapping: {spec!r}")
    return [resolved[source] for source in sorted(resolved)]


__all__ = [
    "RESERVED_DIRS",
    "RESERVED_ROOT_FILES",
    "ResolvedFile",
    "is_reserved",
    "resolve_files",
]
