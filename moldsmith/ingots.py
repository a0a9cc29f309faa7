"""Lookup and rendering of ingots (reusable partial documents)."""
from __future__ import annotations

from pathlib import Path
from typing import Any, List, Mapping, Sequence

from .diagnostics import DiagnosticSink
from .errors import CircularIngotError, IngotNotFoundError, ResolutionError
from .manifest import INGOT_MANIFEST, load_ingot
from .render import render_template


INGOTS_DIR = "ingots"


def _contained(base: Path, candidate: Path) -> bool:
    try:
        candidate.resolve().relative_to(base.resolve())
    except ValueError:
        return False
    return True


class IngotResolver:
    """Resolve ``ingot "name"`` calls against an ordered list of roots.

    Each root is searched under ``ingots/``: a directory holding
    ``ingot.yaml`` wins over a bare ``<name>.md`` document, and the first root
    with a match ends the search. Resolved content is rendered with the same
    context so ingots may include other ingots.
    """

    def __init__(self, roots: Sequence[Path]):
        self.roots: List[Path] = [Path(root) for root in roots]

    def searched_locations(self) -> List[str]:
        return [str(root / INGOTS_DIR) for root in self.roots]

    def load(self, name: str) -> tuple[str, str]:
        """Return ``(content, origin)`` for ``name`` without rendering it."""

        for root in self.roots:
            base = root / INGOTS_DIR
            manifest_path = base / name / INGOT_MANIFEST
            if manifest_path.is_file() and _contained(base, manifest_path):
                return self._read_manifest_ingot(name, manifest_path), str(manifest_path)
            bare_path = base / f"{name}.md"
            if bare_path.is_file() and _contained(base, bare_path):
                return bare_path.read_text(encoding="utf-8"), str(bare_path)
        raise IngotNotFoundError(name, self.searched_locations())

    def _read_manifest_ingot(self, name: str, manifest_path: Path) -> str:
        ingot = load_ingot(manifest_path)
        directory = manifest_path.parent
        parts: List[str] = []
        for entry in ingot.files:
            path = directory / entry
            if not _contained(directory, path):
                raise ResolutionError(f"ingot {name!r} file {entry!r} escapes the ingot directory")
            if not path.is_file():
                raise IngotNotFoundError(f"{name}/{entry}", [str(directory)])
            parts.append(path.read_text(encoding="utf-8"))
        return "".join(parts)

    def resolve(
        self,
        name: str,
        context: Mapping[str, Any],
        *,
        sink: DiagnosticSink | None = None,
        stack: tuple[str, ...] = (),
    ) -> str:
        """Render ingot ``name``; ``stack`` holds the ingots already being expanded."""

        if name in stack:
            raise CircularIngotError((*stack, name))
        content, origin = self.load(name)
        return render_template(
            content,
            context,
            ingots=self,
            sink=sink,
            source=origin,
            ingot_stack=(*stack, name),
        )


__all__ = ["INGOTS_DIR", "IngotResolver"]
