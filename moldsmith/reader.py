"""Read molds and ingots from a directory on disk."""
from __future__ import annotations

from pathlib import Path
from typing import Any, List, Mapping

import yaml

from core.config_loader import load_config_file

from .errors import ManifestError
from .manifest import (
    FLUX_DEFAULTS_FILE,
    FLUX_SCHEMA_FILE,
    INGOT_MANIFEST,
    MOLD_MANIFEST,
    FluxVar,
    Ingot,
    Mold,
    load_flux_schema,
    load_ingot,
    load_mold,
)


class MoldReader:
    """Access to the manifests and file tree of a mold or ingot directory."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def __repr__(self) -> str:
        return f"MoldReader({str(self.root)!r})"

    @property
    def mold_path(self) -> Path:
        return self.root / MOLD_MANIFEST

    @property
    def ingot_path(self) -> Path:
        return self.root / INGOT_MANIFEST

    def has_mold(self) -> bool:
        return self.mold_path.is_file()

    def has_ingot(self) -> bool:
        return self.ingot_path.is_file()

    def load_mold(self) -> Mold:
        return load_mold(self.mold_path)

    def load_ingot(self) -> Ingot:
        return load_ingot(self.ingot_path)

    def load_flux_schema(self) -> tuple[FluxVar, ...] | None:
        return load_flux_schema(self.root / FLUX_SCHEMA_FILE)

    def load_flux_defaults(self) -> Mapping[str, Any]:
        """Return the mapping stored in ``flux.yaml`` (empty when absent)."""

        path = self.root / FLUX_DEFAULTS_FILE
        if not path.is_file():
            return {}
        try:
            return load_config_file(path)
        except (OSError, TypeError, ValueError, yaml.YAMLError) as exc:
            raise ManifestError(f"cannot load flux defaults: {exc}", source=FLUX_DEFAULTS_FILE) from exc

    def list_files(self) -> List[str]:
        """Return every file below the root as a sorted POSIX relative path."""

        return sorted(
            path.relative_to(self.root).as_posix()
            for path in self.root.rglob("*")
            if path.is_file()
        )

    def exists(self, source: str) -> bool:
        return (self.root / source).is_file()

    def read_text(self, source: str) -> str:
        return (self.root / source).read_text(encoding="utf-8")

    def read_bytes(self, source: str) -> bytes:
        return (self.root / source).read_bytes()


__all__ = ["MoldReader"]
