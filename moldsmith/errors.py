"""Exception hierarchy shared by the mold pipeline."""
from __future__ import annotations

from typing import Iterable, List, Sequence


class MoldsmithError(Exception):
    """Base class for mold pipeline failures."""


class ManifestError(MoldsmithError, ValueError):
    """Raised when a manifest cannot be parsed into its model."""

    def __init__(self, message: str, *, source: str | None = None):
        super().__init__(f"{source}: {message}" if source else message)
        self.source = source


class FluxOverrideError(MoldsmithError, ValueError):
    """Raised for malformed ``key=value`` overrides."""


class FluxValidationError(MoldsmithError):
    """Raised when flux values violate their schema; carries every violation."""

    def __init__(self, errors: Iterable[str]):
        self.errors: List[str] = list(errors)
        bullet = "\n  - "
        super().__init__(f"flux validation failed:{bullet}{bullet.join(self.errors)}")


class ResolutionError(MoldsmithError):
    """Raised when a render or resolve step cannot locate what it needs."""


class IngotNotFoundError(ResolutionError):
    """Raised when an ingot is absent from every search root."""

    def __init__(self, name: str, searched: Sequence[str] = ()):
        message = f"ingot {name!r} not found"
        if searched:
            message = f"{message} (searched: {', '.join(searched)})"
        super().__init__(message)
        self.name = name
        self.searched = tuple(searched)


class CircularIngotError(ResolutionError):
    """Raised when an ingot transitively references itself."""

    def __init__(self, chain: Sequence[str]):
        self.chain = tuple(chain)
        super().__init__(f"circular ingot reference detected: {' -> '.join(self.chain)}")


class OutputSourceError(ResolutionError):
    """Raised when an output mapping names a source that does not exist."""

    def __init__(self, source: str):
        super().__init__(f"output source {source!r} does not exist in the mold")
        self.source = source


class DiscoveryError(MoldsmithError):
    """Raised when a discovery command fails or its output cannot be parsed."""


__all__ = [
    "CircularIngotError",
    "DiscoveryError",
    "FluxOverrideError",
    "FluxValidationError",
    "IngotNotFoundError",
    "ManifestError",
    "MoldsmithError",
    "OutputSourceError",
    "ResolutionError",
]
