"""Structured diagnostics and the sinks that collect them."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Iterator, List, Protocol


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True, slots=True)
class Diagnostic:
    severity: Severity
    message: str
    file: str | None = None

    def format(self) -> str:
        prefix = f"{self.file}: " if self.file else ""
        return f"{self.severity.value}: {prefix}{self.message}"


class DiagnosticSink(Protocol):
    def emit(self, diagnostic: Diagnostic) -> None:
        ...


class DiagnosticCollector:
    """Sink that keeps diagnostics in arrival order."""

    def __init__(self) -> None:
        self.diagnostics: List[Diagnostic] = []

    def emit(self, diagnostic: Diagnostic) -> None:
        self.diagnostics.append(diagnostic)

    def error(self, message: str, *, file: str | None = None) -> None:
        self.emit(Diagnostic(Severity.ERROR, message, file))

    def warning(self, message: str, *, file: str | None = None) -> None:
        self.emit(Diagnostic(Severity.WARNING, message, file))

    def extend(self, diagnostics: Iterable[Diagnostic]) -> None:
        self.diagnostics.extend(diagnostics)

    def __iter__(self) -> Iterator[Diagnostic]:
        return iter(self.diagnostics)

    def __len__(self) -> int:
        return len(self.diagnostics)


@dataclass(slots=True)
class TemperResult:
    """Outcome of validating a mold or ingot directory."""

    kind: str = ""
    name: str = ""
    version: str = ""
    diagnostics: List[Diagnostic] = field(default_factory=list)

    def has_errors(self) -> bool:
        return any(item.severity is Severity.ERROR for item in self.diagnostics)

    def errors(self) -> List[Diagnostic]:
        return [item for item in self.diagnostics if item.severity is Severity.ERROR]

    def warnings(self) -> List[Diagnostic]:
        return [item for item in self.diagnostics if item.severity is Severity.WARNING]


__all__ = [
    "Diagnostic",
    "DiagnosticCollector",
    "DiagnosticSink",
    "Severity",
    "TemperResult",
]
