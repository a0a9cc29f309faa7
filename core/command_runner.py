"""Utilities for executing external commands with a recording stand-in."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Sequence
import os
import shlex
import subprocess


SHELL: tuple[str, ...] = ("sh", "-c")
"""Interpreter prefix used for shell command strings."""


@dataclass
class CommandResult:
    """Represents the outcome of an executed command."""

    command: Sequence[str]
    returncode: int
    stdout: str
    stderr: str


class CommandError(RuntimeError):
    """Raised when a command fails."""

    def __init__(self, result: CommandResult):
        message = f"Command failed with exit code {result.returncode}: {' '.join(map(shlex.quote, result.command))}"
        detail = result.stderr.strip()
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.result = result


class CommandRunner:
    """Abstract command runner interface."""

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
    ) -> CommandResult:
        raise NotImplementedError

    def run_shell(
        self,
        script: str,
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
    ) -> CommandResult:
        """Run ``script`` through the shell."""

        return self.run([*SHELL, script], cwd=cwd, env=env, check=check)


class SubprocessCommandRunner(CommandRunner):
    """Command runner that executes commands via :mod:`subprocess`."""

    @staticmethod
    def _merge_environment(env: Mapping[str, str] | None) -> Dict[str, str] | None:
        if env is None:
            return None
        merged = os.environ.copy()
        merged.update(env)
        return merged

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
    ) -> CommandResult:
        try:
            process = subprocess.run(
                list(command),
                cwd=str(cwd) if cwd else None,
                env=self._merge_environment(env),
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as exc:
            result = CommandResult(command=command, returncode=127, stdout="", stderr=str(exc))
        else:
            result = CommandResult(
                command=command,
                returncode=process.returncode,
                stdout=process.stdout,
                stderr=process.stderr,
            )
        if check and result.returncode != 0:
            raise CommandError(result)
        return result


@dataclass(slots=True)
class RecordedCommand:
    command: List[str]
    cwd: str | None
    env: Dict[str, str]


@dataclass(slots=True)
class CannedResponse:
    """Output returned by :class:`RecordingCommandRunner` for a command."""

    stdout: str = ""
    stderr: str = ""
    returncode: int = 0


class RecordingCommandRunner(CommandRunner):
    """Command runner that records commands instead of executing them.

    ``responses`` maps the final command argument (the script for shell
    commands) to the output that should be reported for it.
    """

    def __init__(self, responses: Mapping[str, CannedResponse | str] | None = None) -> None:
        self.commands: List[RecordedCommand] = []
        self.responses: Dict[str, CannedResponse] = {}
        for key, value in (responses or {}).items():
            self.responses[key] = value if isinstance(value, CannedResponse) else CannedResponse(stdout=value)

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
    ) -> CommandResult:
        self.commands.append(
            RecordedCommand(command=list(command), cwd=str(cwd) if cwd else None, env=dict(env) if env else {})
        )
        response = self.responses.get(command[-1] if command else "", CannedResponse())
        result = CommandResult(
            command=command,
            returncode=response.returncode,
            stdout=response.stdout,
            stderr=response.stderr,
        )
        if check and result.returncode != 0:
            raise CommandError(result)
        return result


__all__ = [
    "CannedResponse",
    "CommandError",
    "CommandResult",
    "CommandRunner",
    "RecordedCommand",
    "RecordingCommandRunner",
    "SHELL",
    "SubprocessCommandRunner",
]
