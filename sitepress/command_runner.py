"""External tool execution for git, rsync and grep."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Sequence
import os
import shlex
import subprocess

from .errors import ExternalOperationError, ToolUnavailableError


def _quote(command: Sequence[str]) -> str:
    return " ".join(shlex.quote(str(part)) for part in command)


@dataclass
class CommandResult:
    """Exit status and captured output of one command."""

    command: Sequence[str]
    returncode: int
    stdout: str
    stderr: str


class CommandError(ExternalOperationError):
    """Raised when a checked command exits with a nonzero status."""

    def __init__(self, result: CommandResult):
        super().__init__(
            f"{_quote(result.command)} exited with status {result.returncode}\n"
            f"stderr: {result.stderr.strip()}"
        )
        self.result = result


class CommandTimeoutError(ExternalOperationError):
    """Raised when a command does not finish within its timeout."""

    def __init__(self, command: Sequence[str], timeout: float) -> None:
        super().__init__(f"{_quote(command)} did not finish within {timeout}s")
        self.command = list(command)
        self.timeout = timeout


class CommandRunner:
    """Runs one external command and reports its :class:`CommandResult`.

    With ``check`` set, a nonzero exit raises :class:`CommandError`.
    """

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        timeout: float | None = None,
    ) -> CommandResult:
        raise NotImplementedError


class SubprocessCommandRunner(CommandRunner):
    """Runs commands with :func:`subprocess.run`, capturing text output.

    ``env`` entries are layered over the current process environment.
    """

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        timeout: float | None = None,
    ) -> CommandResult:
        environment: Dict[str, str] | None = None
        if env is not None:
            environment = {**os.environ, **env}

        try:
            completed = subprocess.run(
                list(command),
                cwd=cwd,
                env=environment,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except FileNotFoundError as exc:
            raise ToolUnavailableError(str(command[0])) from exc
        except subprocess.TimeoutExpired as exc:
            raise CommandTimeoutError(command, timeout or 0) from exc

        result = CommandResult(list(command), completed.returncode, completed.stdout, completed.stderr)
        if check and result.returncode != 0:
            raise CommandError(result)
        return result


@dataclass(slots=True)
class RecordedCommand:
    command: List[str]
    cwd: Path | None = None
    env: Dict[str, str] = field(default_factory=dict)
    timeout: float | None = None


class RecordingCommandRunner(CommandRunner):
    """Keeps every command it is given and reports success without running it."""

    def __init__(self) -> None:
        self.commands: List[RecordedCommand] = []

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        timeout: float | None = None,
    ) -> CommandResult:
        self.commands.append(RecordedCommand(list(command), cwd, dict(env or {}), timeout))
        return CommandResult(list(command), 0, "", "")


__all__ = [
    "CommandError",
    "CommandResult",
    "CommandRunner",
    "CommandTimeoutError",
    "RecordedCommand",
    "RecordingCommandRunner",
    "SubprocessCommandRunner",
]
