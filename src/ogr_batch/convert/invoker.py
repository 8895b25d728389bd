"""Locate and run the ogr2ogr executable."""

from __future__ import annotations

import os
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Sequence

from .tasks import TaskStatus

CONVERTER_NAME = "ogr2ogr"


class SetupError(RuntimeError):
    """Raised for problems that abort a run before any task is scheduled."""


class SourceNotFoundError(SetupError):
    """Raised when the source directory does not exist."""


class ConverterNotFoundError(SetupError):
    """Raised when ogr2ogr cannot be found on the search path."""


@dataclass(frozen=True)
class InvocationResult:
    exit_code: int
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


def build_search_path(
    tool_dir: Optional[Path], env: Optional[Mapping[str, str]] = None
) -> str:
    """Return ``PATH`` with ``tool_dir`` prepended when it exists."""

    env_map = os.environ if env is None else env
    current = env_map.get("PATH", "")
    if tool_dir is None or not tool_dir.is_dir():
        return current
    head = str(tool_dir.resolve())
    return os.pathsep.join(part for part in (head, current) if part)


def converter_environment(
    search_path: str, env: Optional[Mapping[str, str]] = None
) -> dict[str, str]:
    merged = dict(os.environ if env is None else env)
    merged["PATH"] = search_path
    return merged


def find_converter(search_path: str, name: str = CONVERTER_NAME) -> str:
    """Return the full path of ``name`` on ``search_path``."""

    found = shutil.which(name, path=search_path)
    if found is None:
        raise ConverterNotFoundError(
            f"'{name}' was not found on PATH. Install GDAL or pass "
            "--tool-dir pointing at the directory that contains it."
        )
    return found


def invoke(
    argv: Sequence[str],
    *,
    env: Optional[Mapping[str, str]] = None,
    timeout: Optional[float] = None,
) -> InvocationResult:
    """Run the converter and block until it exits.

    Spawn errors (``FileNotFoundError``, ``PermissionError``) and
    ``subprocess.TimeoutExpired`` propagate to the caller.
    """

    completed = subprocess.run(
        list(argv),
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.PIPE,
        env=None if env is None else dict(env),
        timeout=timeout,
        check=False,
    )
    stderr = completed.stderr.decode("utf-8", errors="replace")
    return InvocationResult(exit_code=completed.returncode, stderr=stderr)


def classify(result: InvocationResult) -> tuple[TaskStatus, Optional[str]]:
    if result.ok:
        return TaskStatus.SUCCESS, None
    reason = f"{CONVERTER_NAME} exited with code {result.exit_code}"
    detail = _last_line(result.stderr)
    if detail:
        reason = f"{reason}: {detail}"
    return TaskStatus.FAILED, reason


def _last_line(text: str) -> str:
    for line in reversed(text.splitlines()):
        stripped = line.strip()
        if stripped:
            return stripped
    return ""


__all__ = [
    "CONVERTER_NAME",
    "ConverterNotFoundError",
    "InvocationResult",
    "SetupError",
    "SourceNotFoundError",
    "build_search_path",
    "classify",
    "converter_environment",
    "find_converter",
    "invoke",
]
