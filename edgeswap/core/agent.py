"""Build/execution agent: runs the per-stage build steps.

The orchestrator never shells out itself.  Each stage calls
``ExecutionAgent.run(stage_name, env)`` with the hydrated parameter
environment and inspects the ``AgentResult``; a nonzero exit becomes
``AgentFailure`` in the stage.

``ShellAgent`` reports results through marker lines on stdout::

    EDGESWAP_VERSION=v7
    EDGESWAP_ARTIFACT=/workspace/build
"""

from __future__ import annotations

import logging
import os
import re
import subprocess
from pathlib import Path
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

VERSION_MARKER = "EDGESWAP_VERSION="
ARTIFACT_MARKER = "EDGESWAP_ARTIFACT="

_TRAILING_NUMBER = re.compile(r"^(.*?)(\d+)$")


class AgentResult(BaseModel):
    """What one agent step reported."""

    model_config = ConfigDict(frozen=True)

    exit_code: int = 0
    output_artifact_ref: str = ""
    version: str | None = None
    output: str = ""

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


@runtime_checkable
class ExecutionAgent(Protocol):
    """Protocol every build/execution agent must satisfy."""

    def run(self, stage_name: str, env: dict[str, str]) -> AgentResult: ...


def bump_version(version: str) -> str:
    """Increment the trailing number of *version* (``v1`` -> ``v2``).

    Versions without a trailing number get ``.1`` appended.
    """
    match = _TRAILING_NUMBER.match(version)
    if match is None:
        return f"{version}.1"
    head, number = match.groups()
    return f"{head}{int(number) + 1}"


class ShellAgent:
    """Run one configured shell command per stage via ``subprocess``.

    Parameters
    ----------
    commands:
        Stage name to shell command.  Stages without a command succeed
        without running anything.
    workdir:
        Working directory for every command.
    timeout_seconds:
        Per-command timeout; a timeout is reported as exit code 124.
    """

    def __init__(
        self,
        commands: dict[str, str],
        workdir: Path,
        *,
        timeout_seconds: float = 900.0,
    ) -> None:
        self._commands = dict(commands)
        self._workdir = Path(workdir)
        self._timeout = timeout_seconds

    def run(self, stage_name: str, env: dict[str, str]) -> AgentResult:
        command = self._commands.get(stage_name)
        if not command:
            logger.debug("No command configured for stage %s", stage_name)
            return AgentResult()

        logger.info("Agent running %s: %s", stage_name, command)
        try:
            completed = subprocess.run(
                command,
                shell=True,
                cwd=self._workdir,
                env={**os.environ, **env},
                capture_output=True,
                text=True,
                timeout=self._timeout,
            )
        except subprocess.TimeoutExpired as exc:
            logger.error("Agent step %s timed out after %ss", stage_name, self._timeout)
            return AgentResult(exit_code=124, output=str(exc.stdout or ""))

        output = completed.stdout + completed.stderr
        version = None
        artifact = ""
        for line in completed.stdout.splitlines():
            if line.startswith(VERSION_MARKER):
                version = line[len(VERSION_MARKER):].strip() or None
            elif line.startswith(ARTIFACT_MARKER):
                artifact = line[len(ARTIFACT_MARKER):].strip()

        if artifact and not Path(artifact).is_absolute():
            artifact = str(self._workdir / artifact)

        return AgentResult(
            exit_code=completed.returncode,
            output_artifact_ref=artifact,
            version=version,
            output=output,
        )


class LocalBuildAgent:
    """Agent that renders a minimal static site per version.

    Used by the local simulator: ``build`` writes ``index.html`` for the
    version in ``REACT_APP_VERSION_FRONTEND`` under ``{output_root}/{version}``.
    Other stages succeed without side effects.
    """

    def __init__(self, output_root: Path) -> None:
        self._root = Path(output_root)

    def run(self, stage_name: str, env: dict[str, str]) -> AgentResult:
        if stage_name != "build":
            return AgentResult()

        version = env["REACT_APP_VERSION_FRONTEND"]
        out_dir = self._root / version
        out_dir.mkdir(parents=True, exist_ok=True)
        (out_dir / "index.html").write_text(
            f"<!doctype html><title>{env.get('SERVICE', '')}</title>"
            f"<p>version {version}</p>\n",
            encoding="utf-8",
        )
        return AgentResult(output_artifact_ref=str(out_dir), version=version)
