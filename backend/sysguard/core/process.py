from __future__ import annotations

import shlex
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from sysguard.logging import get_logger

logger = get_logger()


@dataclass(frozen=True)
class CommandResult:
    command: str
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class ProcessRunner:
    """Thin wrapper over :mod:`subprocess` so callers can be tested without real binaries."""

    def which(self, executable: str) -> str | None:
        return shutil.which(executable)

    def run(
        self,
        command: Sequence[str],
        *,
        env: Optional[dict[str, str]] = None,
        stdout_path: Path | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        display = shlex.join(command)
        logger.debug("process_exec", command=display)
        if stdout_path is not None:
            with stdout_path.open("wb") as handle:
                completed = subprocess.run(
                    list(command),
                    env=env,
                    stdout=handle,
                    stderr=subprocess.PIPE,
                    timeout=timeout,
                    check=False,
                )
            stdout = ""
        else:
            completed = subprocess.run(
                list(command),
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                timeout=timeout,
                check=False,
            )
            stdout = (completed.stdout or b"").decode("utf-8", errors="ignore")
        stderr = (completed.stderr or b"").decode("utf-8", errors="ignore").strip()
        return CommandResult(command=display, returncode=completed.returncode, stdout=stdout, stderr=stderr)


__all__ = ["CommandResult", "ProcessRunner"]
