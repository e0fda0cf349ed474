"""
External hook chaining.

Besides in-process handlers, a phase may run independently maintained
scripts. They live in ``<dir>/<phase-name>/`` under the default directory
(``$GIT_DIR/hooks.d``) and every directory listed in ``githooks.hooks``.
Any executable regular file there is run with the hook's arguments and
standard input. Scripts run one at a time in lexicographic order; the first
non-zero exit stops the chain.
"""

import os
import subprocess
from collections.abc import Iterable
from pathlib import Path

import structlog

from .phases import HookPhase
from .results import ExternalHookFailure

logger = structlog.get_logger()

__all__ = [
    "DEFAULT_EXTERNAL_DIR",
    "ExternalHookRunner",
    "find_external_hooks",
]

DEFAULT_EXTERNAL_DIR = "hooks.d"


def find_external_hooks(phase: HookPhase, directories: Iterable[Path]) -> list[Path]:
    """List the executable files for a phase.

    Directories are searched in the order given; inside each one files are
    sorted by name. Missing directories are skipped.
    """
    found: list[Path] = []
    for base in directories:
        phase_dir = Path(base) / phase.value
        if not phase_dir.is_dir():
            continue
        for path in sorted(phase_dir.iterdir(), key=lambda p: p.name):
            if path.is_file() and os.access(path, os.X_OK):
                found.append(path)
    return found


class ExternalHookRunner:
    """Runs external hook scripts synchronously, without timeout."""

    def __init__(self, directories: list[Path], cwd: str | None = None) -> None:
        self.directories = directories
        self.cwd = cwd
        self.log = logger.bind(component="externals")

    def run(self, phase: HookPhase, args: list[str], stdin: str = "") -> list[Path]:
        """Run every external hook for a phase.

        Args:
            phase: Current phase.
            args: Arguments passed to the dispatcher, forwarded verbatim.
            stdin: Standard input received by the dispatcher, re-fed to each script.

        Returns:
            The scripts that ran successfully.

        Raises:
            ExternalHookFailure: On the first script exiting non-zero (or that
                cannot be started). Remaining scripts are not run.
        """
        completed: list[Path] = []
        for script in find_external_hooks(phase, self.directories):
            self.log.debug("external.start", script=str(script))
            try:
                proc = subprocess.run(
                    [str(script), *args],
                    input=stdin,
                    capture_output=True,
                    text=True,
                    cwd=self.cwd,
                )
            except OSError as e:
                self.log.error("external.exec_error", script=str(script), error=str(e))
                raise ExternalHookFailure(str(script), 126, str(e)) from e

            if proc.returncode != 0:
                output = "\n".join(s for s in (proc.stdout, proc.stderr) if s and s.strip())
                self.log.warning(
                    "external.failed",
                    script=str(script),
                    exit_code=proc.returncode,
                    stderr=proc.stderr[:200],
                )
                raise ExternalHookFailure(str(script), proc.returncode, output)

            completed.append(script)
        return completed
