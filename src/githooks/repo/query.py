"""
Repository queries used by handlers.

RepositoryQuery is the interface handlers depend on. GitRepository answers
it by running git as a child process in the hook's working directory.
"""

import os
import subprocess
from abc import ABC, abstractmethod
from collections.abc import Mapping
from pathlib import Path

import structlog

logger = structlog.get_logger()

__all__ = [
    "GitRepository",
    "RepositoryQuery",
    "RepositoryQueryError",
]


class RepositoryQueryError(Exception):
    """A git query failed."""

    pass


class RepositoryQuery(ABC):
    """What handlers may ask about the repository."""

    @abstractmethod
    def git_dir(self) -> Path:
        """Repository git directory."""

    @abstractmethod
    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        """True if ``ancestor`` is reachable from ``descendant``."""

    @abstractmethod
    def changed_files(self, old: str, new: str) -> list[str]:
        """Paths that differ between two commits."""

    @abstractmethod
    def list_refs(self, pattern: str = "refs/") -> list[str]:
        """Reference names under a prefix."""

    @abstractmethod
    def file_content(self, rev: str, path: str) -> str:
        """Contents of ``path`` at revision ``rev``."""


class GitRepository(RepositoryQuery):
    """RepositoryQuery backed by the git command line."""

    def __init__(self, cwd: str | None = None, env: Mapping[str, str] | None = None) -> None:
        self.cwd = cwd
        self.env = os.environ if env is None else env
        self.log = logger.bind(component="repo")

    def _git(self, *args: str, check: bool = True) -> subprocess.CompletedProcess:
        try:
            proc = subprocess.run(
                ["git", *args],
                capture_output=True,
                text=True,
                cwd=self.cwd,
            )
        except OSError as e:
            raise RepositoryQueryError(f"cannot run git: {e}") from e
        if check and proc.returncode != 0:
            self.log.debug("repo.git_failed", args=args, stderr=proc.stderr[:200])
            raise RepositoryQueryError(
                f"git {' '.join(args)} failed: {proc.stderr.strip()}"
            )
        return proc

    def git_dir(self) -> Path:
        """Git directory, absolute; relative values are taken from ``cwd``."""
        git_dir = self.env.get("GIT_DIR") or self._git("rev-parse", "--git-dir").stdout.strip()
        path = Path(git_dir)
        if not path.is_absolute():
            path = Path(self.cwd or os.getcwd()) / path
        return path

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        proc = self._git("merge-base", "--is-ancestor", ancestor, descendant, check=False)
        if proc.returncode not in (0, 1):
            raise RepositoryQueryError(f"git merge-base failed: {proc.stderr.strip()}")
        return proc.returncode == 0

    def changed_files(self, old: str, new: str) -> list[str]:
        out = self._git("diff", "--name-only", "-z", old, new).stdout
        return [p for p in out.split("\0") if p]

    def list_refs(self, pattern: str = "refs/") -> list[str]:
        out = self._git("for-each-ref", "--format=%(refname)", pattern).stdout
        return out.split()

    def file_content(self, rev: str, path: str) -> str:
        return self._git("cat-file", "blob", f"{rev}:{path}").stdout
