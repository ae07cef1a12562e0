"""Target tree back-ends — commit and revert working-copy changes.

Two variants share one narrow interface (``commit``, ``revert``,
``is_versioned``): a Git working tree driven through GitPython and a
Subversion working copy driven through the ``svn`` binary.
"""

from __future__ import annotations

import logging
from pathlib import Path

from git import GitCommandError

from patchvault.errors import ConfigError, ExternalToolFailure
from patchvault.models import ToolOutput
from patchvault.utils.git_ops import git_failure, open_repo
from patchvault.utils.patch_tool import LEFTOVER_SUFFIXES, find_leftovers
from patchvault.utils.process import run_command

logger = logging.getLogger(__name__)


class GitTarget:
    """Target tree that is a Git working tree."""

    name = "git"

    def __init__(self, repo_path: str | Path):
        self.path = Path(repo_path)
        self.repo = open_repo(self.path)

    def commit(self, message: str) -> ToolOutput:
        """Stage every change in the working tree and commit it.

        Backup and reject files left by ``patch`` are never staged. Raises
        ExternalToolFailure when git refuses, e.g. nothing to commit.
        """
        excludes = [f":(exclude)*{suffix}" for suffix in sorted(LEFTOVER_SUFFIXES)]
        try:
            self.repo.git.add("--all", "--", ".", *excludes)
            out = self.repo.git.commit("-m", message)
        except GitCommandError as e:
            raise git_failure("git commit", e)
        logger.info("Committed to %s", self.path)
        return ToolOutput(command=["git", "commit"], returncode=0, stdout=out)

    def revert(self) -> ToolOutput:
        """Discard staged and unstaged edits to tracked files."""
        try:
            out = self.repo.git.reset("--hard", "HEAD")
        except GitCommandError as e:
            raise git_failure("git reset", e)
        return ToolOutput(command=["git", "reset", "--hard"], returncode=0, stdout=out)

    def is_versioned(self, relpath: str) -> bool:
        try:
            self.repo.git.ls_files("--error-unmatch", "--", relpath)
        except GitCommandError:
            return False
        return True


class SvnTarget:
    """Target tree that is a Subversion working copy."""

    name = "svn"

    def __init__(self, wc_path: str | Path):
        self.path = Path(wc_path)
        if not self.path.is_dir():
            raise ConfigError(f"Target working copy does not exist: {self.path}")

    def commit(self, message: str) -> ToolOutput:
        """Schedule new files for addition, then commit the working copy.

        Leftover ``.orig``/``.rej`` files are unscheduled again before committing.
        """
        leftovers = []
        for path in find_leftovers(self.path):
            relpath = path.relative_to(self.path).as_posix()
            if not self.is_versioned(relpath):
                leftovers.append(relpath)
        run_command(["svn", "add", "--force", "--quiet", "."], cwd=self.path)
        if leftovers:
            run_command(["svn", "revert", "--quiet", "--", *leftovers], cwd=self.path)
        result = run_command(["svn", "commit", "-m", message], cwd=self.path)
        if not result.stdout.strip():
            # svn exits 0 with no output when there is nothing to commit
            raise ExternalToolFailure("svn commit", output="nothing to commit")
        return result

    def revert(self) -> ToolOutput:
        return run_command(["svn", "revert", "--recursive", "."], cwd=self.path)

    def is_versioned(self, relpath: str) -> bool:
        result = run_command(["svn", "info", "--", relpath], cwd=self.path, check=False)
        return result.ok


TARGETS = {
    "git": GitTarget,
    "svn": SvnTarget,
}


def make_target(kind: str, path: str | Path):
    """Build the target back-end named ``kind``."""
    try:
        cls = TARGETS[kind]
    except KeyError:
        raise ConfigError(f"Unknown target_vcs '{kind}'")
    return cls(path)
