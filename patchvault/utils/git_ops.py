"""Git operations on the source tree — resolve revisions, produce diffs."""

from __future__ import annotations

import logging
from pathlib import Path

from git import GitCommandError, InvalidGitRepositoryError, NoSuchPathError, Repo

from patchvault.errors import ConfigError, ExternalToolFailure, InvalidRevision

logger = logging.getLogger(__name__)


def open_repo(repo_path: str | Path) -> Repo:
    """Open a local Git repository.

    Raises:
        ConfigError: If the path is missing or not a Git repo.
    """
    path = Path(repo_path)
    try:
        return Repo(path)
    except NoSuchPathError:
        raise ConfigError(f"Repository path does not exist: {path}")
    except InvalidGitRepositoryError:
        raise ConfigError(f"Directory exists but is not a Git repo: {path}")


def git_failure(command: str, error: GitCommandError) -> ExternalToolFailure:
    """Translate a GitPython error into the tool failure reported upstream."""
    output = "\n".join(
        part.strip() for part in (str(error.stdout), str(error.stderr)) if part.strip()
    )
    status = error.status if isinstance(error.status, int) else None
    return ExternalToolFailure(command, returncode=status, output=output)


class SourceRepo:
    """The source tree, exposing only what patch creation needs."""

    def __init__(self, repo_path: str | Path):
        self.path = Path(repo_path)
        self.repo = open_repo(self.path)

    def resolve(self, revision: str) -> str:
        """Return the full commit SHA for ``revision``.

        Raises:
            InvalidRevision: If the revision does not name a commit.
        """
        try:
            sha = self.repo.git.rev_parse("--verify", "--quiet", f"{revision}^{{commit}}")
        except GitCommandError:
            raise InvalidRevision(revision)
        if not sha:
            raise InvalidRevision(revision)
        return sha.strip()

    def diff(self, from_sha: str, to_sha: str, path: str | None = None) -> bytes:
        """Unified diff between two commits, optionally scoped to one path.

        The raw bytes ``git diff`` printed are returned undecoded, trailing
        newline included, so content in any encoding survives.
        """
        args = ["--no-color", "--no-ext-diff", from_sha, to_sha]
        if path:
            args += ["--", path]
        try:
            return self.repo.git.diff(
                *args, stdout_as_string=False, strip_newline_in_stdout=False
            )
        except GitCommandError as e:
            raise git_failure("git diff", e)

    def summary(self, from_sha: str, to_sha: str, path: str | None = None) -> list[str]:
        """One ``<short-sha> <subject>`` line per commit in the range, oldest first."""
        args = ["--reverse", "--format=%h %s", f"{from_sha}..{to_sha}"]
        if path:
            args += ["--", path]
        try:
            out = self.repo.git.log(*args)
        except GitCommandError as e:
            raise git_failure("git log", e)
        return [line for line in out.splitlines() if line.strip()]
