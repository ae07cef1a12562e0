"""Apply diff text to a working tree with the ``patch`` binary.

Also cleans up what ``patch`` leaves behind when a change is abandoned:
``.orig``/``.rej`` backup files and files the diff created.
"""

from __future__ import annotations

import logging
from pathlib import Path

from patchvault.errors import ExternalToolFailure
from patchvault.models import ToolOutput
from patchvault.utils.process import run_command

logger = logging.getLogger(__name__)

# Files `patch` writes next to the files it touches
LEFTOVER_SUFFIXES = {".orig", ".rej"}

# Version-control metadata is never swept
SKIP_DIRS = {".git", ".svn", ".hg"}

DEV_NULL = "/dev/null"


class PatchTool:
    """Wrapper around ``patch -p<strip> --forward``."""

    def __init__(self, command: str = "patch", strip: int = 1):
        self.command = command
        self.strip = strip

    def apply(self, artifact: Path, work_dir: Path, dry_run: bool = False) -> ToolOutput:
        """Apply ``artifact`` inside ``work_dir``.

        With ``dry_run`` no file is modified. Raises ExternalToolFailure on a
        non-zero exit; the output is attached so it can be shown verbatim.
        """
        args = [
            self.command,
            f"-p{self.strip}",
            "--forward",
            "--batch",
            "--input",
            str(Path(artifact).resolve()),
        ]
        if dry_run:
            args.append("--dry-run")
        result = run_command(args, cwd=work_dir, check=False)
        if not result.ok:
            mode = "patch --dry-run" if dry_run else "patch"
            raise ExternalToolFailure(mode, returncode=result.returncode, output=result.text)
        return result


def added_files(diff_text: str | bytes, strip: int = 1) -> list[str]:
    """Paths (relative to the tree root) that ``diff_text`` creates."""
    if isinstance(diff_text, bytes):
        diff_text = diff_text.decode("utf-8", "surrogateescape")
    paths = []
    lines = diff_text.splitlines()
    for i, line in enumerate(lines[:-1]):
        if not line.startswith("--- "):
            continue
        old = line[4:].split("\t")[0].strip()
        new_line = lines[i + 1]
        if old != DEV_NULL or not new_line.startswith("+++ "):
            continue
        new = new_line[4:].split("\t")[0].strip()
        parts = new.split("/")[strip:]
        if parts:
            paths.append("/".join(parts))
    return paths


def find_leftovers(root: Path) -> list[Path]:
    """Backup and reject files ``patch`` left under ``root``."""
    found = []
    for item in root.rglob("*"):
        if any(part in SKIP_DIRS for part in item.relative_to(root).parts):
            continue
        if item.is_file() and item.suffix in LEFTOVER_SUFFIXES:
            found.append(item)
    return sorted(found)


def sweep_leftovers(root: Path, diff_text: str | bytes, target, strip: int = 1) -> list[Path]:
    """Delete leftover backup/reject files and unversioned files the diff added.

    Args:
        root: Target tree root.
        diff_text: The artifact that was (possibly) applied.
        target: Target back-end, consulted so versioned files are never removed.
        strip: Leading path components to strip, as passed to ``patch``.

    Returns:
        The removed paths.
    """
    candidates = find_leftovers(root)
    candidates += [root / relpath for relpath in added_files(diff_text, strip)]

    removed = []
    for path in candidates:
        if path in removed or not path.is_file():
            continue
        if target.is_versioned(path.relative_to(root).as_posix()):
            continue
        path.unlink()
        logger.info("Removed %s", path)
        removed.append(path)
    return removed
