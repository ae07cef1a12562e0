"""Run external commands with an explicit working directory."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

from patchvault.errors import ExternalToolFailure
from patchvault.models import ToolOutput

logger = logging.getLogger(__name__)


def run_command(args: list[str], cwd: str | Path, check: bool = True) -> ToolOutput:
    """Run ``args`` in ``cwd`` and capture its output.

    The exit status is the only success signal. With ``check`` a non-zero
    status raises ExternalToolFailure carrying the captured output.
    """
    logger.debug("Running %s in %s", " ".join(args), cwd)
    try:
        proc = subprocess.run(
            args,
            cwd=cwd,
            capture_output=True,
            text=True,
        )
    except FileNotFoundError:
        raise ExternalToolFailure(args[0], output=f"{args[0]}: command not found")

    result = ToolOutput(
        command=list(args),
        returncode=proc.returncode,
        stdout=proc.stdout,
        stderr=proc.stderr,
    )
    if check and not result.ok:
        raise ExternalToolFailure(
            " ".join(args[:2]), returncode=proc.returncode, output=result.text
        )
    return result
