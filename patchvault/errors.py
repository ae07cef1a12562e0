"""Error kinds raised by the vault, the lifecycle engine and the tool wrappers.

Every error is terminal for the current invocation. The CLI prints the
message on one line and exits non-zero, so messages name the offending
input and the precondition that was violated.
"""

from __future__ import annotations


class PatchVaultError(Exception):
    """Base class for every failure patchvault reports to the operator."""


class ConfigError(PatchVaultError):
    """Configuration could not be loaded or is invalid."""


class ConfigMissing(ConfigError):
    """One or more required locations are not defined."""

    def __init__(self, keys: list[str]):
        self.keys = list(keys)
        super().__init__(
            "Missing configuration: " + ", ".join(self.keys)
            + " (set them in the config file or via PATCHVAULT_* variables)"
        )


class InvalidRevision(PatchVaultError):
    """A revision identifier does not resolve in the source tree."""

    def __init__(self, revision: str, detail: str = ""):
        self.revision = revision
        message = f"Revision '{revision}' does not resolve in the source tree"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class PatchNotFound(PatchVaultError):
    """Unknown PatchID, or its artifact/metadata file is missing."""

    def __init__(self, patch_id: int, what: str = "artifact"):
        self.patch_id = patch_id
        super().__init__(f"Patch {patch_id}: no {what} found in the vault")


class WrongState(PatchVaultError):
    """The operation requires a different lifecycle state."""

    def __init__(self, patch_id: int, actual, expected):
        self.patch_id = patch_id
        self.actual = actual
        self.expected = expected
        super().__init__(
            f"Patch {patch_id} is {actual.value}, expected {expected.value}"
        )


class ExternalToolFailure(PatchVaultError):
    """An external diff/apply/commit/revert tool exited non-zero."""

    def __init__(self, tool: str, returncode: int | None = None, output: str = ""):
        self.tool = tool
        self.returncode = returncode
        self.output = output
        message = f"{tool} failed"
        if returncode is not None:
            message += f" (exit status {returncode})"
        first_line = output.strip().splitlines()[0] if output.strip() else ""
        if first_line:
            message += f": {first_line}"
        super().__init__(message)
