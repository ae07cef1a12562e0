"""Vault manager — the on-disk patch store.

Layout under the vault directory::

    sequence        last allocated PatchID
    latest          highest PatchID that reached ``committed``
    history.log     append-only, human-readable creation log
    meta/<id>.json  one metadata record per PatchID
    pending/        artifacts waiting to be applied and committed
    committed/      artifacts recorded in the target tree
    rolledback/     artifacts discarded from the target tree

A patch's state is the directory its artifact lives in. ``relocate`` is the
only method that moves an artifact, so the one-artifact-per-PatchID rule is
enforced there.

There is no locking: two processes sharing a vault can race on the
sequence file and on relocation. Callers serialize invocations.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path

from patchvault.errors import PatchNotFound, PatchVaultError, WrongState
from patchvault.models import PatchMetadata, PatchState

logger = logging.getLogger(__name__)


class Vault:
    """File-based store for patch artifacts, counters and history."""

    SEQUENCE_FILE = "sequence"
    LATEST_FILE = "latest"
    HISTORY_FILE = "history.log"
    META_DIR = "meta"
    ARTIFACT_SUFFIX = ".patch"

    def __init__(self, vault_dir: str | Path):
        self.vault_dir = Path(vault_dir)
        self.sequence_path = self.vault_dir / self.SEQUENCE_FILE
        self.latest_path = self.vault_dir / self.LATEST_FILE
        self.history_path = self.vault_dir / self.HISTORY_FILE
        self.meta_dir = self.vault_dir / self.META_DIR

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    def ensure_layout(self) -> None:
        """Create the state directories, metadata directory and history log.

        Idempotent; called at the start of every invocation.
        """
        for state in PatchState:
            self.state_dir(state).mkdir(parents=True, exist_ok=True)
        self.meta_dir.mkdir(parents=True, exist_ok=True)
        self.history_path.touch(exist_ok=True)

    def state_dir(self, state: PatchState) -> Path:
        return self.vault_dir / state.value

    def artifact_path(self, patch_id: int, state: PatchState) -> Path:
        return self.state_dir(state) / f"{patch_id}{self.ARTIFACT_SUFFIX}"

    # ------------------------------------------------------------------
    # Sequence counter
    # ------------------------------------------------------------------

    def current_sequence(self) -> int:
        """Return the last allocated PatchID, 0 if none was ever allocated."""
        return self._read_int(self.sequence_path)

    def allocate_id(self) -> int:
        """Advance the sequence counter and return the new PatchID.

        The write happens before anything else in patch creation. If a later
        step fails the number stays consumed and leaves a gap.
        """
        patch_id = self.current_sequence() + 1
        self._write_int(self.sequence_path, patch_id)
        logger.debug("Allocated patch id %d", patch_id)
        return patch_id

    # ------------------------------------------------------------------
    # Artifacts
    # ------------------------------------------------------------------

    def write_artifact(self, patch_id: int, diff_bytes: bytes) -> Path:
        """Write a new artifact into ``pending``.

        The bytes are stored unchanged. They go to a temporary file first, so a
        failed write never leaves a partial artifact in ``pending``.

        Raises:
            PatchVaultError: If any state directory already holds this PatchID.
        """
        existing = self.find_state(patch_id)
        if existing is not None:
            raise PatchVaultError(
                f"Patch {patch_id} already exists in {existing.value}"
            )
        path = self.artifact_path(patch_id, PatchState.PENDING)
        tmp = path.with_name(f".{path.name}.tmp")
        try:
            tmp.write_bytes(diff_bytes)
            os.replace(tmp, path)
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise
        logger.debug("Wrote artifact %s (%d bytes)", path, len(diff_bytes))
        return path

    def find_state(self, patch_id: int) -> PatchState | None:
        """Return the state directory holding the artifact, or None."""
        for state in PatchState:
            if self.artifact_path(patch_id, state).is_file():
                return state
        return None

    def locate(self, patch_id: int) -> PatchState:
        """Return the artifact's current state.

        Raises:
            PatchNotFound: If no state directory holds the PatchID.
        """
        state = self.find_state(patch_id)
        if state is None:
            raise PatchNotFound(patch_id)
        return state

    def require_state(self, patch_id: int, expected: PatchState) -> Path:
        """Return the artifact path, failing unless it is in ``expected``.

        Raises:
            PatchNotFound: If the PatchID is unknown.
            WrongState: If the artifact is in another state directory.
        """
        state = self.locate(patch_id)
        if state != expected:
            raise WrongState(patch_id, state, expected)
        return self.artifact_path(patch_id, state)

    def read_artifact(self, patch_id: int) -> bytes:
        return self.artifact_path(patch_id, self.locate(patch_id)).read_bytes()

    def relocate(self, patch_id: int, src: PatchState, dst: PatchState) -> Path:
        """Move an artifact from one state directory to another.

        This is the single state-transition primitive.

        Raises:
            PatchNotFound: If the artifact is not in ``src``.
            PatchVaultError: If ``dst`` already holds the PatchID.
        """
        source = self.artifact_path(patch_id, src)
        dest = self.artifact_path(patch_id, dst)
        if not source.is_file():
            raise PatchNotFound(patch_id, what=f"artifact in {src.value}")
        if dest.exists():
            raise PatchVaultError(f"Patch {patch_id} already exists in {dst.value}")
        os.replace(source, dest)
        logger.info("Patch %d: %s -> %s", patch_id, src.value, dst.value)
        return dest

    def list_patches(self) -> list[tuple[int, PatchState]]:
        """All artifacts in the vault as ``(patch_id, state)``, sorted by id."""
        found = []
        for state in PatchState:
            directory = self.state_dir(state)
            if not directory.is_dir():
                continue
            for item in directory.glob(f"*{self.ARTIFACT_SUFFIX}"):
                stem = item.name[: -len(self.ARTIFACT_SUFFIX)]
                if stem.isdigit():
                    found.append((int(stem), state))
        return sorted(found, key=lambda t: t[0])

    # ------------------------------------------------------------------
    # Latest-applied pointer
    # ------------------------------------------------------------------

    def latest_committed(self) -> int | None:
        """Highest PatchID that reached ``committed``, or None if unset."""
        value = self._read_int(self.latest_path)
        return value or None

    def record_committed(self, patch_id: int) -> bool:
        """Advance the latest-applied pointer if ``patch_id`` is higher.

        Returns True if the pointer moved. It never regresses.
        """
        current = self.latest_committed() or 0
        if patch_id <= current:
            logger.debug(
                "Latest pointer stays at %d (committed %d)", current, patch_id
            )
            return False
        self._write_int(self.latest_path, patch_id)
        logger.debug("Latest pointer %d -> %d", current, patch_id)
        return True

    # ------------------------------------------------------------------
    # Metadata and history
    # ------------------------------------------------------------------

    def write_metadata(self, metadata: PatchMetadata) -> Path:
        path = self._meta_path(metadata.patch_id)
        if path.exists():
            raise PatchVaultError(
                f"Metadata for patch {metadata.patch_id} already exists"
            )
        path.write_text(json.dumps(metadata.to_dict(), indent=2) + "\n")
        return path

    def read_metadata(self, patch_id: int) -> PatchMetadata:
        """Raises PatchNotFound if no record exists for ``patch_id``."""
        path = self._meta_path(patch_id)
        if not path.is_file():
            raise PatchNotFound(patch_id, what="metadata record")
        try:
            return PatchMetadata.from_dict(json.loads(path.read_text()))
        except (json.JSONDecodeError, KeyError, ValueError) as e:
            raise PatchVaultError(f"Corrupt metadata record {path}: {e}")

    def append_history(self, metadata: PatchMetadata) -> None:
        """Append a human-readable entry for a newly created patch."""
        line = (
            f"[{metadata.created_at}] patch {metadata.patch_id}: "
            f"{metadata.from_rev} ({metadata.from_sha}) .. "
            f"{metadata.to_rev} ({metadata.to_sha})"
        )
        if metadata.path:
            line += f" path={metadata.path}"
        lines = [line] + [f"    {s}" for s in metadata.summary]
        with open(self.history_path, "a", encoding="utf-8") as f:
            f.write("\n".join(lines) + "\n")

    def read_history(self) -> str:
        if not self.history_path.exists():
            return ""
        return self.history_path.read_text(encoding="utf-8")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _meta_path(self, patch_id: int) -> Path:
        return self.meta_dir / f"{patch_id}.json"

    def _read_int(self, path: Path) -> int:
        if not path.exists():
            return 0
        text = path.read_text().strip()
        if not text:
            return 0
        try:
            return int(text)
        except ValueError:
            raise PatchVaultError(f"Corrupt counter file {path}: {text!r}")

    def _write_int(self, path: Path, value: int) -> None:
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_text(f"{value}\n")
        os.replace(tmp, path)


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")
