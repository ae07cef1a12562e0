"""Patch lifecycle engine — move a patch from creation to a terminal state.

States are the vault directories an artifact can live in::

    (none) --create--> pending --commit / mark_committed--> committed
                       pending --rollback--> rolledback

``preview`` and ``apply`` act on the target tree only and never move the
artifact. ``committed`` and ``rolledback`` are terminal. Relocation always
happens after the external tool reports success, so a failed or
interrupted tool run leaves the patch in ``pending``.
"""

from __future__ import annotations

import logging
from pathlib import Path

from patchvault.config import Config
from patchvault.errors import ExternalToolFailure, PatchNotFound
from patchvault.models import (
    CommitResult,
    PatchMetadata,
    PatchState,
    PatchStatus,
    ToolOutput,
)
from patchvault.utils.git_ops import SourceRepo
from patchvault.utils.patch_tool import PatchTool, sweep_leftovers
from patchvault.utils.target_vcs import GitTarget, SvnTarget, make_target
from patchvault.vault import Vault, utc_timestamp

logger = logging.getLogger(__name__)


class PatchLifecycle:
    """Session object tying a vault to its source tree, target tree and patch tool.

    Every tool invocation receives an explicit working directory; nothing
    here changes the process's current directory.
    """

    def __init__(
        self,
        vault: Vault,
        source: SourceRepo,
        target: GitTarget | SvnTarget,
        patcher: PatchTool,
    ):
        self.vault = vault
        self.source = source
        self.target = target
        self.patcher = patcher
        self.vault.ensure_layout()

    @classmethod
    def from_config(cls, config: Config) -> PatchLifecycle:
        return cls(
            vault=Vault(config.vault),
            source=SourceRepo(config.source),
            target=make_target(config.target_vcs, config.target),
            patcher=PatchTool(config.patch_command, config.strip),
        )

    # ── Create ──────────────────────────────────────────────────────

    def create(self, from_rev: str, to_rev: str, path: str | None = None) -> int:
        """Store the diff ``from_rev..to_rev`` as a new pending patch.

        Both revisions are resolved before an id is allocated, so an
        unresolvable revision consumes no number. Once allocated, the id
        stays consumed even if a later step fails.

        Returns:
            The new PatchID.

        Raises:
            InvalidRevision: If either revision does not resolve.
            ExternalToolFailure: If the diff cannot be produced.
        """
        from_sha = self.source.resolve(from_rev)
        to_sha = self.source.resolve(to_rev)

        patch_id = self.vault.allocate_id()

        summary = self.source.summary(from_sha, to_sha, path)
        diff_bytes = self.source.diff(from_sha, to_sha, path)
        if not diff_bytes.strip():
            logger.warning(
                "Patch %d: %s..%s produced an empty diff", patch_id, from_rev, to_rev
            )
        self.vault.write_artifact(patch_id, diff_bytes)

        metadata = PatchMetadata(
            patch_id=patch_id,
            from_rev=from_rev,
            to_rev=to_rev,
            from_sha=from_sha,
            to_sha=to_sha,
            created_at=utc_timestamp(),
            path=path,
            summary=summary,
        )
        self.vault.append_history(metadata)
        self.vault.write_metadata(metadata)
        logger.info("Created patch %d (%s)", patch_id, metadata.revision_range)
        return patch_id

    def create_from_commit(self, revision: str) -> int:
        """Store the change introduced by a single commit."""
        return self.create(f"{revision}^1", revision)

    # ── Target-tree operations on pending patches ───────────────────

    def preview(self, patch_id: int) -> ToolOutput:
        """Trial-apply a pending patch to the target tree without touching files."""
        artifact = self.vault.require_state(patch_id, PatchState.PENDING)
        return self.patcher.apply(artifact, self.target.path, dry_run=True)

    def apply(self, patch_id: int) -> ToolOutput:
        """Apply a pending patch to the target tree's working files.

        The patch stays pending. On failure any partial edits are left for
        the operator; ``rollback`` discards them.
        """
        artifact = self.vault.require_state(patch_id, PatchState.PENDING)
        try:
            result = self.patcher.apply(artifact, self.target.path)
        except ExternalToolFailure as e:
            logger.warning("Patch %d did not apply to %s: %s", patch_id, self.target.path, e)
            raise
        logger.info("Applied patch %d to %s", patch_id, self.target.path)
        return result

    def commit(self, patch_id: int) -> CommitResult:
        """Commit the target tree, then record the patch as committed.

        A failed commit leaves the patch pending and the pointer unchanged,
        so the call can be repeated once the cause is fixed.
        """
        self.vault.require_state(patch_id, PatchState.PENDING)
        output = self.target.commit(self._commit_message(patch_id))
        result = self._record_commit(patch_id)
        result.output = output
        return result

    def mark_committed(self, patch_id: int) -> CommitResult:
        """Record a patch as committed without running the commit tool."""
        self.vault.require_state(patch_id, PatchState.PENDING)
        return self._record_commit(patch_id)

    def rollback(self, patch_id: int) -> list[Path]:
        """Revert the target tree and retire a pending patch.

        Reverting a tree the patch was never applied to is harmless. Returns
        the leftover files removed from the target tree.
        """
        self.vault.require_state(patch_id, PatchState.PENDING)
        diff_bytes = self.vault.read_artifact(patch_id)

        self.target.revert()
        removed = sweep_leftovers(
            self.target.path, diff_bytes, self.target, strip=self.patcher.strip
        )
        self.vault.relocate(patch_id, PatchState.PENDING, PatchState.ROLLED_BACK)
        return removed

    # ── Read-only queries ───────────────────────────────────────────

    def latest(self) -> PatchMetadata | None:
        """Metadata of the highest committed patch, or None if nothing was committed."""
        patch_id = self.vault.latest_committed()
        if patch_id is None:
            return None
        return self.vault.read_metadata(patch_id)

    def status(self) -> list[PatchStatus]:
        rows = []
        for patch_id, state in self.vault.list_patches():
            try:
                metadata = self.vault.read_metadata(patch_id)
            except PatchNotFound:
                metadata = None
            rows.append(PatchStatus(patch_id=patch_id, state=state, metadata=metadata))
        return rows

    def show(self, patch_id: int) -> tuple[PatchStatus, bytes]:
        """State, metadata and artifact text of one patch."""
        state = self.vault.locate(patch_id)
        try:
            metadata = self.vault.read_metadata(patch_id)
        except PatchNotFound:
            metadata = None
        status = PatchStatus(patch_id=patch_id, state=state, metadata=metadata)
        return status, self.vault.read_artifact(patch_id)

    def history(self) -> str:
        return self.vault.read_history()

    # ── Internal helpers ────────────────────────────────────────────

    def _record_commit(self, patch_id: int) -> CommitResult:
        self.vault.relocate(patch_id, PatchState.PENDING, PatchState.COMMITTED)
        advanced = self.vault.record_committed(patch_id)
        return CommitResult(patch_id=patch_id, pointer_advanced=advanced)

    def _commit_message(self, patch_id: int) -> str:
        try:
            return self.vault.read_metadata(patch_id).commit_message()
        except PatchNotFound:
            return f"patch {patch_id}"
