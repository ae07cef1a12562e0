"""Data models for patches stored in a vault."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class PatchState(Enum):
    """Lifecycle state of a patch. The value is the state directory name."""

    PENDING = "pending"
    COMMITTED = "committed"
    ROLLED_BACK = "rolledback"


@dataclass
class PatchMetadata:
    """Immutable record written once when a patch is created.

    Kept in the vault's metadata directory, so it stays readable after the
    artifact has moved out of ``pending``.
    """

    patch_id: int
    from_rev: str
    to_rev: str
    from_sha: str
    to_sha: str
    created_at: str
    path: str | None = None
    summary: list[str] = field(default_factory=list)

    @property
    def revision_range(self) -> str:
        return f"{self.from_sha[:12]}..{self.to_sha[:12]}"

    def commit_message(self) -> str:
        """Message used when the patch is committed to the target tree."""
        lines = [f"patch {self.patch_id}: {self.revision_range}"]
        if self.path:
            lines[0] += f" ({self.path})"
        if self.summary:
            lines.append("")
            lines.extend(self.summary)
        return "\n".join(lines)

    def to_dict(self) -> dict:
        return {
            "patch_id": self.patch_id,
            "from_rev": self.from_rev,
            "to_rev": self.to_rev,
            "from_sha": self.from_sha,
            "to_sha": self.to_sha,
            "path": self.path,
            "summary": self.summary,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> PatchMetadata:
        return cls(
            patch_id=int(data["patch_id"]),
            from_rev=data.get("from_rev", ""),
            to_rev=data.get("to_rev", ""),
            from_sha=data.get("from_sha", ""),
            to_sha=data.get("to_sha", ""),
            created_at=data.get("created_at", ""),
            path=data.get("path"),
            summary=data.get("summary", []),
        )


@dataclass
class ToolOutput:
    """Captured result of an external tool run."""

    command: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def text(self) -> str:
        return (self.stdout + self.stderr).rstrip("\n")


@dataclass
class PatchStatus:
    """One row of the vault status listing."""

    patch_id: int
    state: PatchState
    metadata: PatchMetadata | None = None


@dataclass
class CommitResult:
    """Outcome of moving a patch into ``committed``."""

    patch_id: int
    pointer_advanced: bool
    output: ToolOutput | None = None
