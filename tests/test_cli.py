"""End-to-end tests for the patchvault command line."""

import shutil
import tempfile
from pathlib import Path

import pytest
import yaml
from click.testing import CliRunner
from git import Repo

from patchvault.cli import main
from patchvault.config import ENV_KEYS

CLEAN_ENV = {var: None for var in list(ENV_KEYS) + ["PATCHVAULT_CONFIG"]}

needs_patch = pytest.mark.skipif(shutil.which("patch") is None, reason="patch not installed")


def _init_repo(path: Path) -> Repo:
    path.mkdir(parents=True)
    repo = Repo.init(path)
    with repo.config_writer() as cw:
        cw.set_value("user", "name", "Test User")
        cw.set_value("user", "email", "test@example.com")
    return repo


def _commit(repo: Repo, files: dict[str, str], message: str, tag: str = ""):
    root = Path(repo.working_tree_dir)
    for relpath, content in files.items():
        (root / relpath).parent.mkdir(parents=True, exist_ok=True)
        (root / relpath).write_text(content)
    repo.index.add(list(files))
    repo.index.commit(message)
    if tag:
        repo.create_tag(tag)


def _setup(tmpdir: str) -> tuple[Path, Path, Path]:
    """Source repo tagged v1..v3 and a target repo holding the v1 content."""
    base = Path(tmpdir)
    source = _init_repo(base / "source")
    _commit(source, {"README": "one\n"}, "Initial import", tag="v1")
    _commit(source, {"README": "two\n"}, "Second readme", tag="v2")
    _commit(source, {"README": "three\n", "docs/new.txt": "new\n"}, "Third readme", tag="v3")

    target = _init_repo(base / "target")
    _commit(target, {"README": "one\n"}, "Import v1")

    config_path = base / "patchvault.yaml"
    with open(config_path, "w") as f:
        yaml.dump({
            "source": str(base / "source"),
            "target": str(base / "target"),
            "vault": str(base / "vault"),
        }, f)
    return config_path, base / "target", base / "vault"


def _invoke(config_path: Path, *args):
    runner = CliRunner()
    return runner.invoke(main, ["--config", str(config_path), *args], env=CLEAN_ENV)


def test_missing_configuration():
    with tempfile.TemporaryDirectory() as tmpdir:
        config_path = Path(tmpdir) / "empty.yaml"
        config_path.write_text("source: /somewhere\n")

        result = _invoke(config_path, "latest")
        assert result.exit_code == 1
        assert "Missing configuration: target, vault" in result.output


def test_diff_and_latest_without_history():
    with tempfile.TemporaryDirectory() as tmpdir:
        config_path, _, vault = _setup(tmpdir)

        result = _invoke(config_path, "diff", "v1", "v2")
        assert result.exit_code == 0, result.output
        assert "Created patch 1" in result.output
        assert (vault / "pending" / "1.patch").is_file()

        result = _invoke(config_path, "latest")
        assert result.exit_code == 0
        assert "No history available" in result.output


def test_invalid_revision():
    with tempfile.TemporaryDirectory() as tmpdir:
        config_path, _, vault = _setup(tmpdir)

        result = _invoke(config_path, "diff", "nope", "v2")
        assert result.exit_code == 1
        assert "'nope' does not resolve" in result.output
        assert not (vault / "sequence").exists()


def test_make_patch_and_show():
    with tempfile.TemporaryDirectory() as tmpdir:
        config_path, _, _ = _setup(tmpdir)

        result = _invoke(config_path, "make-patch", "v3")
        assert result.exit_code == 0, result.output

        result = _invoke(config_path, "show", "1")
        assert result.exit_code == 0, result.output
        assert "pending" in result.output
        assert "+three" in result.output

        result = _invoke(config_path, "history")
        assert "patch 1:" in result.output
        assert "Third readme" in result.output


def test_unknown_patch_id():
    with tempfile.TemporaryDirectory() as tmpdir:
        config_path, _, _ = _setup(tmpdir)
        result = _invoke(config_path, "apply", "9")
        assert result.exit_code == 1
        assert "Patch 9" in result.output


def test_committed_then_rollback_is_wrong_state():
    with tempfile.TemporaryDirectory() as tmpdir:
        config_path, _, vault = _setup(tmpdir)
        _invoke(config_path, "diff", "v1", "v2")

        result = _invoke(config_path, "committed", "1")
        assert result.exit_code == 0, result.output
        assert (vault / "committed" / "1.patch").is_file()

        result = _invoke(config_path, "rollback", "1")
        assert result.exit_code == 1
        assert "is committed, expected pending" in result.output

        result = _invoke(config_path, "status")
        assert result.exit_code == 0
        assert "committed" in result.output
        assert "Latest committed: 1" in result.output


@needs_patch
def test_full_lifecycle():
    with tempfile.TemporaryDirectory() as tmpdir:
        config_path, target, vault = _setup(tmpdir)
        target_repo = Repo(target)

        assert "Created patch 1" in _invoke(config_path, "diff", "v1", "v2").output

        result = _invoke(config_path, "test", "1")
        assert result.exit_code == 0, result.output
        assert (target / "README").read_text() == "one\n"

        result = _invoke(config_path, "apply", "1")
        assert result.exit_code == 0, result.output
        assert (target / "README").read_text() == "two\n"
        assert (vault / "pending" / "1.patch").is_file()

        result = _invoke(config_path, "commit", "1")
        assert result.exit_code == 0, result.output
        assert (vault / "committed" / "1.patch").is_file()
        assert target_repo.head.commit.message.startswith("patch 1:")

        result = _invoke(config_path, "commit", "1")
        assert result.exit_code == 1

        result = _invoke(config_path, "latest")
        assert "Latest: patch 1" in result.output

        assert "Created patch 2" in _invoke(config_path, "diff", "v2", "v3").output
        result = _invoke(config_path, "apply", "2")
        assert result.exit_code == 0, result.output
        assert (target / "docs" / "new.txt").exists()

        result = _invoke(config_path, "rollback", "2")
        assert result.exit_code == 0, result.output
        assert (target / "README").read_text() == "two\n"
        assert not (target / "docs" / "new.txt").exists()
        assert not list(target.rglob("*.orig")) and not list(target.rglob("*.rej"))
        assert (vault / "rolledback" / "2.patch").is_file()

        result = _invoke(config_path, "latest")
        assert "Latest: patch 1" in result.output


@needs_patch
def test_apply_conflict_keeps_patch_pending():
    with tempfile.TemporaryDirectory() as tmpdir:
        config_path, target, vault = _setup(tmpdir)
        target_repo = Repo(target)
        _commit(target_repo, {"README": "diverged\n"}, "Diverge")
        _invoke(config_path, "diff", "v1", "v2")

        result = _invoke(config_path, "test", "1")
        assert result.exit_code == 1
        assert "patch --dry-run failed" in result.output
        assert (vault / "pending" / "1.patch").is_file()


def test_diff_of_latin1_source_is_stored():
    with tempfile.TemporaryDirectory() as tmpdir:
        config_path, _, vault = _setup(tmpdir)
        source = Repo(Path(tmpdir) / "source")
        root = Path(source.working_tree_dir)
        for content, message in [(b"caf\xe9\n", "Menu"), (b"caf\xe9 au lait\n", "Longer menu")]:
            (root / "menu.txt").write_bytes(content)
            source.index.add(["menu.txt"])
            source.index.commit(message)

        result = _invoke(config_path, "diff", "HEAD~1", "HEAD")
        assert result.exit_code == 0, result.output
        assert "Created patch 1" in result.output
        artifact = (vault / "pending" / "1.patch").read_bytes()
        assert b"+caf\xe9 au lait\n" in artifact
        assert (vault / "meta" / "1.json").is_file()

        result = _invoke(config_path, "status")
        assert result.exit_code == 0, result.output
        assert "pending" in result.output


def test_vault_option_overrides_config():
    with tempfile.TemporaryDirectory() as tmpdir:
        base = Path(tmpdir)
        config_path, _, _ = _setup(tmpdir)
        with open(config_path, "w") as f:
            yaml.dump({"source": str(base / "source"), "target": str(base / "target")}, f)
        other = base / "other-vault"

        result = _invoke(config_path, "latest")
        assert result.exit_code == 1
        assert "Missing configuration: vault" in result.output

        result = _invoke(config_path, "--vault", str(other), "diff", "v1", "v2")
        assert result.exit_code == 0, result.output
        assert (other / "pending" / "1.patch").is_file()
        assert not (base / "vault").exists()


def test_source_and_target_options_override_config():
    with tempfile.TemporaryDirectory() as tmpdir:
        base = Path(tmpdir)
        _setup(tmpdir)
        config_path = base / "vault-only.yaml"
        config_path.write_text(f"vault: {base / 'vault'}\n")

        result = _invoke(
            config_path,
            "--source", str(base / "source"),
            "--target", str(base / "target"),
            "diff", "v1", "v2",
        )
        assert result.exit_code == 0, result.output
        assert (base / "vault" / "pending" / "1.patch").is_file()
