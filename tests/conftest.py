"""Pytest configuration and shared fixtures.

No sys.path hacks - tests should import from installed provbuild package.
git is used for real where a test needs a checkout; docker never is.
"""

import shutil
import subprocess
from pathlib import Path

import pytest

from provbuild.kernel import process
from provbuild.kernel.fetcher import RepoCheckoutInfo

IMAGE_DIGEST = "a" * 64
BUILDER_IMAGE = f"ghcr.io/example/builder@sha256:{IMAGE_DIGEST}"
BUILD_CONFIG_TOML = 'command = ["make", "release"]\nartifact_path = "dist/*.tar.gz"\n'

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


def git(args, cwd) -> str:
    """Run git with a throwaway identity and return stripped stdout."""
    result = subprocess.run(
        [
            "git",
            "-c", "user.name=provbuild tests",
            "-c", "user.email=tests@example.com",
            "-c", "commit.gpgsign=false",
            "-c", "tag.gpgsign=false",
            "-c", "init.defaultBranch=main",
            *args,
        ],
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout.strip()


@pytest.fixture
def make_repo(tmp_path):
    """Factory creating a git repository with one commit; returns (path, sha)."""
    def _make(name="repo", files=None):
        repo = tmp_path / name
        repo.mkdir()
        git(["init", "-q"], repo)
        contents = files if files is not None else {"build.toml": BUILD_CONFIG_TOML}
        for rel, text in contents.items():
            path = repo / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text, encoding="utf-8")
        git(["add", "-A"], repo)
        git(["commit", "-q", "-m", "initial"], repo)
        return repo, git(["rev-parse", "HEAD"], repo)
    return _make


@pytest.fixture
def local_clone(monkeypatch):
    """Route `git clone <https uri>` to a local repository instead of the network.

    Returns a list that records every git argv run through the fetcher.
    """
    calls = []

    def _install(source_repo: Path):
        real_run_command = process.run_command

        def fake_run_command(argv, cwd, verbose=False, echo=None):
            argv = list(argv)
            calls.append(list(argv))
            if argv[:2] == ["git", "clone"]:
                argv[-2] = str(source_repo)
            return real_run_command(argv, cwd, verbose=verbose, echo=echo)

        monkeypatch.setattr("provbuild.kernel.fetcher.run_command", fake_run_command)
        return calls

    return _install


class FakeFetcher:
    """Fetcher that hands out an existing directory as the checkout."""

    def __init__(self, repo_root: Path, error: Exception = None):
        self.repo_root = repo_root
        self.error = error
        self.fetch_calls = 0
        self.cleanup_calls = 0

    def fetch(self) -> RepoCheckoutInfo:
        self.fetch_calls += 1
        if self.error is not None:
            raise self.error
        return RepoCheckoutInfo(repo_root=self.repo_root, owned=False)

    def cleanup(self) -> None:
        self.cleanup_calls += 1
