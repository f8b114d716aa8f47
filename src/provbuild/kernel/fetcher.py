"""Fetching (or verifying) the source repository at an expected commit.

GitClient first checks whether the working directory is already a checkout
of the expected commit. If it is not, or if a fresh checkout is forced, the
repository is cloned into a new temp directory and the commit is checked out
there. All git commands receive an explicit working directory; the process
working directory is never changed.
"""

import logging
import subprocess
import tempfile
from pathlib import Path
from typing import List, Optional, Protocol, Union

from provbuild._internal.files import remove_tree_best_effort
from .config import DockerBuildConfig
from .errors import (
    CheckoutError,
    CommandError,
    CommitMismatchError,
    ConfigurationError,
    LogCaptureError,
)
from .process import CommandLogs, EchoFn, run_command
from .source import SourceLocator, parse_source_locator

logger = logging.getLogger(__name__)


class RepoCheckoutInfo:
    """Location of a locally checked out repository.

    ``owned`` is True only when the fetcher created the checkout; cleanup
    never touches a working directory that merely passed verification.
    Cleanup is idempotent and a no-op until a checkout has been recorded.
    """

    def __init__(
        self,
        repo_root: Optional[Path] = None,
        owned: bool = False,
        cleanup_root: Optional[Path] = None,
    ):
        self.repo_root = repo_root
        self.owned = owned
        # Directory removed on cleanup; the temp dir the repo was cloned into.
        self._cleanup_root = cleanup_root or repo_root

    def __repr__(self) -> str:
        return f"RepoCheckoutInfo(repo_root={self.repo_root!r}, owned={self.owned})"

    def __enter__(self) -> "RepoCheckoutInfo":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()

    def cleanup(self) -> None:
        """Remove the checkout, logging (not raising) anything left behind."""
        if not self.owned or self._cleanup_root is None:
            return
        root = self._cleanup_root
        self.owned = False
        if not root.exists():
            return
        failures = remove_tree_best_effort(root)
        for path, exc in failures:
            logger.warning("failed to remove the temp files at %r: %s", path, exc)


class Fetcher(Protocol):
    """Anything that can produce a verified checkout of the sources."""

    def fetch(self) -> RepoCheckoutInfo:
        ...

    def cleanup(self) -> None:
        ...


def _git_output(args: List[str], cwd: Path) -> Optional[str]:
    """Run a read-only git query; None if git fails or cwd is not a repo."""
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=cwd,
            capture_output=True,
            text=True,
            check=True,
        )
    except (subprocess.CalledProcessError, OSError):
        return None
    return result.stdout.strip()


class GitClient:
    """Fetches the sources of a git repository at a given commit."""

    def __init__(
        self,
        source: SourceLocator,
        force_checkout: bool = False,
        verbose: bool = False,
        depth: int = 0,
        workdir: Optional[Union[str, Path]] = None,
        echo: Optional[EchoFn] = None,
    ):
        self.source = source
        self.force_checkout = force_checkout
        self.verbose = verbose
        self.depth = depth
        self.workdir = Path(workdir) if workdir is not None else Path.cwd()
        self.echo = echo
        self.checkout_info = RepoCheckoutInfo()
        self.logs: List[CommandLogs] = []

    @classmethod
    def from_config(
        cls,
        config: DockerBuildConfig,
        depth: int = 0,
        workdir: Optional[Union[str, Path]] = None,
        echo: Optional[EchoFn] = None,
    ) -> "GitClient":
        """Create a GitClient for the source repository named in config.

        Raises:
            UnsupportedSchemeError: If the repo URI scheme cannot be fetched
            ConfigurationError: If the repo URI is malformed
        """
        source = parse_source_locator(config.source_repo, config.source_digest)
        return cls(
            source,
            force_checkout=config.force_checkout,
            verbose=config.verbose,
            depth=depth,
            workdir=workdir,
            echo=echo,
        )

    def fetch(self) -> RepoCheckoutInfo:
        """Verify the working directory, or fetch a fresh checkout.

        Raises:
            ConfigurationError: If the source digest is not sha1
            CommitMismatchError: If the working directory (or its ref) is at
                another commit and a fresh checkout is not forced
            CheckoutError: If cloning or checking out fails
        """
        if self.source.digest.alg != "sha1":
            raise ConfigurationError("git commit digest must be a sha1 digest")

        try:
            is_checked_out = self.verify_ref_and_commit(self.workdir)
        except CommitMismatchError:
            if not self.force_checkout:
                raise
            is_checked_out = False

        if is_checked_out and not self.force_checkout:
            logger.info("Using existing checkout at %r.", str(self.workdir))
            self.checkout_info = RepoCheckoutInfo(repo_root=self.workdir.resolve(), owned=False)
        else:
            self.fetch_sources_from_git_repo()
        return self.checkout_info

    def verify_ref_and_commit(self, repo_dir: Path) -> bool:
        """Check that repo_dir is a git checkout at the expected commit.

        If a ref was given, it must resolve to the same commit.

        Returns:
            False if repo_dir is not a git checkout or the ref does not resolve

        Raises:
            CommitMismatchError: If HEAD or the ref is at a different commit
        """
        expected = self.source.digest.value
        checks = [("HEAD", ["rev-parse", "--verify", "HEAD"])]
        if self.source.ref is not None:
            ref = self.source.ref
            checks.append((ref, ["rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}"]))

        for what, args in checks:
            commit = _git_output(args, repo_dir)
            if not commit:
                return False
            if commit != expected:
                raise CommitMismatchError(expected=expected, actual=commit, what=what)
        return True

    def fetch_sources_from_git_repo(self) -> None:
        """Clone into a new temp directory and check out the expected commit.

        If depth is not a positive number, the entire history is cloned.
        The temp directory is removed again if anything fails.
        """
        target_dir = Path(tempfile.mkdtemp(prefix="release-"))
        logger.info("Checking out the repo in %r.", str(target_dir))
        repo_root = target_dir / self.source.repo_name
        try:
            self._clone(repo_root)
            self._checkout(repo_root)
            if not self.verify_ref_and_commit(repo_root):
                raise CheckoutError(
                    f"couldn't verify {self.source.uri!r} at commit {str(self.source.digest)!r} "
                    f"after checkout"
                )
        except BaseException:
            RepoCheckoutInfo(owned=True, cleanup_root=target_dir).cleanup()
            raise
        self.checkout_info = RepoCheckoutInfo(
            repo_root=repo_root.resolve(), owned=True, cleanup_root=target_dir
        )

    def _run_git(self, args: List[str], cwd: Path, what: str) -> None:
        try:
            logs = run_command(["git", *args], cwd=cwd, verbose=self.verbose, echo=self.echo)
        except CommandError as e:
            # Logs of a failed command outlive cleanup; the error names them.
            if e.stdout_log is not None:
                logger.warning(
                    "Keeping the logs of the failed 'git %s': %r, and %r.",
                    args[0], str(e.stdout_log), str(e.stderr_log),
                )
            raise CheckoutError(f"couldn't {what}: {e}") from e
        except LogCaptureError as e:
            raise CheckoutError(f"cannot save logs and errs to file: {e}") from e
        self.logs.append(logs)
        logger.info(
            "'git %s' completed. See %r, and %r for logs, and errors.",
            args[0], str(logs.stdout_log), str(logs.stderr_log),
        )

    def _clone(self, repo_root: Path) -> None:
        args = ["clone"]
        if self.depth > 0:
            args += ["--depth", str(self.depth)]
        args += [self.source.uri, str(repo_root)]
        logger.info("Cloning the repo from %s...", self.source.uri)
        self._run_git(args, cwd=repo_root.parent, what="clone the Git repo")

    def _checkout(self, repo_root: Path) -> None:
        self._run_git(
            ["checkout", self.source.digest.value],
            cwd=repo_root,
            what="checkout the Git commit",
        )

    def cleanup(self) -> None:
        """Remove the checkout (if this client created it) and all git log files."""
        self.checkout_info.cleanup()
        for logs in self.logs:
            logs.remove()
        self.logs = []
