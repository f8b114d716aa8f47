"""Exception taxonomy for provbuild.

Every error raised by the kernel derives from ProvBuildError so callers can
catch the whole family at the top level. Errors are wrapped with context as
they cross component boundaries (``raise X(...) from err``); none of them are
retried.
"""

from pathlib import Path
from typing import Optional, Sequence


class ProvBuildError(Exception):
    """Base class for all provbuild errors."""
    pass


class ConfigurationError(ProvBuildError, ValueError):
    """Raised when user inputs have a bad or unsupported shape."""
    pass


class UnsupportedSchemeError(ConfigurationError):
    """Raised when a source repository uses a transport scheme we cannot fetch."""

    def __init__(self, scheme: str):
        super().__init__(f"unsupported scheme: {scheme!r}")
        self.scheme = scheme


class ConfigParseError(ProvBuildError, ValueError):
    """Raised when the build configuration file cannot be loaded or parsed."""
    pass


class SourceFetchError(ProvBuildError):
    """Raised when the source repository cannot be verified or fetched."""
    pass


class CommitMismatchError(SourceFetchError):
    """Raised when a checkout (or a ref) resolves to an unexpected commit."""

    def __init__(self, expected: str, actual: str, what: str = "HEAD"):
        super().__init__(
            f"commit mismatch: {what} resolves to {actual!r}, expected {expected!r}"
        )
        self.expected = expected
        self.actual = actual
        self.what = what


class CheckoutError(SourceFetchError):
    """Raised when cloning the repository or checking out the commit fails."""
    pass


class CommandError(ProvBuildError):
    """Raised when an external command cannot be started or exits non-zero."""

    def __init__(
        self,
        message: str,
        argv: Sequence[str],
        returncode: Optional[int] = None,
        stdout_log: Optional[Path] = None,
        stderr_log: Optional[Path] = None,
    ):
        self.reason = message
        if stdout_log is not None and stderr_log is not None:
            message = f"{message}; see {str(stdout_log)!r} for logs, and {str(stderr_log)!r} for errors"
        super().__init__(message)
        self.argv = list(argv)
        self.returncode = returncode
        self.stdout_log = stdout_log
        self.stderr_log = stderr_log


class BuildExecutionError(CommandError):
    """Raised when the containerized build command fails."""
    pass


class LogCaptureError(ProvBuildError, OSError):
    """Raised when command output cannot be persisted to a temp file."""
    pass


class ArtifactError(ProvBuildError):
    """Base class for problems with the files a build is expected to produce."""
    pass


class PreexistingArtifactError(ArtifactError):
    """Raised when the artifact pattern already matches files before the build."""

    def __init__(self, pattern: str, matches: Sequence[str]):
        super().__init__(
            f"the specified pattern ({pattern!r}) matches {len(matches)} existing files; "
            f"expected no matches"
        )
        self.pattern = pattern
        self.matches = list(matches)


class NoArtifactsProducedError(ArtifactError):
    """Raised when the build succeeded but the artifact pattern matches nothing."""

    def __init__(self, pattern: str):
        super().__init__(f"no files matching the pattern {pattern!r}")
        self.pattern = pattern


class UnsafePathError(ArtifactError, ValueError):
    """Raised when a path resolves outside of the directory it must stay in."""
    pass


class ProvenanceError(ProvBuildError, ValueError):
    """Raised when a provenance document is malformed or unsupported."""
    pass


class InvalidImageDigestError(ProvenanceError):
    """Raised when the builder image digest disagrees with its URI."""
    pass


class MissingSourceDigestError(ProvenanceError):
    """Raised when the source descriptor has no sha1 digest."""
    pass
