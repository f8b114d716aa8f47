"""provbuild: container-based builds with verifiable provenance."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("provbuild")
except PackageNotFoundError:
    __version__ = "dev"

# Public API exports
from provbuild.api import build, dry_run, verify_rebuild
from provbuild.contracts import Subject, VerificationIssue, VerificationResult
from provbuild.codes import VerificationCode

__all__ = [
    "__version__",
    "build",
    "dry_run",
    "verify_rebuild",
    "Subject",
    "VerificationIssue",
    "VerificationResult",
    "VerificationCode",
]
