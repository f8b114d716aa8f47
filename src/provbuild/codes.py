"""Verification code constants for provbuild.api.verify_rebuild().

These constants prevent stringly-typed issue codes and ensure
client code uses the correct verification codes.
"""

from enum import Enum


class VerificationCode(str, Enum):
    """Codes for disagreements between a rebuild and its provenance."""

    SUBJECT_MISSING = "SUBJECT_MISSING"  # in provenance, not produced by the rebuild
    SUBJECT_UNEXPECTED = "SUBJECT_UNEXPECTED"  # produced by the rebuild, not in provenance
    DIGEST_MISMATCH = "DIGEST_MISMATCH"
