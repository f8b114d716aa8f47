"""Public result models for provbuild package."""

from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict


class Subject(BaseModel):
    """A built artifact: file name and digests of its contents."""
    name: str  # base name of the file, e.g. "app.tar.gz"
    digest: Dict[str, str]  # {"sha256": "<hex>"}

    model_config = ConfigDict(frozen=True, extra="forbid")


class VerificationIssue(BaseModel):
    """A disagreement between rebuilt artifacts and the provenance subjects."""
    code: str  # "SUBJECT_MISSING" | "SUBJECT_UNEXPECTED" | "DIGEST_MISMATCH"
    message: str
    name: str  # subject name the issue is about
    expected: Optional[Dict[str, str]] = None  # digest recorded in provenance
    actual: Optional[Dict[str, str]] = None  # digest of the rebuilt file


class VerificationResult(BaseModel):
    """Result of rebuilding from a provenance statement."""
    ok: bool
    subjects: List[Subject]  # rebuilt subjects, sorted by name
    issues: List[VerificationIssue]  # sorted
