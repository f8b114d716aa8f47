"""Public API for provbuild.

High-level functions that run a whole build flow and return structured
results. The CLI is a thin wrapper around these.
"""

import logging
import os
from pathlib import Path
from typing import Dict, List, Optional, Union

from provbuild._internal.canonical_json import canonical_dumps
from provbuild.codes import VerificationCode
from provbuild.contracts import Subject, VerificationIssue, VerificationResult
from provbuild.kernel.builder import Builder
from provbuild.kernel.config import DockerBuildConfig, InputOptions
from provbuild.kernel.errors import ProvenanceError
from provbuild.kernel.process import EchoFn
from provbuild.kernel.provenance import BuildDefinition, ProvenanceStatement, parse_provenance

logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike, Path]


def _normalize_path(path: PathLike) -> Path:
    """Normalize path input to Path object."""
    return Path(path) if not isinstance(path, Path) else path


def _to_config(options: Union[InputOptions, DockerBuildConfig]) -> DockerBuildConfig:
    if isinstance(options, DockerBuildConfig):
        return options
    return DockerBuildConfig.from_inputs(options)


def dry_run(
    options: Union[InputOptions, DockerBuildConfig],
    workdir: Optional[PathLike] = None,
    echo: Optional[EchoFn] = None,
) -> BuildDefinition:
    """Set up the build without running it and return its build definition.

    The sources are fetched (or verified) and the config is loaded, so the
    returned definition is exactly what a real build would record. The
    checkout is released before returning.
    """
    config = _to_config(options)
    builder = Builder.with_git_fetcher(config, workdir=workdir, echo=echo)
    with builder.set_up_build_state() as state:
        return state.create_build_definition()


def build(
    options: Union[InputOptions, DockerBuildConfig],
    output_folder: Optional[PathLike] = None,
    workdir: Optional[PathLike] = None,
    echo: Optional[EchoFn] = None,
) -> List[Subject]:
    """Fetch the sources, run the containerized build, and digest the artifacts.

    Args:
        options: Raw or validated build inputs
        output_folder: If given, artifacts are copied here, keeping their
            path relative to the repository root
        workdir: Directory checked for an existing checkout (defaults to cwd)
        echo: Sink for live command output in verbose mode (defaults to print)

    Returns:
        One Subject per produced artifact
    """
    config = _to_config(options)
    builder = Builder.with_git_fetcher(config, workdir=workdir, echo=echo)
    with builder.set_up_build_state() as state:
        return state.build_artifacts(output_folder)


def load_provenance(path: PathLike) -> ProvenanceStatement:
    """Read and parse a provenance statement from a JSON file."""
    provenance_path = _normalize_path(path)
    try:
        data = provenance_path.read_bytes()
    except OSError as e:
        raise ProvenanceError(f"couldn't read provenance file {str(provenance_path)!r}: {e}") from e
    return parse_provenance(data)


def _digests_match(expected: Dict[str, str], actual: Dict[str, str]) -> bool:
    common = set(expected) & set(actual)
    return bool(common) and all(expected[alg] == actual[alg] for alg in common)


def compare_subjects(expected: List[Subject], actual: List[Subject]) -> List[VerificationIssue]:
    """Issues describing how rebuilt subjects differ from the recorded ones."""
    names = sorted({s.name for s in expected} | {s.name for s in actual})
    issues: List[VerificationIssue] = []
    for name in names:
        want = [s.digest for s in expected if s.name == name]
        got = [s.digest for s in actual if s.name == name]

        # Pair up identical artifacts first; whatever is left disagrees.
        unmatched_got = list(got)
        unmatched_want = []
        for digest in want:
            match = next((g for g in unmatched_got if _digests_match(digest, g)), None)
            if match is None:
                unmatched_want.append(digest)
            else:
                unmatched_got.remove(match)

        while unmatched_want and unmatched_got:
            issues.append(VerificationIssue(
                code=VerificationCode.DIGEST_MISMATCH.value,
                message=f"Rebuilt artifact '{name}' has a different digest than recorded",
                name=name,
                expected=unmatched_want.pop(0),
                actual=unmatched_got.pop(0),
            ))
        for digest in unmatched_want:
            issues.append(VerificationIssue(
                code=VerificationCode.SUBJECT_MISSING.value,
                message=f"Artifact '{name}' is recorded in the provenance but was not rebuilt",
                name=name,
                expected=digest,
            ))
        for digest in unmatched_got:
            issues.append(VerificationIssue(
                code=VerificationCode.SUBJECT_UNEXPECTED.value,
                message=f"Rebuilt artifact '{name}' is not recorded in the provenance",
                name=name,
                actual=digest,
            ))

    return sorted(issues, key=lambda issue: (issue.code, issue.name))


def verify_rebuild(
    provenance: Union[PathLike, ProvenanceStatement],
    force_checkout: bool = False,
    output_folder: Optional[PathLike] = None,
    workdir: Optional[PathLike] = None,
    echo: Optional[EchoFn] = None,
) -> VerificationResult:
    """Rebuild from a provenance statement and compare the artifacts.

    Raises:
        ProvenanceError: If the provenance cannot be parsed or is inconsistent
        ProvBuildError: If the rebuild itself fails
    """
    if isinstance(provenance, ProvenanceStatement):
        statement = provenance
    else:
        statement = load_provenance(provenance)

    config = statement.to_docker_build_config(force_checkout)
    subjects = build(config, output_folder=output_folder, workdir=workdir, echo=echo)
    issues = compare_subjects(statement.subject, subjects)
    for issue in issues:
        logger.warning("%s: %s", issue.code, issue.message)
    return VerificationResult(
        ok=not issues,
        subjects=sorted(subjects, key=lambda s: s.name),
        issues=issues,
    )


def write_build_definition(definition: BuildDefinition, path: PathLike) -> Path:
    """Write a build definition as canonical JSON."""
    out = _normalize_path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(definition.to_json() + "\n", encoding="utf-8")
    return out


def write_subjects(subjects: List[Subject], path: PathLike) -> Path:
    """Write subjects as a canonical JSON array for the artifact transport."""
    out = _normalize_path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    payload = [s.model_dump() for s in subjects]
    out.write_text(canonical_dumps(payload) + "\n", encoding="utf-8")
    return out
