"""Building artifacts with a builder container image.

Builder sets up the build state: it fetches (or verifies) the sources,
loads the build config, and checks that the artifact pattern matches
nothing yet. The resulting DockerBuild runs ``docker run`` in the checkout
and turns every file the pattern then matches into a Subject.
"""

import glob
import hashlib
import logging
from pathlib import Path, PurePath
from typing import List, Optional, Union

from provbuild._internal.files import create_new_file_under_directory, safe_read_file
from provbuild.contracts import Subject
from .config import BuildConfig, DockerBuildConfig
from .errors import (
    ArtifactError,
    BuildExecutionError,
    CommandError,
    ConfigurationError,
    NoArtifactsProducedError,
    PreexistingArtifactError,
    ProvBuildError,
    SourceFetchError,
)
from .fetcher import Fetcher, GitClient, RepoCheckoutInfo
from .process import EchoFn, run_command
from .provenance import (
    CONTAINER_BASED_BUILD_TYPE,
    BuildDefinition,
    ContainerBasedExternalParameters,
    builder_image_artifact,
    source_artifact,
)

logger = logging.getLogger(__name__)

DOCKER = "docker"
WORKSPACE = "/workspace"


def find_artifacts(pattern: str, root: Union[str, Path]) -> List[str]:
    """Paths (relative to root, sorted) matching the glob pattern."""
    return sorted(glob.glob(pattern, root_dir=str(root), include_hidden=True))


def check_existing_files(pattern: str, root: Union[str, Path]) -> None:
    """Fail if anything under root already matches the artifact pattern.

    Raises:
        PreexistingArtifactError: If the pattern matches at least one path
    """
    matches = find_artifacts(pattern, root)
    if matches:
        raise PreexistingArtifactError(pattern, matches)


def to_subject(data: bytes, file_path: Union[str, Path]) -> Subject:
    """Name and SHA256 digest of a file's contents as a Subject."""
    digest = hashlib.sha256(data).hexdigest()
    return Subject(name=PurePath(file_path).name, digest={"sha256": digest})


def inspect_and_write_artifacts(
    pattern: str,
    output_folder: Optional[Union[str, Path]],
    root: Union[str, Path],
) -> List[Subject]:
    """Digest every file matching pattern; optionally copy it to output_folder.

    Copies keep their path relative to root.

    Raises:
        NoArtifactsProducedError: If no file matches
        ArtifactError: If a file cannot be read or copied
    """
    root = Path(root)
    matches = [m for m in find_artifacts(pattern, root) if (root / m).is_file()]
    if not matches:
        raise NoArtifactsProducedError(pattern)

    subjects: List[Subject] = []
    for rel_path in matches:
        try:
            data = safe_read_file(rel_path, root)
        except OSError as e:
            raise ArtifactError(f"couldn't read file {rel_path!r}: {e}") from e

        subject = to_subject(data, rel_path)
        logger.debug("Artifact %s: sha256=%s", rel_path, subject.digest["sha256"])
        subjects.append(subject)

        if output_folder:
            try:
                with create_new_file_under_directory(rel_path, output_folder) as w:
                    w.write(data)
            except OSError as e:
                raise ArtifactError(f"creating new output file for {rel_path!r}: {e}") from e

    return subjects


class DockerBuild:
    """Build state once the sources are checked out and the config is loaded.

    Ready for ``docker run``. Use as a context manager, or call cleanup(),
    to release the checkout.
    """

    def __init__(
        self,
        config: DockerBuildConfig,
        build_config: BuildConfig,
        repo_info: RepoCheckoutInfo,
        fetcher: Optional[Fetcher] = None,
        echo: Optional[EchoFn] = None,
    ):
        self.config = config
        self.build_config = build_config
        self.repo_info = repo_info
        self._fetcher = fetcher
        self._echo = echo

    def __enter__(self) -> "DockerBuild":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()

    @property
    def repo_root(self) -> Path:
        return Path(self.repo_info.repo_root)

    def create_build_definition(self) -> BuildDefinition:
        """The build definition recorded as the provenance predicate's buildDefinition."""
        ep = ContainerBasedExternalParameters(
            source=source_artifact(self.config),
            builder_image=builder_image_artifact(self.config),
            config_path=self.config.build_config_path,
            build_config=self.build_config,
        )
        # No internal parameters yet.
        return BuildDefinition(
            build_type=CONTAINER_BASED_BUILD_TYPE,
            external_parameters=ep,
            # The source repository is also a resolved dependency.
            resolved_dependencies=[source_artifact(self.config)],
        )

    def docker_run_args(self) -> List[str]:
        """Full ``docker run`` command line for this build."""
        ep = self.create_build_definition().external_parameters
        return [
            DOCKER,
            "run",
            # Mount the checkout as the container's workspace.
            f"--volume={self.repo_root}:{WORKSPACE}",
            f"--workdir={WORKSPACE}",
            # Remove the container file system after the container exits.
            "--rm",
            ep.builder_image.uri,
            *self.build_config.command,
        ]

    def build_artifacts(self, output_folder: Optional[Union[str, Path]] = None) -> List[Subject]:
        """Run the build and return the names and SHA256 digests of the artifacts.

        Raises:
            BuildExecutionError: If ``docker run`` fails; names the log files
            NoArtifactsProducedError: If the build produced nothing matching
                the artifact pattern
        """
        self._run_docker()
        return inspect_and_write_artifacts(
            self.build_config.artifact_path, output_folder, self.repo_root
        )

    def _run_docker(self) -> None:
        argv = self.docker_run_args()
        try:
            logs = run_command(argv, cwd=self.repo_root, verbose=self.config.verbose, echo=self._echo)
        except CommandError as e:
            raise BuildExecutionError(
                f"running `docker run` failed: {e.reason}",
                argv,
                returncode=e.returncode,
                stdout_log=e.stdout_log,
                stderr_log=e.stderr_log,
            ) from e
        logs.remove()

    def cleanup(self) -> None:
        if self._fetcher is not None:
            self._fetcher.cleanup()
        else:
            self.repo_info.cleanup()


class Builder:
    """Sets up the environment for building artifacts as a DockerBuildConfig specifies."""

    def __init__(self, repo_fetcher: Fetcher, config: DockerBuildConfig, echo: Optional[EchoFn] = None):
        self.repo_fetcher = repo_fetcher
        self.config = config
        self.echo = echo

    @classmethod
    def with_git_fetcher(
        cls,
        config: DockerBuildConfig,
        depth: int = 0,
        workdir: Optional[Union[str, Path]] = None,
        echo: Optional[EchoFn] = None,
    ) -> "Builder":
        """Create a Builder that fetches the sources from a Git repository.

        Raises:
            UnsupportedSchemeError: If the repository scheme cannot be fetched from
            ConfigurationError: If the repository URI is malformed
        """
        fetcher = GitClient.from_config(config, depth=depth, workdir=workdir, echo=echo)
        return cls(fetcher, config, echo=echo)

    def set_up_build_state(self) -> DockerBuild:
        """Check out the sources, load the config and run the pre-flight check.

        The fetcher is cleaned up on every failure, including a failed fetch.

        Raises:
            SourceFetchError: If the sources cannot be verified or fetched
            ConfigParseError: If the build config cannot be loaded
            PreexistingArtifactError: If the artifact pattern already matches files
        """
        try:
            try:
                repo_info = self.repo_fetcher.fetch()
            except BaseException:
                self.repo_fetcher.cleanup()
                raise
        except (SourceFetchError, ConfigurationError):
            raise
        except ProvBuildError as e:
            raise SourceFetchError(f"couldn't verify or fetch source repo: {e}") from e

        try:
            build_config = self.config.load_build_config(repo_info.repo_root)
            # Never attest to a file that predates this build.
            check_existing_files(build_config.artifact_path, repo_info.repo_root)
        except BaseException:
            self.repo_fetcher.cleanup()
            raise

        return DockerBuild(
            config=self.config,
            build_config=build_config,
            repo_info=repo_info,
            fetcher=self.repo_fetcher,
            echo=self.echo,
        )
