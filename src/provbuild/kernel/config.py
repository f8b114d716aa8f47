"""Build inputs and the user-authored build configuration file."""

import logging
import tomllib
from pathlib import Path, PurePosixPath
from typing import List, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from provbuild._internal.files import safe_read_file
from .digest import Digest, ImageReference, parse_digest, parse_image_reference
from .errors import ConfigParseError, ConfigurationError, UnsafePathError

logger = logging.getLogger(__name__)


def _check_relative(path: str, what: str) -> str:
    if not path:
        raise ValueError(f"{what} must not be empty")
    p = PurePosixPath(path)
    if p.is_absolute() or path.startswith("\\"):
        raise ValueError(f"{what} must be a relative path, got {path!r}")
    if ".." in p.parts:
        raise ValueError(f"{what} must not leave the repository root, got {path!r}")
    return path


class BuildConfig(BaseModel):
    """Build configuration loaded from the user's TOML file.

    ``command`` is run inside the builder image; ``artifact_path`` is a glob,
    relative to the repository root, matching the files the build produces.
    """
    command: List[str] = Field(..., min_length=1)
    artifact_path: str = Field(..., alias="artifactPath")

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    @field_validator('command')
    @classmethod
    def validate_command(cls, v: List[str]) -> List[str]:
        if not v[0]:
            raise ValueError("command must start with a non-empty program name")
        return v

    @field_validator('artifact_path')
    @classmethod
    def validate_artifact_path(cls, v: str) -> str:
        return _check_relative(v, "artifact_path")


def parse_build_config(data: bytes) -> BuildConfig:
    """Parse the bytes of a TOML build configuration file.

    Raises:
        ConfigParseError: If the TOML is invalid or does not describe a build
    """
    try:
        doc = tomllib.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, tomllib.TOMLDecodeError) as e:
        raise ConfigParseError(f"could not parse TOML: {e}") from e
    try:
        return BuildConfig.model_validate(doc)
    except ValidationError as e:
        raise ConfigParseError(f"invalid build config: {e}") from e


class InputOptions(BaseModel):
    """Raw, unvalidated inputs as they arrive from the command line."""
    source_repo: str
    git_commit_digest: str  # "sha1:<hex>"
    builder_image: str  # "name[:tag]@sha256:<hex>"
    build_config_path: str
    force_checkout: bool = False
    verbose: bool = False


class DockerBuildConfig(BaseModel):
    """Validated inputs for a container-based build."""
    source_repo: str  # as given by the user, recorded verbatim in provenance
    source_digest: Digest
    builder_image: ImageReference
    build_config_path: str  # relative to the repository root
    force_checkout: bool = False
    verbose: bool = False

    model_config = ConfigDict(frozen=True)

    @field_validator('build_config_path')
    @classmethod
    def validate_build_config_path(cls, v: str) -> str:
        return _check_relative(v, "build_config_path")

    @classmethod
    def from_inputs(cls, options: InputOptions) -> "DockerBuildConfig":
        """Validate raw inputs.

        Raises:
            ConfigurationError: Naming the first invalid input
        """
        if not options.source_repo:
            raise ConfigurationError("source repository must not be empty")
        try:
            source_digest = parse_digest(options.git_commit_digest)
        except ConfigurationError as e:
            raise ConfigurationError(f"invalid git commit digest: {e}") from e
        try:
            builder_image = parse_image_reference(options.builder_image)
        except ConfigurationError as e:
            raise ConfigurationError(f"invalid builder image: {e}") from e
        try:
            return cls(
                source_repo=options.source_repo,
                source_digest=source_digest,
                builder_image=builder_image,
                build_config_path=options.build_config_path,
                force_checkout=options.force_checkout,
                verbose=options.verbose,
            )
        except ValidationError as e:
            raise ConfigurationError(f"invalid build config path: {e}") from e

    def load_build_config(self, repo_root: Union[str, Path]) -> BuildConfig:
        """Load and parse the build config file from a checked-out repository.

        Raises:
            ConfigParseError: If the file is missing, unsafe, or invalid
        """
        try:
            data = safe_read_file(self.build_config_path, repo_root)
        except (OSError, UnsafePathError) as e:
            raise ConfigParseError(
                f"couldn't load config file from {self.build_config_path!r}: {e}"
            ) from e
        try:
            config = parse_build_config(data)
        except ConfigParseError as e:
            raise ConfigParseError(
                f"couldn't load config file from {self.build_config_path!r}: {e}"
            ) from e
        logger.debug("Loaded build config %s: %s", self.build_config_path, config)
        return config
