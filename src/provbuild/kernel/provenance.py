"""SLSA v1 provenance models and the external-parameters variants.

``externalParameters`` is polymorphic: its shape depends on the build type.
It is parsed in two steps. The statement is first validated with the field
left as a plain JSON object, then the object is decoded into the model
registered for the statement's ``buildType``. Encoding goes back through the
same registry, and everything is written as canonical JSON, so re-serializing
a parsed statement reproduces the original bytes. Extension fields the
envelope and predicate models do not declare are kept and written back;
resource descriptors carry the full in-toto field set and reject anything else.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_serializer

from provbuild._internal.canonical_json import canonical_dumps
from provbuild.contracts import Subject
from .config import BuildConfig, DockerBuildConfig
from .digest import Digest, parse_image_reference
from .errors import (
    ConfigurationError,
    InvalidImageDigestError,
    MissingSourceDigestError,
    ProvenanceError,
)

STATEMENT_TYPE = "https://in-toto.io/Statement/v1"
SUPPORTED_STATEMENT_TYPES = {STATEMENT_TYPE, "https://in-toto.io/Statement/v0.1"}
SLSA_PROVENANCE_V1 = "https://slsa.dev/provenance/v1"
CONTAINER_BASED_BUILD_TYPE = "https://slsa.dev/container-based-build/v0.1?draft"


def _dump(model: BaseModel) -> Dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


class ResourceDescriptor(BaseModel):
    """An artifact or resource identified by URI and/or digest."""
    uri: Optional[str] = None
    digest: Optional[Dict[str, str]] = None  # alg -> lowercase hex
    name: Optional[str] = None
    download_location: Optional[str] = Field(None, alias="downloadLocation")
    media_type: Optional[str] = Field(None, alias="mediaType")
    content: Optional[str] = None  # base64-encoded bytes
    annotations: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(populate_by_name=True, extra="forbid")


class ContainerBasedExternalParameters(BaseModel):
    """External parameters of a container-based build."""
    source: ResourceDescriptor
    builder_image: ResourceDescriptor = Field(..., alias="builderImage")
    config_path: str = Field(..., alias="configPath")
    build_config: BuildConfig = Field(..., alias="buildConfig")

    model_config = ConfigDict(populate_by_name=True, extra="forbid")


# build type URI -> model for that build type's externalParameters
EXTERNAL_PARAMETER_TYPES: Dict[str, Type[BaseModel]] = {
    CONTAINER_BASED_BUILD_TYPE: ContainerBasedExternalParameters,
}

ExternalParameters = Union[ContainerBasedExternalParameters, Dict[str, Any]]


def decode_external_parameters(build_type: str, data: Any) -> ExternalParameters:
    """Decode a raw externalParameters object for the given build type.

    Unknown build types are kept as the raw JSON object.

    Raises:
        ProvenanceError: If the object does not match the registered model
    """
    if isinstance(data, BaseModel):
        return data
    model_cls = EXTERNAL_PARAMETER_TYPES.get(build_type)
    if model_cls is None:
        if not isinstance(data, dict):
            raise ProvenanceError("externalParameters must be a JSON object")
        return data
    try:
        return model_cls.model_validate(data)
    except ValidationError as e:
        raise ProvenanceError(
            f"could not decode externalParameters for build type {build_type!r}: {e}"
        ) from e


def encode_external_parameters(params: ExternalParameters) -> Dict[str, Any]:
    """Encode external parameters back into a JSON object."""
    if isinstance(params, BaseModel):
        return _dump(params)
    return params


class BuildDefinition(BaseModel):
    """What was asked to be built: the provenance ``buildDefinition``."""
    build_type: str = Field(..., alias="buildType")
    external_parameters: Any = Field(..., alias="externalParameters")
    internal_parameters: Optional[Dict[str, Any]] = Field(None, alias="internalParameters")
    resolved_dependencies: Optional[List[ResourceDescriptor]] = Field(None, alias="resolvedDependencies")

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    @field_serializer("external_parameters")
    def _serialize_external_parameters(self, value: Any) -> Any:
        return encode_external_parameters(value)

    def decoded(self) -> "BuildDefinition":
        """Return a copy whose external parameters are decoded for the build type."""
        params = decode_external_parameters(self.build_type, self.external_parameters)
        return self.model_copy(update={"external_parameters": params})

    def to_json(self) -> str:
        return canonical_dumps(_dump(self))


class ProvenanceBuilder(BaseModel):
    """Identity of the build platform."""
    id: str
    version: Optional[Dict[str, str]] = None
    builder_dependencies: Optional[List[ResourceDescriptor]] = Field(None, alias="builderDependencies")

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class BuildMetadata(BaseModel):
    invocation_id: Optional[str] = Field(None, alias="invocationId")
    started_on: Optional[str] = Field(None, alias="startedOn")  # RFC 3339, kept verbatim
    finished_on: Optional[str] = Field(None, alias="finishedOn")

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class RunDetails(BaseModel):
    builder: ProvenanceBuilder
    metadata: Optional[BuildMetadata] = None
    byproducts: Optional[List[ResourceDescriptor]] = None

    model_config = ConfigDict(extra="allow")


class ProvenancePredicate(BaseModel):
    build_definition: BuildDefinition = Field(..., alias="buildDefinition")
    run_details: RunDetails = Field(..., alias="runDetails")

    model_config = ConfigDict(populate_by_name=True, extra="allow")


def _timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class ProvenanceStatement(BaseModel):
    """An in-toto statement carrying a SLSA v1 provenance predicate."""
    type_: str = Field(STATEMENT_TYPE, alias="_type")
    subject: List[Subject]
    predicate_type: str = Field(SLSA_PROVENANCE_V1, alias="predicateType")
    predicate: ProvenancePredicate

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    @classmethod
    def create(
        cls,
        subjects: List[Subject],
        build_definition: BuildDefinition,
        builder_id: str,
        invocation_id: Optional[str] = None,
        started_on: Optional[datetime] = None,
        finished_on: Optional[datetime] = None,
    ) -> "ProvenanceStatement":
        """Assemble an unsigned provenance statement for built subjects."""
        metadata = None
        if invocation_id or started_on or finished_on:
            metadata = BuildMetadata(
                invocation_id=invocation_id,
                started_on=_timestamp(started_on),
                finished_on=_timestamp(finished_on),
            )
        return cls(
            subject=list(subjects),
            predicate=ProvenancePredicate(
                build_definition=build_definition,
                run_details=RunDetails(
                    builder=ProvenanceBuilder(id=builder_id),
                    metadata=metadata,
                ),
            ),
        )

    @property
    def build_definition(self) -> BuildDefinition:
        return self.predicate.build_definition

    def to_json(self) -> str:
        return canonical_dumps(_dump(self))

    def to_docker_build_config(self, force_checkout: bool = False) -> DockerBuildConfig:
        """Reconstruct the inputs of the build this provenance describes.

        Raises:
            ProvenanceError: If the build type is not container-based or the
                parameters are malformed
            InvalidImageDigestError: If the builder image digest disagrees
                with the digest in its URI
            MissingSourceDigestError: If the source has no sha1 digest
        """
        ep = self.build_definition.external_parameters
        if not isinstance(ep, ContainerBasedExternalParameters):
            raise ProvenanceError(
                f"expected container-based external parameters, got build type "
                f"{self.build_definition.build_type!r}"
            )

        if not ep.builder_image.uri:
            raise ProvenanceError("missing builder image URI")
        try:
            image = parse_image_reference(ep.builder_image.uri)
        except ConfigurationError as e:
            raise ProvenanceError(f"validating Docker image URI: {e}") from e
        declared = (ep.builder_image.digest or {}).get(image.digest.alg)
        if declared != image.digest.value:
            raise InvalidImageDigestError(
                f"invalid Docker image digest: URI pins {str(image.digest)!r}, "
                f"descriptor declares {declared!r}"
            )

        sha1 = (ep.source.digest or {}).get("sha1")
        if sha1 is None:
            raise MissingSourceDigestError("missing sha1 digest for source")
        if not ep.source.uri:
            raise ProvenanceError("missing source URI")

        try:
            return DockerBuildConfig(
                source_repo=ep.source.uri,
                source_digest=Digest(alg="sha1", value=sha1),
                builder_image=image,
                build_config_path=ep.config_path,
                force_checkout=force_checkout,
                verbose=False,
            )
        except ValidationError as e:
            raise ProvenanceError(f"invalid external parameters: {e}") from e


def parse_provenance(data: Union[bytes, str]) -> ProvenanceStatement:
    """Parse a provenance statement, decoding its external parameters.

    Raises:
        ProvenanceError: If the document is not a SLSA v1 provenance statement
    """
    try:
        statement = ProvenanceStatement.model_validate_json(data)
    except ValidationError as e:
        raise ProvenanceError(f"could not unmarshal the provenance file:\n{e}") from e

    if statement.type_ not in SUPPORTED_STATEMENT_TYPES:
        raise ProvenanceError(f"unsupported statement type {statement.type_!r}")
    if statement.predicate_type != SLSA_PROVENANCE_V1:
        raise ProvenanceError(f"unsupported predicate type {statement.predicate_type!r}")

    predicate = statement.predicate.model_copy(
        update={"build_definition": statement.predicate.build_definition.decoded()}
    )
    return statement.model_copy(update={"predicate": predicate})


def parse_build_definition(data: Union[bytes, str]) -> BuildDefinition:
    """Parse a standalone build definition (as written by a dry run).

    Raises:
        ProvenanceError: If the document is not a valid build definition
    """
    try:
        definition = BuildDefinition.model_validate_json(data)
    except ValidationError as e:
        raise ProvenanceError(f"could not unmarshal the build definition:\n{e}") from e
    return definition.decoded()


def source_artifact(config: DockerBuildConfig) -> ResourceDescriptor:
    """The source repository and its commit digest as a ResourceDescriptor."""
    return ResourceDescriptor(uri=config.source_repo, digest=config.source_digest.to_map())


def builder_image_artifact(config: DockerBuildConfig) -> ResourceDescriptor:
    """The builder image and its digest as a ResourceDescriptor."""
    return ResourceDescriptor(
        uri=str(config.builder_image),
        digest=config.builder_image.digest.to_map(),
    )
