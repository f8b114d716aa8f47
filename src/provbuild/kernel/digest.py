"""Digest and content-addressed image reference value types."""

import re
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from .errors import ConfigurationError

# Hex lengths for the algorithms we know; other algorithms only need lowercase hex.
DIGEST_HEX_LENGTHS: Dict[str, int] = {
    "sha1": 40,
    "sha256": 64,
    "sha512": 128,
}

_ALG_RE = re.compile(r"^[a-z0-9]+$")
_HEX_RE = re.compile(r"^[0-9a-f]+$")


class Digest(BaseModel):
    """A hash algorithm and the lowercase hex encoding of the hash output."""
    alg: str  # "sha1" | "sha256" | ...
    value: str

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator('alg')
    @classmethod
    def validate_alg(cls, v: str) -> str:
        if not _ALG_RE.match(v):
            raise ValueError(f"digest algorithm must be a lowercase identifier, got {v!r}")
        return v

    @field_validator('value')
    @classmethod
    def validate_value(cls, v: str, info) -> str:
        if not _HEX_RE.match(v):
            raise ValueError(f"digest value must be lowercase hex, got {v!r}")
        alg = info.data.get("alg")
        expected = DIGEST_HEX_LENGTHS.get(alg)
        if expected is not None and len(v) != expected:
            raise ValueError(
                f"{alg} digest must have {expected} hex characters, got {len(v)}"
            )
        return v

    def to_map(self) -> Dict[str, str]:
        """Return the digest as the ``{alg: value}`` map used in provenance."""
        return {self.alg: self.value}

    def __str__(self) -> str:
        return f"{self.alg}:{self.value}"


def parse_digest(text: str) -> Digest:
    """Parse a digest of the form ``ALG:VALUE``.

    Raises:
        ConfigurationError: If the input is not a well-formed digest
    """
    parts = text.split(":")
    if len(parts) != 2:
        raise ConfigurationError(f"got {text!r}, want ALG:VALUE format")
    try:
        return Digest(alg=parts[0], value=parts[1])
    except ValueError as e:
        raise ConfigurationError(f"invalid digest {text!r}: {e}") from e


class ImageReference(BaseModel):
    """A container image pinned by content digest.

    The string form always carries the digest, so the image is
    content-addressed rather than tag-addressed.
    """
    name: str  # registry/repository path, e.g. "ghcr.io/org/builder"
    tag: Optional[str] = None
    digest: Digest

    model_config = ConfigDict(frozen=True, extra="forbid")

    def __str__(self) -> str:
        if self.tag:
            return f"{self.name}:{self.tag}@{self.digest}"
        return f"{self.name}@{self.digest}"


def parse_image_reference(text: str) -> ImageReference:
    """Parse ``NAME[:TAG]@sha256:VALUE`` into an ImageReference.

    A colon in NAME before the last ``/`` is a registry port, not a tag.

    Raises:
        ConfigurationError: If the digest is missing, malformed, or not sha256
    """
    parts = text.split("@")
    if len(parts) != 2:
        raise ConfigurationError(
            f"expected docker image name followed by its digest: {text!r}"
        )
    name_and_tag, digest_text = parts

    digest = parse_digest(digest_text)
    if digest.alg != "sha256":
        raise ConfigurationError(
            f"expected sha256 digest for docker image, got {digest.alg!r}"
        )

    name, tag = name_and_tag, None
    slash = name_and_tag.rfind("/")
    colon = name_and_tag.rfind(":")
    if colon > slash:
        name, tag = name_and_tag[:colon], name_and_tag[colon + 1:]
        if not tag:
            raise ConfigurationError(f"empty tag in docker image {text!r}")
    if not name:
        raise ConfigurationError(f"missing image name in {text!r}")

    return ImageReference(name=name, tag=tag, digest=digest)
