"""Source repository locators.

A raw source string such as ``git+https://github.com/org/repo@v1.0`` is
normalized into an https URI, an optional ref and the expected commit digest.
"""

from pathlib import PurePosixPath
from typing import Optional
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict

from .digest import Digest
from .errors import ConfigurationError, UnsupportedSchemeError

SUPPORTED_SCHEMES = {"https", "git+https", "https+git"}


class SourceLocator(BaseModel):
    """Where to fetch the sources from, and which commit they must be at."""
    uri: str  # https URI without any @ref suffix
    ref: Optional[str] = None  # branch or tag name, e.g. "v1.0" or "refs/tags/v1.0"
    digest: Digest  # expected commit identity

    model_config = ConfigDict(frozen=True)

    @property
    def repo_name(self) -> str:
        """Directory name ``git clone`` would pick for this repository."""
        name = PurePosixPath(urlsplit(self.uri).path).name
        if name.endswith(".git"):
            name = name[:-len(".git")]
        return name or "repo"


def normalize_scheme(raw: str) -> str:
    """Rewrite ``git+https``/``https+git`` to ``https``; leave the rest untouched.

    Raises:
        UnsupportedSchemeError: If the scheme is anything else
    """
    try:
        scheme = urlsplit(raw).scheme
    except ValueError as e:
        raise ConfigurationError(f"could not parse repo URI {raw!r}: {e}") from e
    if scheme not in SUPPORTED_SCHEMES:
        raise UnsupportedSchemeError(scheme)
    return "https" + raw[len(scheme):]


def parse_source_locator(raw: str, digest: Digest) -> SourceLocator:
    """Build a SourceLocator from a raw repository string and commit digest.

    An ``@ref`` suffix on the URI path selects a ref. An ``@`` in the
    authority (user info) is left alone.

    Raises:
        UnsupportedSchemeError: If the transport scheme is not supported
        ConfigurationError: If the URI carries more than one ``@ref``
    """
    uri = normalize_scheme(raw)
    parts = urlsplit(uri)
    head = f"{parts.scheme}://{parts.netloc}"
    if not uri.startswith(head):
        head = f"{parts.scheme}:"
    path = uri[len(head):]

    ref_parts = path.split("@")
    if len(ref_parts) > 2:
        raise ConfigurationError(f"invalid source repository format: {raw!r}")

    ref = None
    if len(ref_parts) == 2:
        path, ref = ref_parts
        if not ref:
            raise ConfigurationError(f"empty ref in source repository {raw!r}")

    return SourceLocator(uri=head + path, ref=ref, digest=digest)
