"""Tests for source repository locators and scheme normalization."""

import pytest

from provbuild.kernel.digest import Digest
from provbuild.kernel.errors import ConfigurationError, UnsupportedSchemeError
from provbuild.kernel.source import normalize_scheme, parse_source_locator

COMMIT = Digest(alg="sha1", value="0123456789abcdef0123456789abcdef01234567")


@pytest.mark.parametrize("scheme", ["git+https", "https+git"])
@pytest.mark.parametrize("rest", [
    "://github.com/org/repo",
    "://github.com/org/repo.git@refs/tags/v1.0",
    "://user:p%40ss@host.example:8443/a/b?x=1#frag",
    "://Example.COM/MixedCase/Path",
])
def test_git_https_variants_become_https_byte_for_byte(scheme, rest):
    """Only the scheme changes; everything after it is preserved."""
    assert normalize_scheme(scheme + rest) == "https" + rest


def test_https_is_unchanged():
    assert normalize_scheme("https://github.com/org/repo") == "https://github.com/org/repo"


@pytest.mark.parametrize("raw", [
    "ssh://git@github.com/org/repo",
    "http://github.com/org/repo",
    "git://github.com/org/repo",
    "file:///srv/repo",
])
def test_unsupported_scheme(raw):
    with pytest.raises(UnsupportedSchemeError) as exc_info:
        normalize_scheme(raw)
    assert exc_info.value.scheme == raw.split(":")[0]
    # Still a configuration problem for callers catching the broad kind
    assert isinstance(exc_info.value, ConfigurationError)


class TestParseSourceLocator:
    """Tests for splitting the @ref suffix off a source string."""

    def test_without_ref(self):
        loc = parse_source_locator("git+https://github.com/org/repo", COMMIT)
        assert loc.uri == "https://github.com/org/repo"
        assert loc.ref is None
        assert loc.digest == COMMIT

    def test_with_ref(self):
        loc = parse_source_locator("https://example.com/repo@v1.0", COMMIT)
        assert loc.uri == "https://example.com/repo"
        assert loc.ref == "v1.0"

    def test_user_info_is_not_a_ref(self):
        loc = parse_source_locator("https://bot@example.com/org/repo@refs/heads/main", COMMIT)
        assert loc.uri == "https://bot@example.com/org/repo"
        assert loc.ref == "refs/heads/main"

    def test_multiple_refs_rejected(self):
        with pytest.raises(ConfigurationError):
            parse_source_locator("https://example.com/repo@v1@v2", COMMIT)

    def test_empty_ref_rejected(self):
        with pytest.raises(ConfigurationError):
            parse_source_locator("https://example.com/repo@", COMMIT)

    @pytest.mark.parametrize("uri,name", [
        ("https://example.com/org/repo", "repo"),
        ("https://example.com/org/tool.git", "tool"),
        ("https://example.com/org/repo/", "repo"),
        ("https://example.com", "repo"),
    ])
    def test_repo_name(self, uri, name):
        assert parse_source_locator(uri, COMMIT).repo_name == name
