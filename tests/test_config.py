"""Tests for build inputs and the TOML build configuration."""

import pytest

from provbuild.kernel.config import (
    BuildConfig,
    DockerBuildConfig,
    InputOptions,
    parse_build_config,
)
from provbuild.kernel.errors import ConfigParseError, ConfigurationError

SHA1 = "0123456789abcdef0123456789abcdef01234567"
IMAGE = "example.com/img@sha256:" + "c" * 64


def _options(**overrides) -> InputOptions:
    values = dict(
        source_repo="https://example.com/repo@v1.0",
        git_commit_digest=f"sha1:{SHA1}",
        builder_image=IMAGE,
        build_config_path="build.toml",
    )
    values.update(overrides)
    return InputOptions(**values)


class TestParseBuildConfig:
    """Tests for parsing the TOML build configuration file."""

    def test_valid(self):
        config = parse_build_config(b'command = ["make", "release"]\nartifact_path = "dist/*.tar.gz"\n')
        assert config.command == ["make", "release"]
        assert config.artifact_path == "dist/*.tar.gz"

    def test_json_form_uses_camel_case(self):
        config = parse_build_config(b'command = ["make"]\nartifact_path = "out/*"\n')
        assert config.model_dump(by_alias=True) == {"command": ["make"], "artifactPath": "out/*"}
        assert BuildConfig.model_validate({"command": ["make"], "artifactPath": "out/*"}) == config

    @pytest.mark.parametrize("text", [
        b'artifact_path = "dist/*"\n',  # no command
        b'command = []\nartifact_path = "dist/*"\n',
        b'command = [""]\nartifact_path = "dist/*"\n',
        b'command = "make release"\nartifact_path = "dist/*"\n',  # must be a list
        b'command = ["make"]\n',  # no artifact path
        b'command = ["make"]\nartifact_path = "/abs/*"\n',
        b'command = ["make"]\nartifact_path = "../outside/*"\n',
        b'command = ["make"]\nartifact_path = "dist/*"\nextra = 1\n',
    ])
    def test_invalid_config(self, text):
        with pytest.raises(ConfigParseError):
            parse_build_config(text)

    def test_invalid_toml(self):
        with pytest.raises(ConfigParseError, match="could not parse TOML"):
            parse_build_config(b"command = [\n")

    def test_not_utf8(self):
        with pytest.raises(ConfigParseError):
            parse_build_config(b"\xff\xfe")


class TestDockerBuildConfig:
    """Tests for validating raw inputs."""

    def test_from_inputs(self):
        config = DockerBuildConfig.from_inputs(_options(force_checkout=True))
        assert config.source_repo == "https://example.com/repo@v1.0"
        assert config.source_digest.alg == "sha1"
        assert config.source_digest.value == SHA1
        assert str(config.builder_image) == IMAGE
        assert config.force_checkout is True

    def test_source_repo_recorded_verbatim(self):
        config = DockerBuildConfig.from_inputs(_options(source_repo="git+https://example.com/repo"))
        assert config.source_repo == "git+https://example.com/repo"

    @pytest.mark.parametrize("field,value,message", [
        ("source_repo", "", "source repository"),
        ("git_commit_digest", SHA1, "git commit digest"),
        ("builder_image", "example.com/img:latest", "builder image"),
        ("build_config_path", "/etc/build.toml", "build config path"),
        ("build_config_path", "../build.toml", "build config path"),
    ])
    def test_invalid_inputs(self, field, value, message):
        with pytest.raises(ConfigurationError, match=message):
            DockerBuildConfig.from_inputs(_options(**{field: value}))

    def test_load_build_config(self, tmp_path):
        (tmp_path / "ci").mkdir()
        (tmp_path / "ci" / "build.toml").write_text(
            'command = ["make"]\nartifact_path = "dist/*"\n', encoding="utf-8"
        )
        config = DockerBuildConfig.from_inputs(_options(build_config_path="ci/build.toml"))
        assert config.load_build_config(tmp_path).command == ["make"]

    def test_load_missing_file(self, tmp_path):
        config = DockerBuildConfig.from_inputs(_options())
        with pytest.raises(ConfigParseError, match="couldn't load config file"):
            config.load_build_config(tmp_path)

    def test_load_refuses_symlink_out_of_repo(self, tmp_path):
        repo = tmp_path / "repo"
        repo.mkdir()
        outside = tmp_path / "outside.toml"
        outside.write_text('command = ["make"]\nartifact_path = "dist/*"\n', encoding="utf-8")
        (repo / "build.toml").symlink_to(outside)
        config = DockerBuildConfig.from_inputs(_options())
        with pytest.raises(ConfigParseError):
            config.load_build_config(repo)
