import pytest

from dbstack.constants import BUILD_REQUIRED_KEYS
from dbstack.errors import ConfigurationError
from dbstack.models import StackSettings
from dbstack.services.env_loader import EnvironmentLoader


class DummyLogger:
    def info(self, *_args, **_kwargs):
        return None

    def debug(self, *_args, **_kwargs):
        return None


def _write_env(tmp_path, content):
    env_file = tmp_path / ".env.prod"
    env_file.write_text(content, encoding="utf-8")
    return env_file


def test_read_ignores_comments_and_blank_lines(tmp_path):
    env_file = _write_env(
        tmp_path,
        "# registry\nDOCKER_USERNAME=acme\n\nIMAGE_NAME=postgres11-prod\n# trailing comment\n",
    )

    values = EnvironmentLoader(logger=DummyLogger()).read(str(env_file))

    assert values == {"DOCKER_USERNAME": "acme", "IMAGE_NAME": "postgres11-prod"}


def test_load_applies_defaults_and_keeps_unknown_keys(tmp_path):
    env_file = _write_env(
        tmp_path,
        "DOCKER_USERNAME=acme\nIMAGE_NAME=pg\nIMAGE_TAG=\nTZ=UTC\n",
    )

    settings = EnvironmentLoader(logger=DummyLogger()).load(str(env_file))

    assert settings.image_tag == "latest"
    assert settings.network_name == "app-network"
    assert settings.restart_policy == "unless-stopped"
    assert settings.get("TZ") == "UTC"


def test_read_missing_file_names_the_path(tmp_path):
    missing = tmp_path / "nope.env"

    with pytest.raises(ConfigurationError, match="nope.env"):
        EnvironmentLoader(logger=DummyLogger()).read(str(missing))


def test_validate_reports_first_missing_key():
    settings = StackSettings.from_mapping({"POSTGRES_USER": "admin"})

    with pytest.raises(ConfigurationError, match="POSTGRES_PASSWORD"):
        EnvironmentLoader(logger=DummyLogger()).validate(settings, BUILD_REQUIRED_KEYS)


def test_validate_passes_when_all_keys_present(settings):
    EnvironmentLoader(logger=DummyLogger()).validate(settings, BUILD_REQUIRED_KEYS)


def test_validate_version_rejects_garbage():
    settings = StackSettings.from_mapping({"VERSION": "not a version"})

    with pytest.raises(ConfigurationError, match="not a valid version"):
        EnvironmentLoader(logger=DummyLogger()).validate_version(settings)


def test_describe_hides_secrets(settings):
    described = dict(EnvironmentLoader(logger=DummyLogger()).describe(settings))

    assert described["POSTGRES_PASSWORD"] == "[HIDDEN]"
    assert described["APP_PASSWORD"] == "[HIDDEN]"
    assert described["POSTGRES_USER"] == "admin"
