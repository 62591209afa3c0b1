import pytest

import dbstack.services.command_runner as command_runner_module
import dbstack.services.docker_runtime as docker_runtime_module
import dbstack.services.image_builder as image_builder_module
from dbstack.constants import BUILD_FILES
from dbstack.errors import ConfigurationError, ReadinessTimeoutError, StackError
from dbstack.models import BuildInfo
from dbstack.services.command_runner import CommandRunner
from dbstack.services.database import DatabaseService
from dbstack.services.docker_runtime import DockerRuntimeService
from dbstack.services.image_builder import ImageBuilderService


def _builder(fake_docker, dummy_logger, dummy_console):
    runtime = DockerRuntimeService(logger=dummy_logger, console=dummy_console, run_cmd=fake_docker)
    return ImageBuilderService(
        logger=dummy_logger,
        console=dummy_console,
        runtime=runtime,
        run_cmd=fake_docker,
        database_factory=lambda name: DatabaseService(dummy_logger, runtime, name),
    )


@pytest.fixture
def frozen_clock(monkeypatch):
    monkeypatch.setattr(image_builder_module.time, "time", lambda: 1700000000)
    monkeypatch.setattr(docker_runtime_module.time, "sleep", lambda *_args: None)


def _info(version="1.2.0"):
    return BuildInfo(build_date="20240115", build_timestamp="2024-01-15T10:00:00Z", git_commit="abc1234", version=version)


def test_validate_files_reports_first_missing(tmp_path, fake_docker, dummy_logger, dummy_console):
    builder = _builder(fake_docker, dummy_logger, dummy_console)
    (tmp_path / "Dockerfile").write_text("FROM postgres:11-bullseye\n", encoding="utf-8")

    with pytest.raises(ConfigurationError, match="conf/postgres11.conf"):
        builder.validate_files(str(tmp_path))


def test_validate_files_accepts_complete_context(tmp_path, fake_docker, dummy_logger, dummy_console):
    builder = _builder(fake_docker, dummy_logger, dummy_console)
    for relative in BUILD_FILES:
        target = tmp_path / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text("x", encoding="utf-8")

    builder.validate_files(str(tmp_path))


def test_build_info_falls_back_to_unknown_commit(fake_docker, dummy_logger, dummy_console, settings):
    info = _builder(fake_docker, dummy_logger, dummy_console).build_info(settings)

    assert info.git_commit == "unknown"
    assert info.version == "1.2.0"
    assert len(info.build_date) == 8 and info.build_date.isdigit()


def test_build_info_without_git_binary(monkeypatch, dummy_logger, dummy_console, settings):
    def missing_git(cmd, **_kwargs):
        raise FileNotFoundError(cmd[0])

    monkeypatch.setattr(command_runner_module.subprocess, "run", missing_git)
    runner = CommandRunner(logger=dummy_logger)
    runtime = DockerRuntimeService(logger=dummy_logger, console=dummy_console, run_cmd=runner.run)
    builder = ImageBuilderService(
        logger=dummy_logger,
        console=dummy_console,
        runtime=runtime,
        run_cmd=runner.run,
        database_factory=lambda name: DatabaseService(dummy_logger, runtime, name),
    )

    info = builder.build_info(settings, ".")

    assert info.git_commit == "unknown"
    assert any("Git commit unavailable" in message for message in dummy_logger.messages)


def test_build_tags_and_build_args(fake_docker, dummy_logger, dummy_console, settings):
    builder = _builder(fake_docker, dummy_logger, dummy_console)

    tags = builder.build(settings, _info(), ".")

    assert tags == [
        "acme/postgres11-prod:latest",
        "acme/postgres11-prod:1.2.0",
        "acme/postgres11-prod:20240115",
    ]
    build_cmd = fake_docker.calls_starting_with("docker", "build")[0]
    assert "APP_DATABASE=app_db" in build_cmd
    assert "BUILD_DATE=20240115" in build_cmd
    assert "VERSION=1.2.0" in build_cmd
    assert build_cmd[-1] == "."
    assert set(tags) <= fake_docker.images


def test_image_tags_are_deduplicated(fake_docker, dummy_logger, dummy_console, settings):
    builder = _builder(fake_docker, dummy_logger, dummy_console)

    tags = builder.image_tags(settings.image, _info(version="latest"))

    assert tags == ["acme/postgres11-prod:latest", "acme/postgres11-prod:20240115"]


def test_smoke_test_removes_container_and_volume(fake_docker, dummy_logger, dummy_console, settings, frozen_clock):
    fake_docker.images.add("acme/postgres11-prod:latest")
    builder = _builder(fake_docker, dummy_logger, dummy_console)

    builder.smoke_test(settings)

    assert "postgres_test_1700000000" not in fake_docker.containers
    assert "postgres_test_1700000000_data" not in fake_docker.volumes
    assert any("SELECT current_user, version();" in sql for sql in fake_docker.sql)


def test_smoke_test_cleans_up_after_timeout(fake_docker, dummy_logger, dummy_console, settings, frozen_clock):
    fake_docker.images.add("acme/postgres11-prod:latest")
    fake_docker.ready_after = 1000
    builder = _builder(fake_docker, dummy_logger, dummy_console)

    with pytest.raises(ReadinessTimeoutError):
        builder.smoke_test(settings)

    assert fake_docker.ready_checks == 60
    assert "postgres_test_1700000000" not in fake_docker.containers
    assert "postgres_test_1700000000_data" not in fake_docker.volumes


def test_smoke_test_query_failure_is_fatal_and_cleaned(fake_docker, dummy_logger, dummy_console, settings, frozen_clock):
    fake_docker.images.add("acme/postgres11-prod:latest")
    fake_docker.sql_failures.add("version()")
    builder = _builder(fake_docker, dummy_logger, dummy_console)

    with pytest.raises(StackError, match="Database connection test failed"):
        builder.smoke_test(settings)

    assert fake_docker.containers == {}


def test_push_all_continues_after_failure(fake_docker, dummy_logger, dummy_console):
    builder = _builder(fake_docker, dummy_logger, dummy_console)
    fake_docker.push_failures.add("acme/pg:1.0.0")

    result = builder.push_all(["acme/pg:1.0.0", "acme/pg:20240115", "acme/pg:latest"])

    assert result.failed == ["acme/pg:1.0.0"]
    assert result.pushed == ["acme/pg:20240115", "acme/pg:latest"]
    assert result.success is False
    assert len(fake_docker.calls_starting_with("docker", "push")) == 3


def test_verify_image_exists_hints_to_build(fake_docker, dummy_logger, dummy_console, settings):
    builder = _builder(fake_docker, dummy_logger, dummy_console)

    with pytest.raises(StackError, match="dbstack build"):
        builder.verify_image_exists(settings.image)


def test_check_login_skips_when_already_authenticated(fake_docker, dummy_logger, dummy_console, settings):
    builder = _builder(fake_docker, dummy_logger, dummy_console)

    builder.check_login(settings)

    assert fake_docker.calls_starting_with("docker", "login") == []


def test_verify_pushed_keeps_pre_existing_local_image(fake_docker, dummy_logger, dummy_console, settings):
    fake_docker.images.add("acme/postgres11-prod:latest")
    builder = _builder(fake_docker, dummy_logger, dummy_console)

    builder.verify_pushed(settings.image)

    assert "acme/postgres11-prod:latest" in fake_docker.images
    assert fake_docker.calls_starting_with("docker", "rmi") == []


def test_verify_pushed_removes_fresh_pull(fake_docker, dummy_logger, dummy_console, settings):
    builder = _builder(fake_docker, dummy_logger, dummy_console)

    builder.verify_pushed(settings.image)

    assert fake_docker.calls_starting_with("docker", "rmi") == [["docker", "rmi", "acme/postgres11-prod:latest"]]
