import subprocess
from pathlib import Path

import pytest

from dbstack.errors import ConfigurationError, StackError
from dbstack.services.compose import ComposeService
from dbstack.services.env_loader import EnvironmentLoader

REPO_COMPOSE_FILE = Path(__file__).resolve().parents[2] / "docker-compose.yml"

COMPOSE = """
services:
  postgres:
    image: ${POSTGRES_IMAGE}
    restart: ${RESTART:-unless-stopped}
    environment:
      POSTGRES_PASSWORD: ${POSTGRES_PASSWORD}
    ports:
      - "${POSTGRES_PORT}:${POSTGRES_PORT}"
  redis:
    image: ${REDIS_IMAGE}
    command: redis-server --requirepass ${REDIS_PASS}
"""


class FakeSubprocess:
    CalledProcessError = subprocess.CalledProcessError

    def __init__(self, available):
        self.available = available

    def run(self, cmd, **_kwargs):
        if cmd[0] not in self.available:
            raise FileNotFoundError(cmd[0])
        if cmd[0] == "docker" and "docker compose" not in self.available:
            raise subprocess.CalledProcessError(1, cmd)
        return subprocess.CompletedProcess(cmd, 0)


@pytest.fixture
def compose_files(tmp_path):
    compose_file = tmp_path / "docker-compose.yml"
    compose_file.write_text(COMPOSE, encoding="utf-8")
    env_file = tmp_path / ".env"
    env_file.write_text(
        "POSTGRES_IMAGE=postgres:15\nPOSTGRES_PASSWORD=pw\nPOSTGRES_PORT=5432\nREDIS_IMAGE=redis:7\n",
        encoding="utf-8",
    )
    return str(compose_file), str(env_file)


def _service(dummy_logger, dummy_console, run_cmd=None, subprocess_module=subprocess):
    return ComposeService(
        logger=dummy_logger,
        console=dummy_console,
        run_cmd=run_cmd,
        env_loader=EnvironmentLoader(logger=dummy_logger),
        subprocess_module=subprocess_module,
    )


def test_referenced_variables_skip_defaults():
    definition = {
        "image": "${POSTGRES_IMAGE}",
        "restart": "${RESTART:-unless-stopped}",
        "ports": ["${POSTGRES_PORT}:${POSTGRES_PORT}"],
        "environment": {"TZ": "${TZ-UTC}", "PASSWORD": "${POSTGRES_PASSWORD:?required}"},
    }

    assert ComposeService.referenced_variables(definition) == [
        "POSTGRES_IMAGE",
        "POSTGRES_PORT",
        "POSTGRES_PASSWORD",
    ]


def test_check_only_validates_selected_services(compose_files, dummy_logger, dummy_console):
    compose_file, env_file = compose_files

    required = _service(dummy_logger, dummy_console).check(compose_file, env_file, ["postgres"])

    assert required == {"postgres": ["POSTGRES_IMAGE", "POSTGRES_PASSWORD", "POSTGRES_PORT"]}


def test_check_reports_missing_variable_and_service(compose_files, dummy_logger, dummy_console):
    compose_file, env_file = compose_files

    with pytest.raises(ConfigurationError, match="REDIS_PASS.*'redis'"):
        _service(dummy_logger, dummy_console).check(compose_file, env_file)


def test_unknown_service_is_rejected(compose_files, dummy_logger, dummy_console):
    compose_file, env_file = compose_files

    with pytest.raises(ConfigurationError, match="Unknown compose service"):
        _service(dummy_logger, dummy_console).check(compose_file, env_file, ["oracle"])


def test_up_forwards_env_file_and_services(compose_files, dummy_logger, dummy_console):
    compose_file, env_file = compose_files
    calls = []

    def run_cmd(cmd, **_kwargs):
        calls.append(cmd)
        return subprocess.CompletedProcess(cmd, 0)

    service = _service(dummy_logger, dummy_console, run_cmd=run_cmd)
    service.run("up", compose_file, env_file, ["postgres"], compose_cmd=["docker", "compose"])

    assert calls == [
        ["docker", "compose", "-f", compose_file, "--env-file", env_file, "up", "-d", "postgres"]
    ]


def test_missing_variable_prevents_compose_call(compose_files, dummy_logger, dummy_console):
    compose_file, env_file = compose_files
    calls = []

    service = _service(dummy_logger, dummy_console, run_cmd=lambda cmd, **_kwargs: calls.append(cmd))

    with pytest.raises(ConfigurationError):
        service.run("up", compose_file, env_file, compose_cmd=["docker", "compose"])

    assert calls == []


def test_get_docker_compose_cmd_prefers_plugin(dummy_logger, dummy_console):
    service = _service(dummy_logger, dummy_console, subprocess_module=FakeSubprocess({"docker", "docker compose"}))

    assert service.get_docker_compose_cmd() == ["docker", "compose"]


def test_get_docker_compose_cmd_falls_back_to_standalone(dummy_logger, dummy_console):
    service = _service(dummy_logger, dummy_console, subprocess_module=FakeSubprocess({"docker", "docker-compose"}))

    assert service.get_docker_compose_cmd() == ["docker-compose"]


def test_get_docker_compose_cmd_raises_when_unavailable(dummy_logger, dummy_console):
    service = _service(dummy_logger, dummy_console, subprocess_module=FakeSubprocess(set()))

    with pytest.raises(StackError, match="Docker Compose is not available"):
        service.get_docker_compose_cmd()


def test_repository_compose_file_declares_the_database_stack(dummy_logger, dummy_console):
    services = _service(dummy_logger, dummy_console).load_services(str(REPO_COMPOSE_FILE))

    assert list(services) == [
        "mysql",
        "sqlserver",
        "postgres",
        "postgres11",
        "mongodb",
        "redis",
        "redis-commander",
    ]
    assert "POSTGRES11_DATA_DIR" in ComposeService.referenced_variables(services["postgres11"])
